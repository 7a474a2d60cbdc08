from __future__ import annotations

import hashlib
import os
import re
import secrets
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import UnsafePathError
from .output_bus import OutputBus

SENTINEL = "RANI-TASK-DONE"
MISMATCH = "RANI-INTEGRITY-MISMATCH"

# Only the tail of the transcript matters for marker detection.
_WINDOW = 4096


def new_nonce() -> str:
    return secrets.token_hex(8)


def check_path(path: str | Path) -> str:
    """Return path as a string that is safe inside single quotes in the snippet."""
    s = str(path)
    if "'" in s or "\n" in s:
        raise UnsafePathError(f"Script path cannot be quoted safely: {s!r}")
    return s


def script_bytes(script: str) -> bytes:
    # $(<file) drops trailing newlines, so hash exactly what the shell will see.
    return script.strip().encode("utf-8")


def digest_of(script: str) -> str:
    return hashlib.sha256(script_bytes(script)).hexdigest()


def write_script(path: str | Path, script: str) -> str:
    """Write the script for a session to pick up; returns its sha256 hex digest."""
    p = Path(check_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    data = script_bytes(script)
    tmp = p.with_name(p.name + ".part")
    tmp.write_bytes(data)
    os.replace(tmp, p)
    return hashlib.sha256(data).hexdigest()


def build_snippet(path: str | Path, digest: str, nonce: str) -> str:
    """Shell text that verifies, runs and deletes the script file, then reports.

    The script file disappears only after the script itself has finished.
    """
    p = check_path(path)
    if not re.fullmatch(r"[0-9a-f]{64}", digest):
        raise ValueError(f"Not a sha256 hex digest: {digest!r}")
    if not re.fullmatch(r"[0-9A-Za-z]+", nonce):
        raise ValueError(f"Nonce must be alphanumeric: {nonce!r}")
    return (
        f"script=$(<'{p}')\n"
        f"if [ \"$(printf '%s' \"$script\" | sha256sum | cut -d ' ' -f 1)\" != \"{digest}\" ]; then\n"
        f"  printf '%s\\n' '{MISMATCH}:{nonce}'\n"
        f"  exit 1\n"
        f"fi\n"
        f"bash -x /dev/stdin <<< \"$script\"; rc=$?\n"
        f"rm -f '{p}'\n"
        f"printf '\\n%s %d\\n' '{SENTINEL}:{nonce}' \"$rc\""
    )


@dataclass(frozen=True)
class Completion:
    returncode: Optional[int]
    mismatch: bool = False


class CompletionWatcher:
    """Watches the output bus for the completion or mismatch marker of one nonce."""

    def __init__(self, bus: OutputBus, nonce: str) -> None:
        self.nonce = nonce
        self._done_re = re.compile(re.escape(f"{SENTINEL}:{nonce}") + r" (-?\d+)\r?\n")
        self._mismatch = f"{MISMATCH}:{nonce}"
        self._tail = ""
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._result: Optional[Completion] = None
        self._unsubscribe = bus.subscribe(self._feed)

    def _feed(self, chunk: str) -> None:
        with self._lock:
            if self._result is not None:
                return
            self._tail = (self._tail + chunk)[-_WINDOW:]
            if self._mismatch in self._tail:
                self._result = Completion(returncode=None, mismatch=True)
            else:
                m = self._done_re.search(self._tail)
                if m:
                    self._result = Completion(returncode=int(m.group(1)))
            if self._result is not None:
                self._event.set()

    @property
    def result(self) -> Optional[Completion]:
        with self._lock:
            return self._result

    @property
    def mismatch_seen(self) -> bool:
        r = self.result
        return r is not None and r.mismatch

    def wait(self, timeout: Optional[float] = None) -> Optional[Completion]:
        self._event.wait(timeout)
        return self.result

    def close(self) -> None:
        self._unsubscribe()

    def __enter__(self) -> "CompletionWatcher":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
