# tests/fakes.py

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Callable, Optional

from rani_assistant.errors import NotStartedError, SessionClosedError, SpawnError
from rani_assistant.integrity import MISMATCH, SENTINEL
from rani_assistant.lib.scan import ScanResult
from rani_assistant.output_bus import OutputBus
from rani_assistant.resources import ResourceKind

_PATH_RE = re.compile(r"script=\$\(<'([^']*)'\)")
_DIGEST_RE = re.compile(r'!= "([0-9a-f]{64})"')
_NONCE_RE = re.compile(re.escape(SENTINEL) + r":([0-9A-Za-z]+)")


class FakeSession:
    """
    In-process stand-in for CommandSession.

    write_line() plays the verification snippet synchronously: it re-reads the
    script file, compares its sha256 against the digest embedded in the
    snippet, and then either "runs" the script (recording it) or dies with the
    mismatch marker, just like the real shell would.
    """

    def __init__(
        self,
        bus: OutputBus,
        *,
        escalated: bool,
        runner: Optional[Callable[[str], int]] = None,
        fail_start: bool = False,
    ) -> None:
        self.bus = bus
        self.escalated = escalated
        self.label = "escalated" if escalated else "normal"
        self.runner = runner or (lambda script: 0)
        self.fail_start = fail_start

        # Hooks for tests.
        self.before_verify: Optional[Callable[[Path], None]] = None
        self.die_while_running = False

        self.scripts: list[str] = []
        self.lines: list[str] = []
        self.start_calls = 0
        self.stop_calls = 0
        self._started = False
        self._alive = False
        self._rc: Optional[int] = None

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def returncode(self) -> Optional[int]:
        return None if self._alive else self._rc

    def start(self) -> None:
        self.start_calls += 1
        if self.fail_start:
            self._rc = 126
            raise SpawnError(f"{self.label} session failed to start: authentication dialog was dismissed")
        self._started = True
        self._alive = True

    def write_line(self, text: str) -> None:
        if not self._started:
            raise NotStartedError(self.label)
        if not self._alive:
            raise SessionClosedError(self.label)
        self.lines.append(text)

        path = Path(_PATH_RE.search(text).group(1))
        expected = _DIGEST_RE.search(text).group(1)
        nonce = _NONCE_RE.search(text).group(1)

        if self.before_verify is not None:
            self.before_verify(path)

        data = path.read_bytes()
        if hashlib.sha256(data).hexdigest() != expected:
            self.bus.publish(f"{MISMATCH}:{nonce}\n")
            self._exit(1)
            return

        script = data.decode("utf-8")
        self.scripts.append(script)
        self.bus.publish(f"+ {script.splitlines()[0] if script else ''}\n")
        if self.die_while_running:
            self._exit(137)
            return
        rc = self.runner(script)
        path.unlink()
        self.bus.publish(f"\n{SENTINEL}:{nonce} {rc}\n")

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        return True

    def stop(self) -> None:
        self.stop_calls += 1
        if self._alive:
            self._exit(0)

    def _exit(self, rc: int) -> None:
        self._alive = False
        self._rc = rc


class FakeSessionFactory:
    """
    SessionFactory that hands out FakeSessions and remembers them.
    """

    def __init__(self, bus: OutputBus) -> None:
        self.bus = bus
        self.created: list[FakeSession] = []
        self.fail_escalated = False
        self.runner: Optional[Callable[[str], int]] = None
        self.configure: Optional[Callable[[FakeSession], None]] = None

    def __call__(self, escalated: bool) -> FakeSession:
        s = FakeSession(
            self.bus,
            escalated=escalated,
            runner=self.runner,
            fail_start=escalated and self.fail_escalated,
        )
        if self.configure is not None:
            self.configure(s)
        self.created.append(s)
        return s

    def session(self, escalated: bool) -> FakeSession:
        matches = [s for s in self.created if s.escalated == escalated]
        assert len(matches) == 1, f"expected one {'escalated' if escalated else 'normal'} session, got {len(matches)}"
        return matches[0]


class FakeScanner:
    """
    Deterministic SystemScanner replacement; scans return whatever the test set.
    """

    def __init__(self, result: Optional[ScanResult] = None) -> None:
        self.result = result or ScanResult(
            maps={k: {} for k in (
                ResourceKind.PACKAGE,
                ResourceKind.AUR_PACKAGE,
                ResourceKind.SERVICE,
                ResourceKind.USER_SERVICE,
                ResourceKind.GROUP,
                ResourceKind.LOCALE,
            )},
            settings={ResourceKind.DNS: "Default", ResourceKind.SHELL: "bash", ResourceKind.HBLOCK: False},
        )
        self.scans = 0
        self.installed: set[str] = set()

    def scan(self) -> ScanResult:
        self.scans += 1
        return ScanResult(
            maps={k: dict(v) for k, v in self.result.maps.items()},
            settings=dict(self.result.settings),
        )

    def is_package_installed(self, pkg: str) -> bool:
        return pkg in self.installed
