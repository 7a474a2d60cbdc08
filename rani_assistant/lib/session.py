from __future__ import annotations

import codecs
import logging
import os
import secrets
import subprocess
import threading
import time
from typing import Callable, List, Optional, Sequence

from ..errors import NotStartedError, SessionClosedError, SpawnError
from ..output_bus import OutputBus
from .command import fmt_argv
from .elevate import NoopElevator, PrivilegeElevator

logger = logging.getLogger(__name__)

READY_PREFIX = "RANI-SESSION-READY"


class CommandSession:
    """One persistent interpreter process fed through stdin.

    stdout and stderr are merged and pushed to the bus as they arrive.
    """

    def __init__(
        self,
        argv: Sequence[str],
        bus: OutputBus,
        *,
        label: str = "normal",
        elevator: Optional[PrivilegeElevator] = None,
        startup_timeout_s: float = 30.0,
        stop_grace_s: float = 5.0,
        poll_interval_s: float = 0.1,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.argv = list(argv)
        self.label = label
        self._bus = bus
        self._elevator = elevator or NoopElevator()
        self._startup_timeout_s = startup_timeout_s
        self._stop_grace_s = stop_grace_s
        self._poll_interval_s = poll_interval_s
        self._log = log or logger

        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()
        self._ready = threading.Event()
        self._closed = threading.Event()
        self._ready_token = ""
        self._prelude = ""

    @property
    def started(self) -> bool:
        return self._proc is not None and self._ready.is_set()

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        return None if self._proc is None else self._proc.poll()

    def start(self) -> None:
        """Spawn the interpreter and block until it answers on stdin."""
        if self._proc is not None:
            raise RuntimeError(f"Session {self.label} was already started")

        self._log.info("Starting %s session: %s", self.label, fmt_argv(self.argv))
        try:
            self._proc = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
                env=dict(os.environ, LANG="C"),
            )
        except OSError as e:
            raise SpawnError(f"Cannot launch {self.label} session ({self.argv[0]}): {e}") from e

        self._reader = threading.Thread(target=self._pump, name=f"rani-session-{self.label}", daemon=True)
        self._reader.start()

        self._ready_token = f"{READY_PREFIX}:{secrets.token_hex(8)}"
        try:
            self._send(f"printf '%s\\n' '{self._ready_token}'")
        except SessionClosedError:
            pass

        deadline = time.monotonic() + self._startup_timeout_s
        while not self._ready.wait(self._poll_interval_s):
            if not self.alive or time.monotonic() >= deadline:
                break

        if self._ready.is_set():
            self._log.info("Session %s ready (pid=%s)", self.label, self._proc.pid)
            return

        rc = self._proc.poll()
        if rc is None:
            reason = f"not ready after {self._startup_timeout_s:g}s"
            self._force_stop()
        else:
            self._closed.wait(self._stop_grace_s)
            reason = self._elevator.describe_failure(rc) or f"exited with code {rc}"
        prelude = self._prelude.strip()
        if prelude:
            self._bus.publish(self._prelude)
        raise SpawnError(f"{self.label} session failed to start: {reason}" + (f"\n{prelude}" if prelude else ""))

    def write_line(self, text: str) -> None:
        if self._proc is None or not self._ready.is_set():
            raise NotStartedError(f"Session {self.label} not started. Call start() first")
        if not self.alive:
            raise SessionClosedError(f"Session {self.label} has exited (rc={self.returncode})")
        self._send(text)

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait until all output of an exited process has been delivered."""
        if self._proc is None:
            return True
        return self._closed.wait(timeout)

    def stop(self) -> None:
        proc = self._proc
        if proc is None:
            self._log.debug("Session %s never started", self.label)
            return
        if not self.alive:
            self._log.debug("Session %s already stopped (rc=%s)", self.label, proc.poll())
            self._finish()
            return

        self._log.debug("Stopping %s session (pid=%s)", self.label, proc.pid)
        try:
            self._send("exit 0")
        except SessionClosedError:
            pass

        deadline = time.monotonic() + self._stop_grace_s
        while self.alive and time.monotonic() < deadline:
            time.sleep(self._poll_interval_s)

        if self.alive:
            self._log.warning("Session %s did not exit within %ss, terminating", self.label, self._stop_grace_s)
            self._force_stop()
        self._finish()

    # -- internals ---------------------------------------------------------

    def _send(self, text: str) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise NotStartedError(f"Session {self.label} not started")
        data = memoryview((text + "\n").encode("utf-8"))
        with self._write_lock:
            try:
                while data:
                    n = proc.stdin.write(data)
                    data = data[n or 0 :]
                proc.stdin.flush()
            except (OSError, ValueError) as e:
                raise SessionClosedError(f"Session {self.label} stdin closed: {e}") from e

    def _pump(self) -> None:
        proc = self._proc
        assert proc is not None and proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = proc.stdout.read(4096)
                if not data:
                    break
                self._emit(decoder.decode(data))
            self._emit(decoder.decode(b"", final=True))
        finally:
            rc = proc.wait()
            self._log.info("Session %s closed (rc=%s)", self.label, rc)
            self._closed.set()

    def _emit(self, text: str) -> None:
        if not text:
            return
        if self._ready.is_set():
            self._bus.publish(text)
            return
        # Hold output back until the readiness token shows up, then drop the token line.
        self._prelude += text
        idx = self._prelude.find(self._ready_token) if self._ready_token else -1
        if idx < 0:
            return
        before = self._prelude[:idx]
        after = self._prelude[idx + len(self._ready_token) :]
        if after.startswith("\n"):
            after = after[1:]
        self._prelude = ""
        self._ready.set()
        self._bus.publish(before + after)

    def _force_stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        try:
            proc.terminate()
        except OSError as e:
            # An elevated child may not be signalable by us; closing stdin is all we can do.
            self._log.warning("Cannot terminate %s session (pid=%s): %s", self.label, proc.pid, e)
        try:
            proc.wait(timeout=self._stop_grace_s)
        except subprocess.TimeoutExpired:
            try:
                proc.kill()
            except OSError as e:
                self._log.warning("Cannot kill %s session (pid=%s): %s", self.label, proc.pid, e)

    def _finish(self) -> None:
        proc = self._proc
        if proc is not None and proc.stdin is not None and not proc.stdin.closed:
            try:
                proc.stdin.close()
            except OSError:
                pass
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=self._stop_grace_s)


SessionFactory = Callable[[bool], CommandSession]


def make_session_factory(
    shell_argv: Sequence[str],
    bus: OutputBus,
    elevator: PrivilegeElevator,
    *,
    startup_timeout_s: float = 30.0,
    stop_grace_s: float = 5.0,
    poll_interval_s: float = 0.1,
) -> SessionFactory:
    def factory(escalated: bool) -> CommandSession:
        argv = elevator.wrap(shell_argv) if escalated else list(shell_argv)
        return CommandSession(
            argv,
            bus,
            label="escalated" if escalated else "normal",
            elevator=elevator if escalated else None,
            startup_timeout_s=startup_timeout_s,
            stop_grace_s=stop_grace_s,
            poll_interval_s=poll_interval_s,
        )

    return factory


class SessionPool:
    """Up to one normal and one escalated session for a single pass."""

    def __init__(self, normal: Optional[CommandSession], escalated: Optional[CommandSession]) -> None:
        self.normal = normal
        self.escalated = escalated

    @classmethod
    def create(cls, factory: SessionFactory, *, needs_normal: bool, needs_escalated: bool) -> "SessionPool":
        return cls(
            normal=factory(False) if needs_normal else None,
            escalated=factory(True) if needs_escalated else None,
        )

    def sessions(self) -> List[CommandSession]:
        return [s for s in (self.normal, self.escalated) if s is not None]

    def session_for(self, escalated: bool) -> Optional[CommandSession]:
        return self.escalated if escalated else self.normal

    def start_all(self) -> None:
        for s in self.sessions():
            s.start()

    def stop_all(self) -> None:
        # Escalated first.
        for s in (self.escalated, self.normal):
            if s is not None:
                s.stop()
