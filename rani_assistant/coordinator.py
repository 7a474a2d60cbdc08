from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .audit import AuditLogger
from .errors import (
    BusyError,
    IntegrityViolation,
    SessionClosedError,
    SpawnError,
    TaskExecutionFailure,
    UnsafePathError,
)
from .integrity import CompletionWatcher, build_snippet, check_path, new_nonce, write_script
from .lib.session import CommandSession, SessionFactory, SessionPool
from .output_bus import OutputBuffer, OutputBus
from .tasks import Task, TaskQueue

logger = logging.getLogger(__name__)

Refresher = Callable[[], object]


@dataclass
class PassResult:
    ran: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict:
        return {"ran": list(self.ran), "failed": list(self.failed), "skipped": list(self.skipped)}


@dataclass(frozen=True)
class QueueState:
    pending: Tuple[Task, ...]
    current: Optional[Task]
    running: bool
    aborting: bool
    progress: Optional[int]
    count: int


class ExecutionCoordinator:
    """Drains the task queue through verified command sessions.

    One pass at a time. Tasks run strictly one after another; each script goes
    through a file on disk whose sha256 the receiving shell re-checks before
    running it.
    """

    def __init__(
        self,
        queue: TaskQueue,
        bus: OutputBus,
        session_factory: SessionFactory,
        *,
        script_path: str | Path,
        poll_interval_s: float = 0.5,
        sentinel_grace_s: float = 2.0,
        refresher: Optional[Refresher] = None,
        audit: Optional[AuditLogger] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._queue = queue
        self._bus = bus
        self._factory = session_factory
        self.script_path = Path(script_path)
        self._poll_interval_s = poll_interval_s
        self._sentinel_grace_s = sentinel_grace_s
        self._refresher = refresher
        self._audit = audit
        self._log = log or logger

        self._lock = threading.Lock()
        self._running = False
        self._aborting = threading.Event()
        self._current: Optional[Task] = None
        self.buffer = OutputBuffer(bus)

    # -- read model --------------------------------------------------------

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def aborting(self) -> bool:
        return self.running and self._aborting.is_set()

    def state(self) -> QueueState:
        with self._lock:
            current = self._current
            running = self._running
        pending = tuple(self._queue.sorted_tasks())
        return QueueState(
            pending=pending,
            current=current,
            running=running,
            aborting=running and self._aborting.is_set(),
            progress=self._queue.progress(current.id if current else None),
            count=len(pending),
        )

    # -- entry points ------------------------------------------------------

    def execute_all(self) -> PassResult:
        """Run every queued task in priority order."""
        return self._run_pass(None)

    def execute_one(self, task: Task) -> PassResult:
        """Run a single task now, outside the queue."""
        return self._run_pass(task)

    def abort(self) -> bool:
        """Stop dispatching after the task in flight. Returns False when idle."""
        with self._lock:
            if not self._running:
                return False
            self._aborting.set()
        self._log.info("Abort requested")
        return True

    def preview(self) -> str:
        """Publish what execute_all would run, without running it."""
        tasks = self._queue.sorted_tasks()
        if not tasks:
            text = "Nothing to apply.\n"
        else:
            blocks = []
            for t in tasks:
                who = "root" if t.requires_privilege else "user"
                blocks.append(f"# {t.display_name} [{t.id}] priority={t.priority} as={who}\n{t.script.rstrip()}\n")
            text = ("-" * 60 + "\n").join(blocks)
        self._bus.publish(text)
        return text

    # -- pass --------------------------------------------------------------

    def _run_pass(self, single: Optional[Task]) -> PassResult:
        with self._lock:
            if self._running:
                raise BusyError("An execution pass is already running")
            self._running = True
            self._aborting.clear()
        self.buffer.clear()

        result = PassResult()
        pool: Optional[SessionPool] = None
        started = False
        try:
            tasks = [single] if single is not None else self._queue.sorted_tasks()
            if not tasks:
                self._log.info("Nothing queued")
                return result

            pool = SessionPool.create(
                self._factory,
                needs_normal=any(not t.requires_privilege for t in tasks),
                needs_escalated=any(t.requires_privilege for t in tasks),
            )
            self._record("pass_start", True, tasks=[t.id for t in tasks])
            try:
                pool.start_all()
            except SpawnError as e:
                self._log.error("Session startup failed: %s", e)
                self._record("pass_end", False, error=str(e))
                raise
            started = True

            self._drain(pool, tasks, result, from_queue=single is None)
            self._log.info(
                "Pass finished: %d ran, %d failed, %d skipped", len(result.ran), len(result.failed), len(result.skipped)
            )
            self._record("pass_end", result.ok, **result.as_dict())
            return result
        finally:
            if pool is not None:
                pool.stop_all()
            self._remove_leftover_script()
            with self._lock:
                self._current = None
                self._running = False
                self._aborting.clear()
            if started:
                self._refresh()

    def _drain(self, pool: SessionPool, tasks: Sequence[Task], result: PassResult, *, from_queue: bool) -> None:
        for idx, task in enumerate(tasks):
            if self._aborting.is_set():
                rest = tasks[idx:]
                self._log.info("Aborted; skipping %d task(s)", len(rest))
                for t in rest:
                    result.skipped.append(t.id)
                    if from_queue:
                        self._queue.remove(t.id)
                return

            if from_queue:
                latest = self._queue.find_by_id(task.id)
                if latest is None:
                    self._log.info("Task %s left the queue before it started", task.id)
                    continue
                task = latest

            with self._lock:
                self._current = task
            try:
                self._run_task(pool, task)
            except TaskExecutionFailure as e:
                self._log.warning("Task %s failed: %s", task.id, e)
                result.failed.append(task.id)
                self._record("task", False, task_id=task.id, returncode=e.returncode, error=str(e))
            except (IntegrityViolation, UnsafePathError) as e:
                self._log.error("Task %s: %s; abandoning pass", task.id, e)
                result.failed.append(task.id)
                self._record("task", False, task_id=task.id, error=str(e))
                self._record("pass_end", False, error=str(e), **result.as_dict())
                if from_queue:
                    for t in tasks[idx + 1 :]:
                        self._queue.remove(t.id)
                raise
            else:
                result.ran.append(task.id)
                self._record("task", True, task_id=task.id, returncode=0)
            finally:
                if from_queue and not self._queue.remove_if_same(task):
                    self._log.info("Task %s changed while running; keeping the newer version queued", task.id)
                with self._lock:
                    self._current = None

    def _run_task(self, pool: SessionPool, task: Task) -> None:
        session = pool.session_for(task.requires_privilege)
        if session is None or not session.alive:
            raise TaskExecutionFailure(task.id, f"No live session for {task.id}")

        path = check_path(self.script_path)
        nonce = new_nonce()
        self._log.info("Running %s in %s session", task.id, session.label)
        with CompletionWatcher(self._bus, nonce) as watcher:
            digest = write_script(path, task.script)
            self._log.debug("Wrote %s (sha256=%s)", path, digest)
            try:
                session.write_line(build_snippet(path, digest, nonce))
            except SessionClosedError as e:
                raise TaskExecutionFailure(task.id, str(e)) from e

            p = Path(path)
            while p.exists() and session.alive:
                time.sleep(self._poll_interval_s)

            if not session.alive:
                self._session_died(session, task, watcher)
                return

            done = watcher.wait(self._sentinel_grace_s)
            if done is None:
                self._log.warning("No completion marker for %s; assuming success", task.id)
                return
            if done.returncode != 0:
                raise TaskExecutionFailure(
                    task.id, f"{task.display_name} exited with code {done.returncode}", returncode=done.returncode
                )

    def _session_died(self, session: CommandSession, task: Task, watcher: CompletionWatcher) -> None:
        session.wait_closed(self._sentinel_grace_s)
        done = watcher.result
        if done is not None and done.mismatch:
            raise IntegrityViolation(task.id, f"Script digest mismatch in {session.label} session for {task.id}")
        if done is not None and done.returncode == 0:
            self._log.warning("%s session exited right after %s completed", session.label, task.id)
            return
        raise TaskExecutionFailure(
            task.id,
            f"{session.label} session exited (rc={session.returncode}) while running {task.id}",
            returncode=done.returncode if done else None,
        )

    # -- helpers -----------------------------------------------------------

    def _remove_leftover_script(self) -> None:
        try:
            self.script_path.unlink(missing_ok=True)
        except OSError as e:
            self._log.warning("Cannot remove %s: %s", self.script_path, e)

    def _refresh(self) -> None:
        if self._refresher is None:
            return
        try:
            self._refresher()
        except Exception:
            self._log.exception("State refresh after pass failed")

    def _record(self, action: str, ok: bool, **details: object) -> None:
        if self._audit is None:
            return
        self._audit.record(action, ok, **details)
