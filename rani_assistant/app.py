from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .audit import AuditLogger
from .coordinator import ExecutionCoordinator, PassResult
from .lib.elevate import elevator_for
from .lib.pkg import ensure_package_script
from .lib.scan import ScanResult, SystemScanner
from .lib.session import SessionFactory, make_session_factory
from .logging_utils import TRANSCRIPT_LOGGER
from .output_bus import OutputBus, OutputLogSink
from .reconcile import ReconciliationEngine
from .resources import ResourceKind
from .settings import AppConfig
from .state_store import overrides_from_state, state_from_snapshot
from .store import ResourceStateStore, StateSnapshot
from .tasks import Task, TaskQueue

logger = logging.getLogger(__name__)

ENSURE_PRIORITY = 0


class Scanner(Protocol):
    def scan(self) -> ScanResult:
        ...

    def is_package_installed(self, pkg: str) -> bool:
        ...


class Assistant:
    """Wires store, engine, queue, sessions and coordinator together."""

    def __init__(
        self,
        config: AppConfig,
        *,
        scanner: Optional[Scanner] = None,
        session_factory: Optional[SessionFactory] = None,
        audit: Optional[AuditLogger] = None,
        bus: Optional[OutputBus] = None,
    ) -> None:
        self.config = config
        self.bus = bus or OutputBus()
        self.store = ResourceStateStore()
        self.queue = TaskQueue()
        self.engine = ReconciliationEngine(self.queue, user=config.user)
        self.scanner: Scanner = scanner or SystemScanner(config.user)
        self.log_sink = OutputLogSink(self.bus, logging.getLogger(TRANSCRIPT_LOGGER))

        if session_factory is None:
            session_factory = make_session_factory(
                config.shell,
                self.bus,
                elevator_for(config.elevator),
                startup_timeout_s=config.startup_timeout_s,
                stop_grace_s=config.stop_grace_s,
            )
        if audit is None:
            audit = AuditLogger(path=Path(config.audit_path)) if config.audit_path else AuditLogger.in_dir(config.data_dir)

        self.coordinator = ExecutionCoordinator(
            self.queue,
            self.bus,
            session_factory,
            script_path=config.script_path,
            poll_interval_s=config.poll_interval_s,
            sentinel_grace_s=config.sentinel_grace_s,
            refresher=self.refresh,
            audit=audit,
        )
        self.engine.attach(self.store)

    def refresh(self) -> StateSnapshot:
        return self.store.refresh(self.scanner.scan())

    def restore(self, state: Dict[str, Any]) -> StateSnapshot:
        wanted, settings = overrides_from_state(state)
        return self.store.restore(wanted, settings)

    def persisted_state(self) -> Dict[str, Any]:
        return state_from_snapshot(self.store.snapshot())

    def apply(self) -> PassResult:
        return self.coordinator.execute_all()

    def ensure_package(self, name: str) -> bool:
        """Install a package right away unless it is already (wanted) installed."""
        if self.store.effective(ResourceKind.PACKAGE).get(name, False):
            logger.info("Package %s already present", name)
            return True

        task = Task(
            id=f"ensure-package:{name}",
            priority=ENSURE_PRIORITY,
            requires_privilege=True,
            display_name=f"Install {name}",
            icon="pi pi-box",
            script=ensure_package_script(name),
        )
        result = self.coordinator.execute_one(task)
        installed = self.scanner.is_package_installed(name)
        if not installed:
            logger.warning("Package %s still missing after install (failed=%s)", name, result.failed)
        return installed

    def close(self) -> None:
        self.engine.detach()
        self.coordinator.buffer.close()
        self.log_sink.close()
