from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from .lib.pkg import aur_package_script, package_script
from .lib.system import (
    dns_script,
    groups_script,
    hblock_script,
    locales_script,
    login_shell_script,
    services_script,
)
from .resources import HBLOCK_PACKAGE, ResourceKind, dns_provider_by_name
from .store import ResourceStateStore, StateSnapshot
from .tasks import Task, TaskQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diff:
    to_enable: Tuple[str, ...] = ()
    to_disable: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.to_enable or self.to_disable)


def diff(current: Mapping[str, bool], wanted: Mapping[str, bool]) -> Diff:
    """Entries of wanted that differ from current. Pure; absent current counts as False."""
    enable: list[str] = []
    disable: list[str] = []
    for name, value in wanted.items():
        if current.get(name, False) == value:
            continue
        (enable if value else disable).append(name)
    return Diff(to_enable=tuple(enable), to_disable=tuple(disable))


@dataclass(frozen=True)
class TaskTemplate:
    priority: int
    requires_privilege: bool
    display_name: str
    icon: str


TEMPLATES: Dict[ResourceKind, TaskTemplate] = {
    ResourceKind.PACKAGE: TaskTemplate(8, True, "Install / remove packages", "pi pi-box"),
    ResourceKind.AUR_PACKAGE: TaskTemplate(9, True, "Install / remove AUR packages", "pi pi-box"),
    ResourceKind.GROUP: TaskTemplate(11, True, "Update group membership", "pi pi-users"),
    ResourceKind.SERVICE: TaskTemplate(12, True, "Apply system services and settings", "pi pi-receipt"),
    ResourceKind.USER_SERVICE: TaskTemplate(12, False, "Apply user services", "pi pi-receipt"),
    ResourceKind.LOCALE: TaskTemplate(13, True, "Update locales", "pi pi-languages"),
}


def task_id(kind: ResourceKind) -> str:
    return f"reconcile:{kind.value}"


def settings_script(snapshot: StateSnapshot, user: str) -> str:
    """Converge DNS, login shell and host blocking (direct wanted vs. current compare)."""
    parts: list[str] = []

    dns = snapshot.wanted_of(ResourceKind.DNS)
    if dns is not None and dns != snapshot.observe(ResourceKind.DNS):
        parts.append(dns_script(dns_provider_by_name(dns)))

    shell = snapshot.wanted_of(ResourceKind.SHELL)
    if shell is not None and shell != snapshot.observe(ResourceKind.SHELL):
        parts.append(login_shell_script(user, shell))

    hblock = snapshot.wanted_of(ResourceKind.HBLOCK)
    if hblock is not None and bool(hblock) != bool(snapshot.observe(ResourceKind.HBLOCK)):
        installed = bool(snapshot.observe(ResourceKind.PACKAGE).get(HBLOCK_PACKAGE, False))
        parts.append(hblock_script(bool(hblock), remove_package=not hblock and installed))

    return "".join(parts)


def compile_scripts(snapshot: StateSnapshot, user: str) -> Dict[ResourceKind, str]:
    """One script fragment per reconciliation task kind ("" when nothing to do)."""

    def d(kind: ResourceKind) -> Diff:
        return diff(snapshot.observe(kind), snapshot.wanted_of(kind))

    pkgs = d(ResourceKind.PACKAGE)
    aur = d(ResourceKind.AUR_PACKAGE)
    services = d(ResourceKind.SERVICE)
    user_services = d(ResourceKind.USER_SERVICE)
    groups = d(ResourceKind.GROUP)
    locales = d(ResourceKind.LOCALE)

    return {
        ResourceKind.PACKAGE: package_script(pkgs.to_enable, pkgs.to_disable),
        ResourceKind.AUR_PACKAGE: aur_package_script(aur.to_enable, aur.to_disable),
        ResourceKind.GROUP: groups_script(user, groups.to_enable, groups.to_disable),
        ResourceKind.SERVICE: services_script(services.to_enable, services.to_disable)
        + settings_script(snapshot, user),
        ResourceKind.USER_SERVICE: services_script(
            user_services.to_enable, user_services.to_disable, user_scope=True
        ),
        ResourceKind.LOCALE: locales_script(locales.to_enable, locales.to_disable),
    }


def compile_tasks(snapshot: StateSnapshot, user: str) -> Dict[str, Optional[Task]]:
    """Map every reconciliation task id to its Task, or None when there is nothing to do."""
    out: Dict[str, Optional[Task]] = {}
    for kind, script in compile_scripts(snapshot, user).items():
        tpl = TEMPLATES[kind]
        out[task_id(kind)] = (
            Task(
                id=task_id(kind),
                priority=tpl.priority,
                requires_privilege=tpl.requires_privilege,
                display_name=tpl.display_name,
                icon=tpl.icon,
                script=script,
            )
            if script
            else None
        )
    return out


class ReconciliationEngine:
    """Keeps the queue's reconciliation tasks in step with store snapshots."""

    def __init__(self, queue: TaskQueue, *, user: str, log: Optional[logging.Logger] = None) -> None:
        self._queue = queue
        self.user = user
        self._log = log or logger
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, store: ResourceStateStore) -> None:
        if self._unsubscribe is not None:
            raise RuntimeError("ReconciliationEngine is already attached")
        self._unsubscribe = store.subscribe(self.on_snapshot)
        self.on_snapshot(store.snapshot())

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_snapshot(self, snapshot: StateSnapshot) -> None:
        for tid, task in compile_tasks(snapshot, self.user).items():
            existing = self._queue.find_by_id(tid)
            if task is None:
                if existing is not None:
                    self._queue.remove(tid)
                    self._log.info("Nothing left to reconcile for %s", tid)
            elif existing != task:
                self._queue.enqueue(task)
                self._log.info("Scheduled %s (priority=%s escalate=%s)", tid, task.priority, task.requires_privilege)
