from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from .lib.scan import ScanResult
from .resources import (
    HBLOCK_PACKAGE,
    MAP_KINDS,
    SINGLETON_KINDS,
    ResourceKind,
    dns_provider_by_name,
    shell_by_name,
)

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, bool] = MappingProxyType({})


def prune(wanted: Mapping[str, bool], current: Mapping[str, bool]) -> Dict[str, bool]:
    """Drop wanted entries that already match current (absent counts as False)."""
    return {name: value for name, value in wanted.items() if current.get(name, False) != value}


def _freeze(maps: Mapping[ResourceKind, Mapping[str, bool]]) -> Mapping[ResourceKind, Mapping[str, bool]]:
    return MappingProxyType({k: MappingProxyType(dict(v)) for k, v in maps.items()})


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable view of current and wanted state at one point in time."""

    current: Mapping[ResourceKind, Mapping[str, bool]]
    wanted: Mapping[ResourceKind, Mapping[str, bool]]
    current_settings: Mapping[ResourceKind, Any]
    wanted_settings: Mapping[ResourceKind, Any]

    def observe(self, kind: ResourceKind) -> Any:
        if kind.is_singleton:
            return self.current_settings.get(kind)
        return self.current.get(kind, _EMPTY)

    def wanted_of(self, kind: ResourceKind) -> Any:
        if kind.is_singleton:
            return self.wanted_settings.get(kind)
        return self.wanted.get(kind, _EMPTY)

    def effective(self, kind: ResourceKind) -> Any:
        if kind.is_singleton:
            w = self.wanted_settings.get(kind)
            return self.current_settings.get(kind) if w is None else w
        merged = dict(self.observe(kind))
        merged.update(self.wanted_of(kind))
        return MappingProxyType(merged)

    def has_overrides(self) -> bool:
        return any(self.wanted.get(k) for k in MAP_KINDS) or any(
            self.wanted_settings.get(k) is not None for k in SINGLETON_KINDS
        )


Listener = Callable[[StateSnapshot], None]


class ResourceStateStore:
    """Current (observed) and wanted (user intent) state per resource kind.

    Every mutation replaces the snapshot wholesale and publishes it to all
    subscribers, synchronously and in mutation order.
    """

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._snapshot = StateSnapshot(
            current=_freeze({k: {} for k in MAP_KINDS}),
            wanted=_freeze({k: {} for k in MAP_KINDS}),
            current_settings=MappingProxyType({k: None for k in SINGLETON_KINDS}),
            wanted_settings=MappingProxyType({k: None for k in SINGLETON_KINDS}),
        )

    # -- reads -------------------------------------------------------------

    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    def observe(self, kind: ResourceKind) -> Any:
        return self._snapshot.observe(kind)

    def wanted(self, kind: ResourceKind) -> Any:
        return self._snapshot.wanted_of(kind)

    def effective(self, kind: ResourceKind) -> Any:
        return self._snapshot.effective(kind)

    # -- subscription ------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -- mutations ---------------------------------------------------------

    def want(self, kind: ResourceKind, name: str, value: Optional[bool]) -> StateSnapshot:
        """Set (or with None, drop) the wanted value of one map entry."""
        _require_map(kind)
        with self._lock:
            wanted = dict(self._snapshot.wanted_of(kind))
            if value is None:
                wanted.pop(name, None)
            else:
                wanted[name] = bool(value)
            return self._commit_wanted(kind, wanted)

    def toggle(self, kind: ResourceKind, name: Optional[str] = None) -> StateSnapshot:
        """Toggle a resource.

        Map kinds cycle: no override -> override (= not current) -> no override.
        The host-block singleton flips its effective value unconditionally.
        """
        if kind is ResourceKind.HBLOCK:
            with self._lock:
                return self.want_setting(kind, not bool(self._snapshot.effective(kind)))
        if kind.is_singleton:
            raise ValueError(f"{kind.value} has no on/off state; use want_setting()")
        if not name:
            raise ValueError(f"toggle({kind.value}) needs a resource name")
        with self._lock:
            wanted = dict(self._snapshot.wanted_of(kind))
            if name in wanted:
                del wanted[name]
            else:
                wanted[name] = not self._snapshot.observe(kind).get(name, False)
            return self._commit_wanted(kind, wanted)

    def want_setting(self, kind: ResourceKind, value: Any) -> StateSnapshot:
        """Set (or with None, drop) the wanted value of a singleton. Never pruned."""
        if not kind.is_singleton:
            raise ValueError(f"{kind.value} is not a singleton resource")
        if value is not None:
            value = _normalize_setting(kind, value)
        with self._lock:
            settings = dict(self._snapshot.wanted_settings)
            settings[kind] = value
            wanted = self._snapshot.wanted
            if kind is ResourceKind.HBLOCK and value is not None:
                wanted = self._with_hblock_package(value)
            snap = StateSnapshot(
                current=self._snapshot.current,
                wanted=wanted,
                current_settings=self._snapshot.current_settings,
                wanted_settings=MappingProxyType(settings),
            )
            self._log.debug("Wanted %s=%r", kind.value, value)
            return self._publish(snap)

    def restore(
        self,
        wanted: Mapping[ResourceKind, Mapping[str, bool]],
        wanted_settings: Mapping[ResourceKind, Any],
    ) -> StateSnapshot:
        """Load persisted user intent (pruned against the current state)."""
        with self._lock:
            merged = {k: prune(wanted.get(k) or {}, self._snapshot.observe(k)) for k in MAP_KINDS}
            settings = dict(self._snapshot.wanted_settings)
            for k in SINGLETON_KINDS:
                v = wanted_settings.get(k)
                settings[k] = _normalize_setting(k, v) if v is not None else None
            snap = StateSnapshot(
                current=self._snapshot.current,
                wanted=_freeze(merged),
                current_settings=self._snapshot.current_settings,
                wanted_settings=MappingProxyType(settings),
            )
            return self._publish(snap)

    def refresh(self, scan: ScanResult) -> StateSnapshot:
        """Replace observed state wholesale; wanted state only loses entries that now match."""
        with self._lock:
            current = {k: dict(v) for k, v in self._snapshot.current.items()}
            for kind, values in scan.maps.items():
                current[kind] = dict(values)
            settings = dict(self._snapshot.current_settings)
            for kind, value in scan.settings.items():
                settings[kind] = value
            wanted = {k: prune(self._snapshot.wanted_of(k), current.get(k) or {}) for k in MAP_KINDS}
            snap = StateSnapshot(
                current=_freeze(current),
                wanted=_freeze(wanted),
                current_settings=MappingProxyType(settings),
                wanted_settings=self._snapshot.wanted_settings,
            )
            self._log.info("State refreshed (%d kinds observed)", len(scan.maps) + len(scan.settings))
            return self._publish(snap)

    # -- internals ---------------------------------------------------------

    def _commit_wanted(self, kind: ResourceKind, wanted: Mapping[str, bool]) -> StateSnapshot:
        maps = dict(self._snapshot.wanted)
        maps[kind] = MappingProxyType(prune(wanted, self._snapshot.observe(kind)))
        snap = StateSnapshot(
            current=self._snapshot.current,
            wanted=MappingProxyType(maps),
            current_settings=self._snapshot.current_settings,
            wanted_settings=self._snapshot.wanted_settings,
        )
        self._log.debug("Wanted %s: %s", kind.value, dict(maps[kind]))
        return self._publish(snap)

    def _with_hblock_package(self, enabled: bool) -> Mapping[ResourceKind, Mapping[str, bool]]:
        """Wanted maps with the hblock package following the hblock setting.

        Enabling wants the package installed. Disabling only cancels a pending
        install; an installed package is removed by the service task itself.
        """
        pkgs = dict(self._snapshot.wanted_of(ResourceKind.PACKAGE))
        if enabled:
            pkgs[HBLOCK_PACKAGE] = True
        elif pkgs.get(HBLOCK_PACKAGE) is True:
            del pkgs[HBLOCK_PACKAGE]
        maps = dict(self._snapshot.wanted)
        maps[ResourceKind.PACKAGE] = MappingProxyType(prune(pkgs, self._snapshot.observe(ResourceKind.PACKAGE)))
        return MappingProxyType(maps)

    def _publish(self, snap: StateSnapshot) -> StateSnapshot:
        self._snapshot = snap
        for listener in list(self._listeners):
            listener(snap)
        return snap


def _require_map(kind: ResourceKind) -> None:
    if kind.is_singleton:
        raise ValueError(f"{kind.value} is a singleton resource; use want_setting()")


def _normalize_setting(kind: ResourceKind, value: Any) -> Any:
    if kind is ResourceKind.DNS:
        return dns_provider_by_name(str(value)).name
    if kind is ResourceKind.SHELL:
        if shell_by_name(str(value)) is None:
            raise ValueError(f"Unsupported login shell: {value}")
        return str(value)
    return bool(value)
