from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from .resources import MAP_KINDS, SINGLETON_KINDS, ResourceKind, parse_kind
from .store import StateSnapshot

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def _yaml():
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("YAML state requested but PyYAML is not available. Use a .json state file.") from e
    return yaml


def load_state(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    text = p.read_text(encoding="utf-8")
    if _detect_format(p) in {"yaml", "yml"}:
        data = _yaml().safe_load(text) or {}
    else:
        data = json.loads(text) if text.strip() else {}

    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")

    return data


def save_state(path: str | Path, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        text = _yaml().safe_dump(state, sort_keys=False)
    else:
        text = json.dumps(state, indent=2, sort_keys=True) + "\n"

    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(p)


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys with empty overrides (without overriding user values)."""

    state.setdefault("version", STATE_VERSION)
    wanted = state.setdefault("wanted", {})
    for kind in MAP_KINDS:
        wanted.setdefault(kind.value, {})
    settings = state.setdefault("settings", {})
    for kind in SINGLETON_KINDS:
        settings.setdefault(kind.value, None)
    return state


def state_from_snapshot(snapshot: StateSnapshot) -> Dict[str, Any]:
    """Only user intent is persisted; current state is always re-scanned."""
    return ensure_defaults(
        {
            "version": STATE_VERSION,
            "wanted": {k.value: dict(sorted(snapshot.wanted_of(k).items())) for k in MAP_KINDS},
            "settings": {k.value: snapshot.wanted_of(k) for k in SINGLETON_KINDS},
        }
    )


def overrides_from_state(
    state: Mapping[str, Any],
) -> Tuple[Dict[ResourceKind, Dict[str, bool]], Dict[ResourceKind, Any]]:
    wanted: Dict[ResourceKind, Dict[str, bool]] = {}
    for raw_kind, entries in (state.get("wanted") or {}).items():
        try:
            kind = parse_kind(raw_kind)
        except ValueError:
            logger.warning("Ignoring unknown resource kind in state: %s", raw_kind)
            continue
        if kind.is_singleton or not isinstance(entries, dict):
            logger.warning("Ignoring malformed wanted entries for %s", raw_kind)
            continue
        wanted[kind] = {str(name): bool(v) for name, v in entries.items()}

    settings: Dict[ResourceKind, Any] = {}
    for raw_kind, value in (state.get("settings") or {}).items():
        try:
            kind = parse_kind(raw_kind)
        except ValueError:
            logger.warning("Ignoring unknown setting in state: %s", raw_kind)
            continue
        if kind.is_singleton:
            settings[kind] = value

    return wanted, settings
