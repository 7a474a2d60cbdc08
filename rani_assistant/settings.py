from __future__ import annotations

import getpass
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .lib.env import PATHS


@dataclass(frozen=True)
class AppConfig:
    raw: Dict[str, Any]

    @property
    def user(self) -> str:
        return str(self.raw.get("user") or getpass.getuser())

    @property
    def data_dir(self) -> str:
        return str(((self.raw.get("paths") or {}).get("data_dir")) or PATHS.data_dir)

    @property
    def state_path(self) -> str:
        return str(((self.raw.get("paths") or {}).get("state")) or PATHS.state_default)

    @property
    def log_path(self) -> str:
        return str(((self.raw.get("paths") or {}).get("log")) or PATHS.log_default)

    @property
    def script_path(self) -> str:
        return str(Path(self.data_dir) / PATHS.script_name)

    @property
    def shell(self) -> List[str]:
        argv = (self.raw.get("session") or {}).get("shell") or ["bash", "-l"]
        if isinstance(argv, str):
            argv = argv.split()
        return [str(a) for a in argv]

    @property
    def elevator(self) -> str:
        return str(((self.raw.get("session") or {}).get("elevator")) or "pkexec")

    def _seconds(self, section: str, key: str, default: float) -> float:
        value = (self.raw.get(section) or {}).get(key)
        return default if value is None else float(value)

    @property
    def startup_timeout_s(self) -> float:
        return self._seconds("session", "startup_timeout_s", 30.0)

    @property
    def stop_grace_s(self) -> float:
        return self._seconds("session", "stop_grace_s", 5.0)

    @property
    def poll_interval_s(self) -> float:
        return self._seconds("execution", "poll_interval_s", 0.5)

    @property
    def sentinel_grace_s(self) -> float:
        return self._seconds("execution", "sentinel_grace_s", 2.0)

    @property
    def audit_path(self) -> Optional[str]:
        p = (self.raw.get("paths") or {}).get("audit")
        return str(p) if p else None


def load_config(path: Optional[str]) -> AppConfig:
    """Load the YAML config; a missing default config yields built-in defaults."""

    if path is None:
        p = Path(PATHS.config_default)
        if not p.exists():
            return AppConfig(raw={})
    else:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("config must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read config.yaml") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("config.yaml must contain a mapping/object")

    return AppConfig(raw=raw)
