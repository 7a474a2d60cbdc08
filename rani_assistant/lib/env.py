from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

APP_NAME = "rani-assistant"


def _xdg(var: str, fallback: str) -> Path:
    raw = os.environ.get(var)
    if raw:
        return Path(raw)
    return Path.home() / fallback


@dataclass(frozen=True)
class Paths:
    data_dir: str = str(_xdg("XDG_DATA_HOME", ".local/share") / APP_NAME)
    state_default: str = str(_xdg("XDG_STATE_HOME", ".local/state") / APP_NAME / "state.json")
    log_default: str = str(_xdg("XDG_STATE_HOME", ".local/state") / APP_NAME / f"{APP_NAME}.log")
    config_default: str = str(_xdg("XDG_CONFIG_HOME", ".config") / APP_NAME / "config.yaml")
    script_name: str = "taskscript.tmp"
    locale_gen: str = "/etc/locale.gen"
    dns_conf: str = "/etc/NetworkManager/conf.d/10-rani-assistant-dns.conf"
    resolv_conf: str = "/etc/resolv.conf"
    hosts: str = "/etc/hosts"


PATHS = Paths()
