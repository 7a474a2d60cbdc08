from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..resources import DEFAULT_DNS, ResourceKind, dns_provider_for_ip
from .command import run_cmd
from .env import PATHS

logger = logging.getLogger(__name__)

_BLOCKED_RE = re.compile(r"Blocked domains:\s*(\d+)")


@dataclass(frozen=True)
class ScanResult:
    """Observed live-system state. Kinds missing from a result are left untouched on refresh."""

    maps: Dict[ResourceKind, Dict[str, bool]] = field(default_factory=dict)
    settings: Dict[ResourceKind, Any] = field(default_factory=dict)


def parse_package_list(text: str) -> Dict[str, bool]:
    return {ln.strip(): True for ln in text.splitlines() if ln.strip()}


def parse_units_json(text: str) -> Dict[str, bool]:
    """Parse `systemctl list-units --output json`; a unit maps to True when active."""
    if not text.strip():
        return {}
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("systemctl JSON output must be a list")
    return {str(u["unit"]): u.get("active") == "active" for u in data if isinstance(u, dict) and u.get("unit")}


def parse_groups(text: str) -> Dict[str, bool]:
    # `groups alice` prints "alice : wheel audio"; `groups` alone prints "wheel audio".
    names = text.split(":", 1)[1] if ":" in text else text
    return {g: True for g in names.split()}


def parse_resolv_conf(text: str) -> Optional[str]:
    for ln in text.splitlines():
        parts = ln.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            return parts[1]
    return None


def parse_passwd_shell(text: str) -> Optional[str]:
    line = text.strip().splitlines()[0] if text.strip() else ""
    fields = line.split(":")
    if len(fields) < 7 or not fields[6]:
        return None
    return Path(fields[6]).name


def parse_hblock_count(text: str) -> int:
    m = _BLOCKED_RE.search(text)
    return int(m.group(1)) if m else 0


class SystemScanner:
    """Full re-scan of the live system through one-shot commands."""

    def __init__(self, user: str) -> None:
        self.user = user

    def installed_packages(self) -> Dict[str, bool]:
        r = run_cmd(["pacman", "-Qq"], check=False)
        if not r.ok:
            logger.warning("Could not list installed packages (rc=%s)", r.returncode)
            return {}
        return parse_package_list(r.stdout)

    def is_package_installed(self, pkg: str) -> bool:
        return run_cmd(["pacman", "-Qq", pkg], check=False).ok

    def services(self, *, user_scope: bool = False) -> Dict[str, bool]:
        argv = ["systemctl"]
        if user_scope:
            argv.append("--user")
        argv += ["list-units", "--type", "service", "--full", "--output", "json", "--no-pager"]
        r = run_cmd(argv, check=False)
        if not r.ok:
            logger.warning("Could not list %s services (rc=%s)", "user" if user_scope else "system", r.returncode)
            return {}
        try:
            return parse_units_json(r.stdout)
        except ValueError:
            logger.warning("Unparseable systemctl output", exc_info=True)
            return {}

    def groups(self) -> Dict[str, bool]:
        r = run_cmd(["groups", self.user], check=False)
        if not r.ok:
            logger.warning("Could not list groups of %s (rc=%s)", self.user, r.returncode)
            return {}
        return parse_groups(r.stdout)

    def locales(self) -> Dict[str, bool]:
        r = run_cmd(["localectl", "list-locales"], check=False)
        if not r.ok:
            logger.warning("Could not list locales (rc=%s)", r.returncode)
            return {}
        return parse_package_list(r.stdout)

    def dns(self) -> str:
        try:
            ip = parse_resolv_conf(Path(PATHS.resolv_conf).read_text(encoding="utf-8"))
        except OSError:
            logger.warning("Could not read %s", PATHS.resolv_conf)
            ip = None
        return dns_provider_for_ip(ip).name if ip else DEFAULT_DNS.name

    def shell(self) -> Optional[str]:
        r = run_cmd(["getent", "passwd", self.user], check=False)
        if not r.ok:
            logger.warning("Could not read login shell of %s (rc=%s)", self.user, r.returncode)
            return None
        return parse_passwd_shell(r.stdout)

    def hblock(self) -> bool:
        try:
            return parse_hblock_count(Path(PATHS.hosts).read_text(encoding="utf-8")) > 0
        except OSError:
            logger.warning("Could not read %s", PATHS.hosts)
            return False

    def scan(self) -> ScanResult:
        packages = self.installed_packages()
        result = ScanResult(
            maps={
                ResourceKind.PACKAGE: packages,
                ResourceKind.AUR_PACKAGE: dict(packages),
                ResourceKind.SERVICE: self.services(),
                ResourceKind.USER_SERVICE: self.services(user_scope=True),
                ResourceKind.GROUP: self.groups(),
                ResourceKind.LOCALE: self.locales(),
            },
            settings={
                ResourceKind.DNS: self.dns(),
                ResourceKind.SHELL: self.shell(),
                ResourceKind.HBLOCK: self.hblock(),
            },
        )
        logger.info(
            "Scan complete (packages=%d services=%d user_services=%d groups=%d locales=%d dns=%s shell=%s hblock=%s)",
            len(packages),
            len(result.maps[ResourceKind.SERVICE]),
            len(result.maps[ResourceKind.USER_SERVICE]),
            len(result.maps[ResourceKind.GROUP]),
            len(result.maps[ResourceKind.LOCALE]),
            result.settings[ResourceKind.DNS],
            result.settings[ResourceKind.SHELL],
            result.settings[ResourceKind.HBLOCK],
        )
        return result
