from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ResourceKind(str, Enum):
    PACKAGE = "package"
    AUR_PACKAGE = "aur-package"
    SERVICE = "service"
    USER_SERVICE = "user-service"
    GROUP = "group"
    LOCALE = "locale"
    DNS = "dns"
    SHELL = "shell"
    HBLOCK = "hblock"

    @property
    def is_singleton(self) -> bool:
        return self in SINGLETON_KINDS


MAP_KINDS: Tuple[ResourceKind, ...] = (
    ResourceKind.PACKAGE,
    ResourceKind.AUR_PACKAGE,
    ResourceKind.SERVICE,
    ResourceKind.USER_SERVICE,
    ResourceKind.GROUP,
    ResourceKind.LOCALE,
)

SINGLETON_KINDS: Tuple[ResourceKind, ...] = (
    ResourceKind.DNS,
    ResourceKind.SHELL,
    ResourceKind.HBLOCK,
)

# Package that provides the hblock command and hblock.timer.
HBLOCK_PACKAGE = "hblock"


def parse_kind(raw: str) -> ResourceKind:
    try:
        return ResourceKind(raw.strip().lower())
    except ValueError as e:
        known = ", ".join(k.value for k in ResourceKind)
        raise ValueError(f"Unknown resource kind {raw!r} (expected one of: {known})") from e


@dataclass(frozen=True)
class DnsProvider:
    name: str
    description: str
    ips: Tuple[str, ...] = field(default_factory=tuple)


DEFAULT_DNS = DnsProvider(name="Default", description="Default DNS provided by your ISP", ips=("0.0.0.0",))

DNS_PROVIDERS: Tuple[DnsProvider, ...] = (
    DnsProvider(name="Google", description="Google Public DNS", ips=("8.8.8.8",)),
    DnsProvider(name="Cloudflare", description="Cloudflare Public DNS", ips=("1.1.1.1",)),
    DnsProvider(name="Quad9", description="Quad9 Public DNS", ips=("9.9.9.9",)),
    DEFAULT_DNS,
)


def dns_provider_by_name(name: str) -> DnsProvider:
    for p in DNS_PROVIDERS:
        if p.name.lower() == name.strip().lower():
            return p
    raise ValueError(f"Unknown DNS provider: {name}")


def dns_provider_for_ip(ip: str) -> DnsProvider:
    """Map a nameserver address to a known provider; unknown addresses map to Default."""
    for p in DNS_PROVIDERS:
        if ip in p.ips:
            return p
    return DEFAULT_DNS


@dataclass(frozen=True)
class ShellEntry:
    name: str
    default_settings: Optional[str] = None
    hint: Optional[str] = None


SHELLS: Tuple[ShellEntry, ...] = (
    ShellEntry(name="bash", default_settings="garuda-bash-settings"),
    ShellEntry(name="zsh", default_settings="garuda-zsh-settings"),
    ShellEntry(name="fish", default_settings="garuda-fish-settings", hint="not POSIX compatible"),
    ShellEntry(name="sh"),
)


def shell_by_name(name: str) -> Optional[ShellEntry]:
    for s in SHELLS:
        if s.name == name:
            return s
    return None
