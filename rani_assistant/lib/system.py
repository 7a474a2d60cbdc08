from __future__ import annotations

import re
import shlex
from typing import Sequence

from ..resources import DEFAULT_DNS, HBLOCK_PACKAGE, DnsProvider
from .env import PATHS
from .pkg import package_script


def _join(names: Sequence[str]) -> str:
    return " ".join(shlex.quote(n) for n in names)


def services_script(enable: Sequence[str], disable: Sequence[str], *, user_scope: bool = False) -> str:
    base = "systemctl --user" if user_scope else "systemctl"
    lines: list[str] = []
    if disable:
        lines.append(f"{base} disable --now {_join(disable)}")
    if enable:
        lines.append(f"{base} enable --now {_join(enable)}")
    return "".join(ln + "\n" for ln in lines)


def groups_script(user: str, add: Sequence[str], remove: Sequence[str]) -> str:
    # gpasswd takes exactly one group per call.
    lines = [f"gpasswd -a {shlex.quote(user)} {shlex.quote(g)}" for g in add]
    lines += [f"gpasswd -d {shlex.quote(user)} {shlex.quote(g)}" for g in remove]
    return "".join(ln + "\n" for ln in lines)


def _sed_pattern(name: str) -> str:
    return re.sub(r"([.\[\]*^$/\\])", r"\\\1", name)


def _sed_replacement(name: str) -> str:
    return re.sub(r"([/&\\])", r"\\\1", name)


def locales_script(enable: Sequence[str], disable: Sequence[str], *, locale_gen: str = PATHS.locale_gen) -> str:
    """Uncomment / comment entries in locale.gen, then regenerate.

    Expressions are anchored so re-running is a no-op.
    """
    if not enable and not disable:
        return ""
    exprs: list[str] = []
    for name in enable:
        p, r = _sed_pattern(name), _sed_replacement(name)
        exprs += ["-e", f"s/^#[[:space:]]*{p}\\([[:space:]]\\)/{r}\\1/"]
    for name in disable:
        p, r = _sed_pattern(name), _sed_replacement(name)
        exprs += ["-e", f"s/^{p}\\([[:space:]]\\)/#{r}\\1/"]
    return f"sed -i {_join(exprs)} {shlex.quote(locale_gen)}\nlocale-gen\n"


def dns_script(provider: DnsProvider, *, conf_path: str = PATHS.dns_conf) -> str:
    if provider.name == DEFAULT_DNS.name:
        return f"rm -f {shlex.quote(conf_path)}\nnmcli general reload\n"
    servers = ",".join(provider.ips)
    return (
        f"printf '[global-dns-domain-*]\\nservers=%s\\n' {shlex.quote(servers)} > {shlex.quote(conf_path)}\n"
        "nmcli general reload\n"
    )


def login_shell_script(user: str, shell: str) -> str:
    return f'chsh -s "$(command -v {shlex.quote(shell)})" {shlex.quote(user)}\n'


def hblock_script(enabled: bool, *, remove_package: bool = False) -> str:
    if enabled:
        return "systemctl enable --now hblock.timer && hblock\n"
    script = "systemctl disable --now hblock.timer && hblock -S none -D none\n"
    if remove_package:
        # After the hosts file is restored; the timer unit goes with the package.
        script += package_script((), (HBLOCK_PACKAGE,))
    return script
