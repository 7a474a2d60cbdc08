from __future__ import annotations

import shlex
from typing import Sequence

PACMAN = "pacman"
AUR_HELPER = "paru"


def _join(names: Sequence[str]) -> str:
    return " ".join(shlex.quote(n) for n in names)


def package_script(
    install: Sequence[str],
    remove: Sequence[str],
    *,
    helper: str = PACMAN,
) -> str:
    """Batch removals and installs into at most one invocation each.

    Removal runs first so a swap (remove A, install B) never conflicts.
    """
    lines: list[str] = []
    if remove:
        lines.append(f"{helper} --noconfirm -R {_join(remove)}")
    if install:
        lines.append(f"{helper} --noconfirm --needed -S {_join(install)}")
    return "".join(ln + "\n" for ln in lines)


def aur_package_script(install: Sequence[str], remove: Sequence[str]) -> str:
    return package_script(install, remove, helper=AUR_HELPER)


def ensure_package_script(pkg: str) -> str:
    return f"{PACMAN} -S --noconfirm {shlex.quote(pkg)}\n"
