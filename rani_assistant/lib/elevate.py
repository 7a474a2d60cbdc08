from __future__ import annotations

import os
from typing import Dict, List, Optional, Protocol, Sequence


class PrivilegeElevator(Protocol):
    """Turns an interpreter argv into one that runs with administrative privilege."""

    name: str

    def wrap(self, argv: Sequence[str]) -> List[str]:
        ...

    def describe_failure(self, returncode: int) -> Optional[str]:
        ...


class PkexecElevator:
    """polkit-based elevation (graphical authentication agent)."""

    name = "pkexec"

    # pkexec(1): 126 = dialog dismissed, 127 = not authorized / no agent.
    _FAILURES: Dict[int, str] = {
        126: "authentication dialog was dismissed",
        127: "not authorized (or no polkit agent running)",
    }

    def wrap(self, argv: Sequence[str]) -> List[str]:
        return ["pkexec", *argv]

    def describe_failure(self, returncode: int) -> Optional[str]:
        return self._FAILURES.get(returncode)


class NoopElevator:
    """For processes that already run as root."""

    name = "none"

    def wrap(self, argv: Sequence[str]) -> List[str]:
        return list(argv)

    def describe_failure(self, returncode: int) -> Optional[str]:
        return None


def elevator_for(name: str) -> PrivilegeElevator:
    key = (name or "").strip().lower()
    if key == "pkexec":
        return PkexecElevator()
    if key in {"none", "root"}:
        return NoopElevator()
    if key == "auto":
        return NoopElevator() if os.geteuid() == 0 else PkexecElevator()
    raise ValueError(f"Unknown privilege elevator: {name}")
