from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class AuditLogger:
    """Append-only JSONL record of execution passes and task outcomes."""

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def in_dir(cls, data_dir: str | Path) -> "AuditLogger":
        return cls(path=Path(data_dir).expanduser() / "audit.jsonl")

    def log(self, event: Dict[str, Any]) -> None:
        event = dict(event)
        event.setdefault("ts", time.time())
        line = json.dumps(event, sort_keys=True, default=str) + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)

    def record(self, action: str, ok: bool, *, error: Optional[str] = None, **details: Any) -> None:
        self.log(audit_event(action=action, ok=ok, details=details or None, error=error))

    def events(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        out: List[Dict[str, Any]] = []
        for raw in self.path.read_text(encoding="utf-8").splitlines():
            raw = raw.strip()
            if raw:
                out.append(json.loads(raw))
        return out[-limit:] if limit else out


def audit_event(
    *,
    action: str,
    ok: bool,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    e: Dict[str, Any] = {"action": action, "ok": ok}
    if details:
        e["details"] = details
    if error:
        e["error"] = error
    return e
