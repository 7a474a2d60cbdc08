from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# progress() value when the running task is not (or no longer) in the queue,
# e.g. a single-shot "run now" task.
DETACHED = 0


@dataclass(frozen=True)
class Task:
    id: str
    priority: int
    requires_privilege: bool
    display_name: str
    icon: str
    script: str


@dataclass(frozen=True)
class _Entry:
    seq: int
    task: Task


class TaskQueue:
    """Ordered, deduplicated set of pending tasks.

    Lower priority runs first; equal priorities keep arrival order. Replacing
    a task (same id) counts as a new arrival.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._seq = itertools.count()

    def enqueue(self, task: Task) -> Task:
        with self._lock:
            replaced = task.id in self._entries
            self._entries.pop(task.id, None)
            self._entries[task.id] = _Entry(seq=next(self._seq), task=task)
        logger.debug("%s task %s (priority=%s)", "Replaced" if replaced else "Queued", task.id, task.priority)
        return task

    def remove(self, task_id: str) -> Optional[Task]:
        with self._lock:
            entry = self._entries.pop(task_id, None)
        if entry is not None:
            logger.debug("Removed task %s", task_id)
        return entry.task if entry else None

    def remove_if_same(self, task: Task) -> bool:
        """Remove task only if the queued entry is still this exact version."""
        with self._lock:
            entry = self._entries.get(task.id)
            if entry is None or entry.task != task:
                return False
            del self._entries[task.id]
        logger.debug("Removed task %s", task.id)
        return True

    def find_by_id(self, task_id: str) -> Optional[Task]:
        with self._lock:
            entry = self._entries.get(task_id)
        return entry.task if entry else None

    def sorted_tasks(self) -> List[Task]:
        with self._lock:
            entries = list(self._entries.values())
        return [e.task for e in sorted(entries, key=lambda e: (e.task.priority, e.seq))]

    def dequeue_all_sorted(self) -> List[Task]:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        return [e.task for e in sorted(entries, key=lambda e: (e.task.priority, e.seq))]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def progress(self, current_id: Optional[str]) -> Optional[int]:
        """1-based rank of current_id in execution order.

        None when nothing is running, DETACHED when the running task is not queued.
        """
        if current_id is None:
            return None
        for idx, task in enumerate(self.sorted_tasks(), start=1):
            if task.id == current_id:
                return idx
        return DETACHED

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._entries
