# tests/conftest.py

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from rani_assistant.coordinator import ExecutionCoordinator
from rani_assistant.output_bus import OutputBus
from rani_assistant.settings import AppConfig
from rani_assistant.store import ResourceStateStore
from rani_assistant.tasks import Task, TaskQueue

from .fakes import FakeScanner, FakeSessionFactory

requires_bash = pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("sha256sum") is None,
    reason="needs bash and sha256sum",
)


def make_task(
    task_id: str,
    priority: int = 10,
    *,
    privileged: bool = False,
    script: str = "true\n",
) -> Task:
    return Task(
        id=task_id,
        priority=priority,
        requires_privilege=privileged,
        display_name=task_id,
        icon="pi pi-box",
        script=script,
    )


@pytest.fixture()
def bus() -> OutputBus:
    return OutputBus()


@pytest.fixture()
def queue() -> TaskQueue:
    return TaskQueue()


@pytest.fixture()
def store() -> ResourceStateStore:
    return ResourceStateStore()


@pytest.fixture()
def factory(bus: OutputBus) -> FakeSessionFactory:
    return FakeSessionFactory(bus)


@pytest.fixture()
def scanner() -> FakeScanner:
    return FakeScanner()


@pytest.fixture()
def script_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "taskscript.tmp"


@pytest.fixture()
def coordinator(queue: TaskQueue, bus: OutputBus, factory: FakeSessionFactory, script_path: Path) -> ExecutionCoordinator:
    """
    Coordinator wired to fake sessions; polling is effectively instant.
    """
    return ExecutionCoordinator(
        queue,
        bus,
        factory,
        script_path=script_path,
        poll_interval_s=0.001,
        sentinel_grace_s=0.05,
    )


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        raw={
            "user": "alice",
            "paths": {
                "data_dir": str(tmp_path / "data"),
                "state": str(tmp_path / "state.json"),
                "log": str(tmp_path / "rani.log"),
                "audit": str(tmp_path / "audit.jsonl"),
            },
            "execution": {"poll_interval_s": 0.001, "sentinel_grace_s": 0.05},
        }
    )
