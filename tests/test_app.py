# tests/test_app.py

from __future__ import annotations

import argparse

import pytest

from rani_assistant.app import Assistant
from rani_assistant.audit import AuditLogger
from rani_assistant.main import _parse_switch, build_parser
from rani_assistant.output_bus import OutputBus
from rani_assistant.resources import ResourceKind
from rani_assistant.settings import AppConfig

from .fakes import FakeScanner, FakeSessionFactory

PKG = ResourceKind.PACKAGE


@pytest.fixture()
def app(config: AppConfig, scanner: FakeScanner, tmp_path) -> Assistant:
    bus = OutputBus()
    a = Assistant(
        config,
        scanner=scanner,
        session_factory=FakeSessionFactory(bus),
        audit=AuditLogger(path=tmp_path / "audit.jsonl"),
        bus=bus,
    )
    a.refresh()
    yield a
    a.close()


def _factory(app: Assistant) -> FakeSessionFactory:
    return app.coordinator._factory  # type: ignore[return-value]


def test_apply_converges_and_refreshes(app: Assistant, scanner: FakeScanner) -> None:
    def runner(script: str) -> int:
        # Pretend pacman did its job.
        scanner.result.maps[PKG]["htop"] = True
        return 0

    _factory(app).runner = runner
    app.store.toggle(PKG, "htop")
    assert app.queue.count() == 1

    scans_before = scanner.scans
    result = app.apply()

    assert result.ran == ["reconcile:package"]
    assert scanner.scans == scans_before + 1
    assert dict(app.store.wanted(PKG)) == {}
    assert app.store.observe(PKG)["htop"] is True
    assert app.queue.count() == 0


def test_unconverged_tasks_are_requeued_by_refresh(app: Assistant) -> None:
    _factory(app).runner = lambda script: 1
    app.store.toggle(PKG, "htop")

    result = app.apply()

    assert result.failed == ["reconcile:package"]
    assert app.queue.find_by_id("reconcile:package") is not None


def test_ensure_package_skips_installed(app: Assistant, scanner: FakeScanner) -> None:
    scanner.result.maps[PKG]["git"] = True
    app.refresh()
    assert app.ensure_package("git")
    assert _factory(app).created == []


def test_ensure_package_installs_missing(app: Assistant, scanner: FakeScanner) -> None:
    _factory(app).runner = lambda script: scanner.installed.add("git") or 0

    assert app.ensure_package("git")

    session = _factory(app).session(True)
    assert session.scripts == ["pacman -S --noconfirm git"]


def test_overrides_persist_between_runs(config: AppConfig, scanner: FakeScanner) -> None:
    first = Assistant(config, scanner=scanner, session_factory=FakeSessionFactory(OutputBus()))
    first.refresh()
    first.store.want(ResourceKind.SERVICE, "bluetooth.service", True)
    first.store.want_setting(ResourceKind.SHELL, "fish")
    state = first.persisted_state()
    first.close()

    second = Assistant(config, scanner=scanner, session_factory=FakeSessionFactory(OutputBus()))
    second.refresh()
    second.restore(state)

    assert dict(second.store.wanted(ResourceKind.SERVICE)) == {"bluetooth.service": True}
    assert second.store.wanted(ResourceKind.SHELL) == "fish"
    task = second.queue.find_by_id("reconcile:service")
    assert task is not None and "chsh" in task.script
    second.close()


def test_parse_switch() -> None:
    assert _parse_switch("on") is True
    assert _parse_switch("Remove") is False
    assert _parse_switch("clear") is None
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_switch("maybe")


def test_cli_parses_subcommands() -> None:
    args = build_parser().parse_args(["--state", "s.yaml", "want", "package", "htop", "off"])
    assert args.command == "want"
    assert args.kind == "package" and args.name == "htop" and args.value is False
    assert args.state == "s.yaml"

    args = build_parser().parse_args(["set", "dns", "Quad9"])
    assert args.kind == "dns" and args.value == "Quad9"

    with pytest.raises(SystemExit):
        build_parser().parse_args(["set", "package", "x"])
