# tests/test_scan.py

from __future__ import annotations

import json

import pytest

from rani_assistant.lib import scan
from rani_assistant.lib.command import CmdResult
from rani_assistant.lib.scan import (
    SystemScanner,
    parse_groups,
    parse_hblock_count,
    parse_package_list,
    parse_passwd_shell,
    parse_resolv_conf,
    parse_units_json,
)
from rani_assistant.resources import ResourceKind


def test_parse_package_list_skips_blank_lines() -> None:
    assert parse_package_list("vim\n\nhtop\n") == {"vim": True, "htop": True}


def test_parse_units_json_marks_active_units() -> None:
    text = json.dumps(
        [
            {"unit": "sshd.service", "load": "loaded", "active": "active", "sub": "running"},
            {"unit": "cups.service", "load": "loaded", "active": "inactive", "sub": "dead"},
        ]
    )
    assert parse_units_json(text) == {"sshd.service": True, "cups.service": False}
    assert parse_units_json("") == {}
    with pytest.raises(ValueError):
        parse_units_json('{"unit": "x"}')


def test_parse_groups_handles_both_formats() -> None:
    assert parse_groups("alice : wheel audio\n") == {"wheel": True, "audio": True}
    assert parse_groups("wheel audio\n") == {"wheel": True, "audio": True}


def test_parse_resolv_conf_takes_first_nameserver() -> None:
    text = "# generated\nsearch lan\nnameserver 1.1.1.1\nnameserver 8.8.8.8\n"
    assert parse_resolv_conf(text) == "1.1.1.1"
    assert parse_resolv_conf("search lan\n") is None


def test_parse_passwd_shell_returns_basename() -> None:
    assert parse_passwd_shell("alice:x:1000:1000:Alice:/home/alice:/usr/bin/zsh\n") == "zsh"
    assert parse_passwd_shell("") is None


def test_parse_hblock_count() -> None:
    assert parse_hblock_count("# Blocked domains: 1234\n0.0.0.0 ads.example\n") == 1234
    assert parse_hblock_count("127.0.0.1 localhost\n") == 0


def test_scanner_degrades_on_command_failure(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    def fake_run(argv, **kw):
        if argv[0] == "pacman":
            return CmdResult(argv=list(argv), returncode=0, stdout="vim\nhtop\n", stderr="")
        return CmdResult(argv=list(argv), returncode=127, stdout="", stderr="not found")

    resolv = tmp_path / "resolv.conf"
    resolv.write_text("nameserver 9.9.9.9\n", encoding="utf-8")
    hosts = tmp_path / "hosts"
    hosts.write_text("# Blocked domains: 10\n", encoding="utf-8")

    monkeypatch.setattr(scan, "run_cmd", fake_run)
    monkeypatch.setattr(scan, "PATHS", scan.PATHS.__class__(resolv_conf=str(resolv), hosts=str(hosts)))

    result = SystemScanner("alice").scan()

    assert result.maps[ResourceKind.PACKAGE] == {"vim": True, "htop": True}
    assert result.maps[ResourceKind.AUR_PACKAGE] == {"vim": True, "htop": True}
    assert result.maps[ResourceKind.SERVICE] == {}
    assert result.maps[ResourceKind.GROUP] == {}
    assert result.settings[ResourceKind.DNS] == "Quad9"
    assert result.settings[ResourceKind.SHELL] is None
    assert result.settings[ResourceKind.HBLOCK] is True


def test_unknown_nameserver_maps_to_default(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    resolv = tmp_path / "resolv.conf"
    resolv.write_text("nameserver 192.168.1.1\n", encoding="utf-8")
    monkeypatch.setattr(scan, "PATHS", scan.PATHS.__class__(resolv_conf=str(resolv)))
    assert SystemScanner("alice").dns() == "Default"
