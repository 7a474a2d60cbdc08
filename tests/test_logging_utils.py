# tests/test_logging_utils.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List

import pytest

from rani_assistant.logging_utils import TRANSCRIPT_LOGGER, configure_logging


@pytest.fixture()
def configure():
    """configure_logging() that undoes itself; returns (path, handlers added)."""
    root = logging.getLogger()
    level = root.level
    transcript_level = logging.getLogger(TRANSCRIPT_LOGGER).level
    added: List[logging.Handler] = []

    def run(*args, **kwargs):
        before = list(root.handlers)
        path = configure_logging(*args, **kwargs)
        new = [h for h in root.handlers if h not in before]
        added.extend(new)
        return path, new

    yield run

    for h in added:
        root.removeHandler(h)
        h.close()
    root.setLevel(level)
    logging.getLogger(TRANSCRIPT_LOGGER).setLevel(transcript_level)
    if hasattr(root, "_rani_log_path"):
        delattr(root, "_rani_log_path")


def _console(handlers: List[logging.Handler]) -> logging.Handler:
    return next(h for h in handlers if not isinstance(h, logging.FileHandler))


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_transcript_goes_to_file_but_not_quiet_console(configure: Callable, tmp_path: Path) -> None:
    path, handlers = configure(str(tmp_path / "logs" / "rani.log"))

    assert path == str(tmp_path / "logs" / "rani.log")
    logging.getLogger(TRANSCRIPT_LOGGER).debug("OUT hello")
    logging.getLogger("rani_assistant.test").debug("hidden detail")
    for h in handlers:
        h.flush()

    text = Path(path).read_text(encoding="utf-8")
    assert "OUT hello" in text
    assert "hidden detail" not in text
    assert not _console(handlers).filter(_record(TRANSCRIPT_LOGGER, logging.DEBUG))
    assert _console(handlers).filter(_record("rani_assistant.app", logging.INFO))


def test_verbose_console_mirrors_transcript(configure: Callable, tmp_path: Path) -> None:
    _, handlers = configure(str(tmp_path / "rani.log"), verbose=True)

    assert logging.getLogger().level == logging.DEBUG
    assert _console(handlers).filter(_record(TRANSCRIPT_LOGGER, logging.DEBUG))


def test_second_call_keeps_first_configuration(configure: Callable, tmp_path: Path) -> None:
    first, handlers = configure(str(tmp_path / "a.log"), also_console=False)
    assert len(handlers) == 1

    again, more = configure(str(tmp_path / "b.log"))
    assert again == first
    assert more == []
