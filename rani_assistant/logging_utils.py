from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from .lib.env import APP_NAME, PATHS

DEFAULT_LOG_PATH = PATHS.log_default

# Session output mirrored line by line by OutputLogSink.
TRANSCRIPT_LOGGER = "rani_assistant.output"

_FORMAT = logging.Formatter(
    fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)


class _TranscriptFilter(logging.Filter):
    """Keeps session output off a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(TRANSCRIPT_LOGGER)


def _open_log_file(log_path: str) -> Tuple[logging.Handler, str]:
    # The state directory can be missing or read-only in a live session.
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / f"{APP_NAME}.log")
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    *,
    verbose: bool = False,
    also_console: bool = True,
) -> str:
    """Configure logging for one CLI run.

    The log file gets INFO and up plus the full session transcript, so every
    pass can be reconstructed from it. The console (stderr) gets INFO and up;
    with ``verbose`` it also gets DEBUG records and the transcript.

    Calling it again is a no-op. Returns the log file actually used.
    """

    root = logging.getLogger()
    configured = getattr(root, "_rani_log_path", None)
    if configured:
        return configured

    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger(TRANSCRIPT_LOGGER).setLevel(logging.DEBUG)

    file_handler, chosen_path = _open_log_file(log_path)
    file_handler.setFormatter(_FORMAT)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(_FORMAT)
        if not verbose:
            console.addFilter(_TranscriptFilter())
        root.addHandler(console)

    setattr(root, "_rani_log_path", chosen_path)
    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
