from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    timeout_s: float | None = None,
) -> CmdResult:
    """Run a command to completion with consistent logging.

    - Always logs the command.
    - Forces LANG=C so parsers see untranslated output.
    - A missing executable or a timeout is reported as returncode 127/124
      instead of raising, unless check=True.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env={**os.environ, "LANG": "C", **(env or {})},
            timeout=timeout_s,
        )
        result = CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
    except FileNotFoundError as e:
        result = CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired as e:
        result = CmdResult(argv=argv_list, returncode=124, stdout="", stderr=f"timed out after {e.timeout}s")

    if result.stdout:
        logger.debug("STDOUT %s", result.stdout.strip())
    if result.stderr:
        logger.debug("STDERR %s", result.stderr.strip())

    if check and result.returncode != 0:
        raise RuntimeError(f"Command failed ({result.returncode}): {fmt_argv(argv_list)}\n{result.stderr}")

    return result
