"""
Logging setup shared by the CLI and scripts.

Console output goes through rich's RichHandler on stderr so it never mixes
with terminal pass-through data on stdout. An optional log file captures
everything at DEBUG, including packet hex dumps.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "imx21_boot"


def setup_logging(
    name: str = ROOT_LOGGER,
    console_level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    rich_console: bool = True,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure and return the package logger.

    Handlers are replaced on every call, so the CLI can be invoked more
    than once in one process (tests do). Pass `console` to share one rich
    Console with live displays such as a progress bar.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # ── Console handler ──
    if rich_console:
        ch = RichHandler(
            console=console if console is not None else Console(stderr=True),
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S",
        ))
    ch.setLevel(console_level)
    logger.addHandler(ch)

    # ── File handler: captures everything (DEBUG+) ──
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(fh)
        logger.debug("Log file: %s", log_path)

    return logger
