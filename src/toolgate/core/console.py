"""Rich consoles and the toolgate log stream.

Command output goes to ``console``. Status lines and logs go to
``stderr_console`` so piping ``toolgate run`` keeps stdout clean.

Everything logs under the ``toolgate`` namespace:
    - WARNING: policy rejections, command timeouts, oracle failures,
      unreadable or unwritable cache entries, observer errors
    - INFO: each discovery step, external tools dropped as unavailable
    - DEBUG: process spawns, availability results, loaded tool files

The OpenAI client and its HTTP stack log every request at INFO; they are
held at WARNING unless ``--verbose`` is given.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "toolgate"
NOISY_LOGGERS = ("openai", "httpx", "httpcore")

console = Console()
stderr_console = Console(stderr=True)


def _normalize_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    # getLevelName returns "Level X" for names it does not know.
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Route all logging through one Rich handler on stderr."""
    numeric_level = logging.DEBUG if verbose else _normalize_level(level)

    # Commands and tool output may contain brackets; never parse them as markup.
    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(numeric_level if verbose else max(numeric_level, logging.WARNING))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or LOGGER_NAME)
