"""Command observation hook.

Observers are told about every process the gateway spawns, discovery probes
included. They are fire-and-forget: a failing observer is logged and never
affects the command it was told about.
"""

from __future__ import annotations

from collections.abc import Callable

from toolgate.core.console import get_logger

logger = get_logger(__name__)

# (command, is_discovery_step)
CommandObserver = Callable[[str, bool], None]


def notify_observer(observer: CommandObserver | None, command: str, is_discovery: bool) -> None:
    if observer is None:
        return
    try:
        observer(command, is_discovery)
    except Exception as exc:
        logger.warning("Command observer failed for %r: %s", command, exc)


__all__ = ["CommandObserver", "notify_observer"]
