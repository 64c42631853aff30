"""Availability checks for configured external tools.

Each tool either declares a check command (run through the executor with the
tool's environment) or falls back to a PATH lookup of its access command.
All tools are checked concurrently; the caller advertises only the usable
ones to the agent.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Iterable

from toolgate.catalog.models import ExternalTool, ShellAccess, ToolCatalog, ToolStatus
from toolgate.core.console import get_logger
from toolgate.core.result import Err
from toolgate.core.security.command import base_command
from toolgate.core.sys.execution import CommandExecutor

logger = get_logger(__name__)

DEFAULT_CHECK_TIMEOUT = 10.0


def check_command_exists(command: str) -> ToolStatus:
    """PATH lookup for the first word of ``command``."""
    binary = base_command(command)
    if binary is None:
        return ToolStatus(available=False, message="empty command")
    if shutil.which(binary) is None:
        return ToolStatus(available=False, message="command not found in PATH")
    return ToolStatus(available=True, message="command found")


class AvailabilityChecker:
    """Decide which configured tools are usable right now."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        timeout: float = DEFAULT_CHECK_TIMEOUT,
    ) -> None:
        self.executor = executor or CommandExecutor()
        self.timeout = timeout

    async def check(self, tool: ExternalTool) -> ToolStatus:
        if not tool.check.command:
            if isinstance(tool.access, ShellAccess) and tool.access.command:
                return check_command_exists(tool.access.command)
            return ToolStatus(available=True, message="no check defined")

        outcome = await self.executor.capture(
            tool.check.command, env=tool.build_env(), timeout=self.timeout
        )
        if isinstance(outcome, Err):
            return ToolStatus(
                available=False,
                message=f"check failed: {outcome.error.message}",
                exit_code=-1,
            )

        result = outcome.value
        stdout = result.stdout.strip()
        stderr = result.stderr.strip()

        if result.timed_out:
            return ToolStatus(
                available=False,
                message=f"check failed: timed out after {self.timeout:g}s",
                exit_code=-1,
                stdout=stdout,
                stderr=stderr,
            )

        if result.returncode != 0:
            return ToolStatus(
                available=False,
                message=f"check failed: exit status {result.returncode}",
                exit_code=result.returncode if result.returncode is not None else -1,
                stdout=stdout,
                stderr=stderr,
            )

        expected = tool.check.expected
        if expected and expected not in stdout + stderr:
            return ToolStatus(
                available=False,
                message=f"expected output not found: {expected}",
                exit_code=0,
                stdout=stdout,
                stderr=stderr,
            )

        return ToolStatus(available=True, message="check passed")

    async def check_all(
        self, tools: Iterable[ExternalTool]
    ) -> tuple[list[ExternalTool], dict[str, ToolStatus]]:
        """Check every tool; return the usable subset and a status per tool name."""
        tool_list = list(tools)
        statuses = await asyncio.gather(*(self.check(tool) for tool in tool_list))

        status_map: dict[str, ToolStatus] = {}
        available: list[ExternalTool] = []
        for tool, status in zip(tool_list, statuses, strict=True):
            status_map[tool.name] = status
            logger.debug("tool %s: %s", tool.name, status.message)
            if status.available:
                available.append(tool)
        return available, status_map


async def load_and_check_tools(
    catalog: ToolCatalog, checker: AvailabilityChecker | None = None
) -> tuple[list[ExternalTool], dict[str, ToolStatus]]:
    """Check every tool in ``catalog`` concurrently."""
    return await (checker or AvailabilityChecker()).check_all(catalog.tools)


__all__ = [
    "DEFAULT_CHECK_TIMEOUT",
    "AvailabilityChecker",
    "check_command_exists",
    "load_and_check_tools",
]
