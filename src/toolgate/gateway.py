"""
Shell gateway: the single entry point an agent calls with a raw command.

Each invocation is sequenced as:
    1. Extract and type-check the ``command`` argument
    2. Validate it against the allowlist policy
    3. If it names an external tool, run discovery and return the transcript
       instead of executing (every use, not just the first)
    4. Otherwise notify the observer and execute under the command deadline

Usage:
    gateway = await build_gateway(config)
    token = gateway.set_user_request("list my open pull requests")
    result = await gateway.invoke({"command": "gh pr list"})
    print(result.value if isinstance(result, Ok) else result.error)
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from contextvars import ContextVar, Token
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from toolgate.cache import SchemaCache
from toolgate.catalog.availability import AvailabilityChecker, load_and_check_tools
from toolgate.catalog.loader import load_catalog
from toolgate.catalog.models import ToolCatalog
from toolgate.core.config import AppConfig
from toolgate.core.console import get_logger
from toolgate.core.observer import CommandObserver, notify_observer
from toolgate.core.result import (
    ConfigurationError,
    Err,
    Ok,
    PolicyRejection,
    Result,
    ToolgateError,
    ToolValidationError,
)
from toolgate.core.security.command import CommandPolicy, CommandVerdict
from toolgate.core.sys.execution import DEFAULT_TIMEOUT, CommandExecutor
from toolgate.discovery.engine import DiscoveryEngine
from toolgate.discovery.oracle import build_oracle

logger = get_logger(__name__)

DISCOVERY_NOTICE = (
    "\n\n=== IMPORTANT: Tool discovery complete. Do NOT re-run the same command. ===\n"
    "Use the discovered information above to construct a VALID command.\n"
    "Check the available subcommands and their options before proceeding."
)

# Intent behind the current agent task; read by discovery.
_user_request: ContextVar[str] = ContextVar("toolgate_user_request", default="")


@runtime_checkable
class Tool(Protocol):
    """Anything the agent can call by name with a JSON argument object."""

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def parameters(self) -> dict[str, Any]: ...

    async def execute(self, args: Mapping[str, Any]) -> Result[str, ToolgateError]: ...


def definition(tool: Tool) -> dict[str, Any]:
    """Function-calling definition for ``tool``."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


class ToolRegistry:
    """Tools by name.

    Readers use an immutable snapshot and never lock; registration swaps in
    a new snapshot under a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: Mapping[str, Tool] = MappingProxyType({})

    def register(self, tool: Tool) -> None:
        with self._lock:
            tools = dict(self._tools)
            tools[tool.name] = tool
            self._tools = MappingProxyType(tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    async def execute(self, name: str, args: Mapping[str, Any]) -> Result[str, ToolgateError]:
        tool = self.get(name)
        if tool is None:
            return Err(ToolValidationError(f"unknown tool: {name}"))
        return await tool.execute(args)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[dict[str, Any]]:
        return [definition(tool) for tool in self._tools.values()]


class ToolGateway:
    """Allowlisted shell access with discovery for external tools."""

    name = "shell"

    def __init__(
        self,
        catalog: ToolCatalog,
        executor: CommandExecutor | None = None,
        engine: DiscoveryEngine | None = None,
        *,
        command_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.catalog = catalog
        self.policy: CommandPolicy = catalog.policy()
        self.executor = executor or CommandExecutor(default_timeout=command_timeout)
        self.engine = engine or DiscoveryEngine(self.executor)
        self.command_timeout = command_timeout
        self._observer: CommandObserver | None = None

    @property
    def description(self) -> str:
        allowed = ", ".join(self.catalog.allowlist)
        text = (
            "Execute a shell command. Only commands from the allowlist are permitted: "
            f"{allowed}"
        )
        external = self.catalog.shell_commands()
        if external:
            text += ", " + ", ".join(external)
        return text

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute",
                },
            },
            "required": ["command"],
        }

    def external_tools_prompt(self) -> str:
        """Markdown block advertising external tools, or ``""`` when there are none."""
        if not self.catalog.tools:
            return ""
        lines = ["\n## Available External Tools\n"]
        for tool in self.catalog.tools:
            command = tool.shell_command
            if command is None:
                continue
            line = f"- **{command}**: {tool.description}"
            if tool.when_to_use:
                line += f" ({tool.when_to_use})"
            lines.append(line)
        return "\n".join(lines) + "\n"

    def set_user_request(self, request: str) -> Token[str]:
        """Record the intent for the current task; returns a token for reset."""
        return _user_request.set(request)

    def reset_user_request(self, token: Token[str]) -> None:
        _user_request.reset(token)

    def set_command_observer(self, observer: CommandObserver | None) -> None:
        self._observer = observer

    async def invoke(
        self,
        args: Mapping[str, Any],
        observer: CommandObserver | None = None,
        user_request: str | None = None,
    ) -> Result[str, ToolgateError]:
        if "command" not in args:
            return Err(ToolValidationError("missing required parameter: command"))
        command = args["command"]
        if not isinstance(command, str):
            return Err(ToolValidationError("command must be a string"))

        verdict, reason = self.policy.validate(command)
        if verdict != CommandVerdict.ALLOWED:
            logger.warning("Rejected command %r: %s", command, reason)
            return Err(PolicyRejection(reason, verdict=verdict))

        hook = observer or self._observer
        tool = self.engine.needs_discovery(command, self.catalog)
        if tool is not None:
            request = _user_request.get() if user_request is None else user_request
            discovery = await self.engine.discover(tool, request, observer=hook)
            return Ok(discovery.text + DISCOVERY_NOTICE)

        notify_observer(hook, command, False)
        return await self.executor.run(
            command, env=self.catalog.env_for(command), timeout=self.command_timeout
        )

    async def execute(self, args: Mapping[str, Any]) -> Result[str, ToolgateError]:
        return await self.invoke(args)


async def build_gateway(
    config: AppConfig,
    *,
    check_availability: bool = True,
) -> Result[ToolGateway, ConfigurationError]:
    """Assemble a gateway from configuration.

    Only tools whose availability check passes are exposed unless
    ``check_availability`` is False.
    """
    loaded = load_catalog(config)
    if isinstance(loaded, Err):
        return loaded
    catalog = loaded.value

    executor = CommandExecutor(default_timeout=config.shell.command_timeout)
    if check_availability and catalog.tools:
        checker = AvailabilityChecker(executor, timeout=config.shell.check_timeout)
        available, statuses = await load_and_check_tools(catalog, checker)
        for name, status in statuses.items():
            if not status.available:
                logger.info("External tool %s unavailable: %s", name, status.message)
        catalog = catalog.with_tools(available)

    engine = DiscoveryEngine(
        executor,
        build_oracle(config.oracle),
        config=config.discovery,
        cache=SchemaCache(config.paths.cache_dir),
    )
    return Ok(
        ToolGateway(catalog, executor, engine, command_timeout=config.shell.command_timeout)
    )


__all__ = [
    "DISCOVERY_NOTICE",
    "Tool",
    "ToolGateway",
    "ToolRegistry",
    "build_gateway",
    "definition",
]
