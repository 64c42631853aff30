"""External tool descriptors and the read-only tool catalog.

An external tool is a command-line program the agent may use through the
shell gateway once it has been explored. Access is modelled as a tagged
variant on ``type`` so that non-shell mechanisms can be added later without
touching the validator; only ``"shell"`` is implemented today.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from string import Template
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from toolgate.core.security.command import CommandPolicy, base_command

SHELL_ACCESS = "shell"


class ToolAccess(BaseModel):
    """Access descriptor for a tool type this version cannot drive."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str


class ShellAccess(ToolAccess):
    """Tool reached by running ``command`` through the shell gateway."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["shell"] = SHELL_ACCESS
    command: str
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Variables added to the environment; values may reference $VARS.",
    )


_ACCESS_TYPES: dict[str, type[ToolAccess]] = {SHELL_ACCESS: ShellAccess}


class ToolCheckSpec(BaseModel):
    """How to decide whether a tool is usable right now."""

    model_config = ConfigDict(frozen=True)

    command: str = ""
    expected: str = Field(default="", description="Substring required in the check output.")


class ExternalTool(BaseModel):
    """An externally configured tool the agent may discover and use."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    when_to_use: str = ""
    access: ToolAccess
    check: ToolCheckSpec = Field(default_factory=ToolCheckSpec)

    @field_validator("access", mode="before")
    @classmethod
    def select_access_variant(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            access_cls = _ACCESS_TYPES.get(str(value.get("type", "")), ToolAccess)
            return access_cls.model_validate(dict(value))
        return value

    @property
    def shell_command(self) -> str | None:
        """Base command for shell access, None for any other access type."""
        if isinstance(self.access, ShellAccess):
            return base_command(self.access.command)
        return None

    def build_env(self, environ: Mapping[str, str] | None = None) -> dict[str, str] | None:
        """Return the process environment for this tool.

        The inherited environment is extended with the expanded template.
        None means "inherit unchanged" (no template configured).
        """
        if not isinstance(self.access, ShellAccess) or not self.access.env:
            return None
        base = dict(os.environ if environ is None else environ)
        for key, template in self.access.env.items():
            base[key] = Template(template).safe_substitute(base)
        return base


@dataclass(slots=True)
class ToolStatus:
    """Availability snapshot for one tool; produced per check, never cached."""

    available: bool
    message: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class ToolCatalog:
    """Static allowlist plus configured external tools.

    Loaded once at startup and read-only thereafter, so lookups need no lock.
    """

    allowlist: tuple[str, ...] = ()
    tools: tuple[ExternalTool, ...] = ()
    _by_command: dict[str, ExternalTool] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[str, ExternalTool] = {}
        for tool in self.tools:
            command = tool.shell_command
            if command and command not in index:
                index[command] = tool
        object.__setattr__(self, "_by_command", index)

    @classmethod
    def build(cls, allowlist: Iterable[str], tools: Iterable[ExternalTool] = ()) -> ToolCatalog:
        return cls(allowlist=tuple(allowlist), tools=tuple(tools))

    def lookup(self, command: str) -> ExternalTool | None:
        """Return the shell tool whose access command is ``command``'s first word."""
        binary = base_command(command)
        if binary is None:
            return None
        return self._by_command.get(binary)

    def shell_commands(self) -> tuple[str, ...]:
        return tuple(self._by_command)

    def policy(self) -> CommandPolicy:
        return CommandPolicy.build(self.allowlist, self.shell_commands())

    def env_for(self, command: str) -> dict[str, str] | None:
        tool = self.lookup(command)
        return tool.build_env() if tool else None

    def with_tools(self, tools: Iterable[ExternalTool]) -> ToolCatalog:
        """Return a catalog with the same allowlist and a different tool list."""
        return ToolCatalog.build(self.allowlist, tools)


__all__ = [
    "SHELL_ACCESS",
    "ExternalTool",
    "ShellAccess",
    "ToolAccess",
    "ToolCatalog",
    "ToolCheckSpec",
    "ToolStatus",
]
