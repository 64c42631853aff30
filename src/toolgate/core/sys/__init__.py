"""Process execution utilities.

Organized submodules:
- execution: CommandExecutor, LocalSandbox, CommandResult
"""

from toolgate.core.sys.execution import (
    CommandExecutor,
    CommandResult,
    LocalSandbox,
    SandboxProtocol,
)

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "LocalSandbox",
    "SandboxProtocol",
]
