"""External tool catalog, definition loading and availability checks."""

from toolgate.catalog.availability import (
    AvailabilityChecker,
    check_command_exists,
    load_and_check_tools,
)
from toolgate.catalog.loader import load_catalog, load_tools
from toolgate.catalog.models import (
    ExternalTool,
    ShellAccess,
    ToolAccess,
    ToolCatalog,
    ToolCheckSpec,
    ToolStatus,
)

__all__ = [
    "AvailabilityChecker",
    "ExternalTool",
    "ShellAccess",
    "ToolAccess",
    "ToolCatalog",
    "ToolCheckSpec",
    "ToolStatus",
    "check_command_exists",
    "load_and_check_tools",
    "load_catalog",
    "load_tools",
]
