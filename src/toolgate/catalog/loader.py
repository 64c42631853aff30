"""Load external tool definitions from a TOML or JSON file.

File shape::

    [[tools]]
    name = "GitHub CLI"
    description = "Work with GitHub issues and PRs"
    [tools.access]
    type = "shell"
    command = "gh"
    [tools.check]
    command = "gh auth status"
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from toolgate.catalog.models import ExternalTool, ToolCatalog
from toolgate.core.config import AppConfig, ConfigError, read_structured_file
from toolgate.core.console import get_logger
from toolgate.core.result import ConfigurationError, Err, Ok, Result

logger = get_logger(__name__)


def load_tools(path: Path) -> Result[list[ExternalTool], ConfigurationError]:
    """Parse tool definitions; a missing file means no external tools."""
    try:
        data = read_structured_file(path)
    except (ConfigError, OSError) as exc:
        return Err(ConfigurationError("Failed to read tool definitions", context={"error": str(exc)}))

    entries = data.get("tools", [])
    if not isinstance(entries, list):
        return Err(
            ConfigurationError("'tools' must be a list", context={"path": str(path)})
        )

    tools: list[ExternalTool] = []
    for index, entry in enumerate(entries):
        try:
            tools.append(ExternalTool.model_validate(entry))
        except ValidationError as exc:
            return Err(
                ConfigurationError(
                    "Invalid tool definition",
                    context={"path": str(path), "index": index, "error": str(exc)},
                )
            )

    logger.debug("Loaded %d tool definitions from %s", len(tools), path)
    return Ok(tools)


def load_catalog(config: AppConfig) -> Result[ToolCatalog, ConfigurationError]:
    """Build the catalog from the configured allowlist and tool file."""
    result = load_tools(config.paths.tools_file)
    if isinstance(result, Err):
        return result
    return Ok(ToolCatalog.build(config.shell.allowlist, result.value))


__all__ = ["load_catalog", "load_tools"]
