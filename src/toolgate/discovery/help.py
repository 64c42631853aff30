"""Help-text heuristics for discovery without an oracle.

- fetch_help(): probe a command with the usual help spellings
- looks_like_help(): decide whether output is plausibly help text
- parse_subcommands(): pull subcommand names out of a commands section
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from toolgate.core.observer import CommandObserver, notify_observer
from toolgate.core.result import Err
from toolgate.core.sys.execution import CommandExecutor

HELP_PATTERNS: tuple[str, ...] = ("--help", "-h", "help", "-help")

HELP_INDICATORS: tuple[str, ...] = (
    "usage:",
    "usage ",
    "options:",
    "commands:",
    "arguments:",
    "flags:",
    "subcommands:",
    "available commands",
    "--help",
    "-h,",
    "description:",
    "synopsis:",
    "positional arguments",
    "optional arguments",
    "examples:",
    "example:",
    "run '",
    "see '",
)

_SECTION_MARKERS = ("commands:", "available commands", "subcommands:")

MIN_HELP_CHARS = 30
# Output this long is treated as help even without an indicator.
LONG_OUTPUT_CHARS = 200


def looks_like_help(output: str) -> bool:
    if len(output) < MIN_HELP_CHARS:
        return False
    lower = output.lower()
    if any(indicator in lower for indicator in HELP_INDICATORS):
        return True
    return len(output) > LONG_OUTPUT_CHARS


def is_valid_subcommand(name: str) -> bool:
    """Letters, digits, ``-`` and ``_`` only."""
    return bool(name) and all(ch.isascii() and (ch.isalnum() or ch in "-_") for ch in name)


def parse_subcommands(help_text: str) -> list[str]:
    """Extract candidate subcommand names from help text.

    A section starts at any line mentioning a commands header and ends at a
    single-word line ending in ``:``. Blank lines inside a section are
    skipped. Several sections may appear in one text.
    """
    subcommands: list[str] = []
    in_section = False

    for line in help_text.split("\n"):
        lower = line.lower()
        if any(marker in lower for marker in _SECTION_MARKERS):
            in_section = True
            continue
        if not in_section:
            continue

        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.endswith(":") and " " not in trimmed:
            in_section = False
            continue

        candidate = trimmed.split()[0].removesuffix(",")
        if (
            not candidate.startswith("-")
            and 1 < len(candidate) < 30
            and is_valid_subcommand(candidate)
        ):
            subcommands.append(candidate)

    return subcommands


def help_probes(base: str, subcommand: str = "") -> list[str]:
    """Commands tried in order; bare invocation only for subcommands."""
    if subcommand:
        probes = [f"{base} {subcommand} {pattern}" for pattern in HELP_PATTERNS]
        probes.append(f"{base} {subcommand}")
        return probes
    return [f"{base} {pattern}" for pattern in HELP_PATTERNS]


async def fetch_help(
    executor: CommandExecutor,
    base: str,
    subcommand: str = "",
    *,
    env: Mapping[str, str] | None = None,
    timeout: float = 5.0,
    observer: CommandObserver | None = None,
) -> tuple[str, str] | None:
    """Return ``(probe, output)`` for the first output that looks like help.

    All probes share one ``timeout`` budget. Exit codes are ignored since
    many tools exit nonzero after printing help.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    for probe in help_probes(base, subcommand):
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        notify_observer(observer, probe, True)
        outcome = await executor.capture(probe, env=env, timeout=remaining)
        if isinstance(outcome, Err):
            continue
        output = outcome.value.output
        if looks_like_help(output):
            return probe, output

    return None


__all__ = [
    "HELP_INDICATORS",
    "HELP_PATTERNS",
    "fetch_help",
    "help_probes",
    "is_valid_subcommand",
    "looks_like_help",
    "parse_subcommands",
]
