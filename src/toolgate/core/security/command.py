"""
Lexical command validation for allowlisted shell execution (pre-flight).

The validator is a deliberately conservative filter, not a shell parser: it
has no notion of quoting or escaping. Any operator that could chain, pipe,
substitute or redirect is rejected wherever it appears, even inside quotes.
Safe commands may be blocked; unsafe ones must never pass.

Usage:
    from toolgate.core.security import CommandPolicy, CommandVerdict

    policy = CommandPolicy.build(["ls", "cat"], external_commands=["gh"])
    verdict, reason = policy.validate("ls -la")
    if verdict == CommandVerdict.ALLOWED:
        # Safe to execute
        pass
    else:
        print(f"Blocked: {reason}")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum, auto


class CommandVerdict(Enum):
    """Result of command validation."""

    ALLOWED = auto()
    BLOCKED_METACHAR = auto()
    BLOCKED_EMPTY = auto()
    BLOCKED_NOT_ALLOWLISTED = auto()


# Checked in order; multi-character operators come before their prefixes so
# the reported pattern is the most specific one.
DISALLOWED_PATTERNS: tuple[str, ...] = (
    "&&",  # Chain on success
    "||",  # Chain on failure
    ";",  # Command separator
    "|",  # Pipe
    "&",  # Background job
    "`",  # Backtick substitution
    "$(",  # Command substitution
    "${",  # Variable expansion
    ">",  # Output redirect
    "<",  # Input redirect
    "\n",  # Line break starts a new command under sh -c
    "\r",
)

_PATTERN_LABELS = {"\n": "\\n", "\r": "\\r"}


def base_command(command: str) -> str | None:
    """Return the first whitespace-separated token, or None for blank input."""
    parts = command.split()
    return parts[0] if parts else None


def find_disallowed_pattern(command: str) -> str | None:
    """Return the first disallowed operator found in ``command``.

    Surrounding whitespace is ignored so a trailing newline is harmless.
    """
    text = command.strip()
    for pattern in DISALLOWED_PATTERNS:
        if pattern in text:
            return pattern
    return None


def validate_command(
    command: str,
    allowlist: Iterable[str],
    external_commands: Iterable[str] = (),
) -> tuple[CommandVerdict, str]:
    """
    Validate a raw command string against the lexical policy.

    Args:
        command: The command string exactly as the agent supplied it
        allowlist: Static allowlist of base command names
        external_commands: Access commands of configured shell-type tools

    Returns:
        Tuple of (verdict, reason); reason is user-facing
    """
    pattern = find_disallowed_pattern(command)
    if pattern is not None:
        label = _PATTERN_LABELS.get(pattern, pattern)
        return CommandVerdict.BLOCKED_METACHAR, f"command contains disallowed pattern: {label}"

    binary = base_command(command)
    if binary is None:
        return CommandVerdict.BLOCKED_EMPTY, "empty command"

    allowed = list(allowlist)
    if binary in allowed or binary in set(external_commands):
        return CommandVerdict.ALLOWED, "OK"

    return (
        CommandVerdict.BLOCKED_NOT_ALLOWLISTED,
        f"command not in allowlist: {binary} (allowed: {', '.join(allowed)})",
    )


@dataclass(frozen=True, slots=True)
class CommandPolicy:
    """Immutable allowlist snapshot used on the validation hot path.

    Built once at startup; never mutated, so validation needs no lock.
    """

    allowlist: tuple[str, ...]
    external_commands: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls, allowlist: Iterable[str], external_commands: Iterable[str] = ()
    ) -> CommandPolicy:
        return cls(allowlist=tuple(allowlist), external_commands=frozenset(external_commands))

    def validate(self, command: str) -> tuple[CommandVerdict, str]:
        return validate_command(command, self.allowlist, self.external_commands)

    def is_allowed(self, binary: str) -> bool:
        return binary in self.allowlist or binary in self.external_commands


def is_command_safe(command: str, allowlist: Iterable[str], external_commands: Iterable[str] = ()) -> bool:
    """Convenience function returning True if command passes validation."""
    verdict, _ = validate_command(command, allowlist, external_commands)
    return verdict == CommandVerdict.ALLOWED


__all__ = [
    "DISALLOWED_PATTERNS",
    "CommandPolicy",
    "CommandVerdict",
    "base_command",
    "find_disallowed_pattern",
    "is_command_safe",
    "validate_command",
]
