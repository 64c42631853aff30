"""Security policy for command execution.

Re-exports the lexical command validator.
"""

from toolgate.core.security.command import (
    DISALLOWED_PATTERNS,
    CommandPolicy,
    CommandVerdict,
    base_command,
    is_command_safe,
    validate_command,
)

__all__ = [
    "DISALLOWED_PATTERNS",
    "CommandPolicy",
    "CommandVerdict",
    "base_command",
    "is_command_safe",
    "validate_command",
]
