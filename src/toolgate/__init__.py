"""toolgate - allowlisted shell execution and tool discovery for AI agents.

This package lets an agent run shell commands under a declared allowlist and
learn unfamiliar command-line tools by exploring their ``--help`` output
before using them for real.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
