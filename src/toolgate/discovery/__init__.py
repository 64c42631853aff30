"""Tool discovery: help heuristics, the reasoning oracle and the discovery loop."""

from toolgate.discovery.engine import (
    WELL_KNOWN_COMMANDS,
    DiscoveryEngine,
    DiscoveryOutcome,
    DiscoveryResponse,
    DiscoveryResult,
    DiscoverySession,
    DiscoveryStep,
    parse_oracle_response,
)
from toolgate.discovery.help import fetch_help, looks_like_help, parse_subcommands
from toolgate.discovery.oracle import Oracle, ProviderOracle, build_oracle

__all__ = [
    "WELL_KNOWN_COMMANDS",
    "DiscoveryEngine",
    "DiscoveryOutcome",
    "DiscoveryResponse",
    "DiscoveryResult",
    "DiscoverySession",
    "DiscoveryStep",
    "Oracle",
    "ProviderOracle",
    "build_oracle",
    "fetch_help",
    "looks_like_help",
    "parse_oracle_response",
    "parse_subcommands",
]
