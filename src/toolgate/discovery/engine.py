"""Oracle-guided exploration of unfamiliar command-line tools.

Before the agent may use a configured external tool, the engine explores the
tool's help output and returns a transcript instead of running the agent's
command. With an oracle and a known user request the exploration is an
explicit loop of at most ``max_iterations`` steps: ask the oracle for the
next command, run it, record the output, repeat. Without either, a simple
help probe is used.

The loop is strictly sequential. Oracle failures and protocol violations end
the session and are reported inline; they never raise out of ``discover``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from toolgate.cache import CachedSchema, SchemaCache
from toolgate.catalog.models import ExternalTool, ToolCatalog
from toolgate.core.config import DiscoveryConfig
from toolgate.core.console import get_logger
from toolgate.core.observer import CommandObserver, notify_observer
from toolgate.core.result import (
    Err,
    Ok,
    OracleFailure,
    ProtocolViolation,
    Result,
    ToolgateError,
)
from toolgate.core.security.command import CommandPolicy, CommandVerdict, base_command
from toolgate.core.sys.execution import CommandExecutor
from toolgate.discovery.help import fetch_help, parse_subcommands
from toolgate.discovery.oracle import Oracle

logger = get_logger(__name__)

# Ubiquitous utilities that never trigger discovery.
WELL_KNOWN_COMMANDS: frozenset[str] = frozenset(
    {
        "ls", "cat", "head", "tail", "grep", "find", "wc", "sort", "uniq", "cut",
        "echo", "printf", "date", "cal", "pwd", "cd", "mkdir", "rmdir", "rm", "cp",
        "mv", "touch", "chmod", "chown", "whoami", "id", "groups", "uname",
        "hostname", "uptime", "ps", "top", "kill", "df", "du", "free", "mount",
        "umount", "ping", "curl", "wget", "ssh", "scp", "tar", "zip", "unzip",
        "gzip", "gunzip", "sed", "awk", "tr", "diff", "patch", "man", "which",
        "whereis", "type", "env", "export", "set", "unset", "true", "false",
        "test", "sleep", "xargs", "tee", "less", "more",
    }
)

TRUNCATED_MARKER = "\n... (truncated)"
TRANSCRIPT_TRUNCATED_MARKER = "\n... (discovery output truncated)"
TRANSCRIPT_FOOTER = "\n=== Use the discovered information above to construct your command. ===\n"

SYSTEM_PROMPT_TEMPLATE = """You are exploring the '{tool}' CLI tool to help answer a user's question.
Your goal is to discover the exact command(s) needed to fulfill the user's request.

RULES:
1. Start with '{tool} --help' or '{tool} help' to see available commands
2. Drill down into relevant subcommands by running their --help
3. Stop when you've found the complete command syntax needed
4. All commands MUST start with '{tool}'

RESPONSE FORMAT - Reply with ONLY valid JSON, nothing else:
- To run a command: {{"command": "{tool} <subcommand> --help", "continue": true}}
- When done discovering: {{"command": "{tool} <final-command>", "continue": false}}
- If stuck or error: {{"error": "explanation"}}

Keep exploring until you find the specific command that answers the user's question."""


class DiscoveryOutcome(Enum):
    """How a discovery session ended."""

    COMPLETE = "complete"
    EXHAUSTED = "exhausted"
    TIMEOUT = "timeout"
    ORACLE_FAILURE = "oracle_failure"
    ORACLE_ERROR = "oracle_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    SIMPLE = "simple"
    NO_HELP = "no_help"


@dataclass(frozen=True, slots=True)
class DiscoveryResponse:
    """One oracle instruction: run ``command``, then stop unless ``continue_``."""

    command: str = ""
    continue_: bool = False
    error: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DiscoveryResponse:
        command = data.get("command") or ""
        error = data.get("error") or ""
        if not isinstance(command, str) or not isinstance(error, str):
            raise TypeError("'command' and 'error' must be strings")
        # Only a JSON true continues; "false" or 1 must not keep the loop going.
        return cls(command=command, continue_=data.get("continue") is True, error=error)


@dataclass(frozen=True, slots=True)
class DiscoveryStep:
    command: str
    output: str


@dataclass(slots=True)
class DiscoverySession:
    """State of one discovery invocation; never shared across calls."""

    tool: ExternalTool
    base: str
    user_request: str
    deadline: float
    iteration_count: int = 0
    steps: list[DiscoveryStep] = field(default_factory=list)
    # Outputs quoted back to the oracle; empty outputs are not recorded.
    history: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DiscoveryResult:
    text: str
    outcome: DiscoveryOutcome
    session: DiscoverySession
    error: ToolgateError | None = None

    @property
    def steps(self) -> list[DiscoveryStep]:
        return self.session.steps


def truncate(text: str, limit: int, marker: str = TRUNCATED_MARKER) -> str:
    return text[:limit] + marker if len(text) > limit else text


def build_system_prompt(tool: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(tool=tool)


def build_user_message(
    user_request: str,
    history: list[str],
    *,
    recent_steps: int = 4,
    max_chars: int = 1500,
) -> str:
    """Render the request and prior step outputs for the oracle.

    The first ``recent_steps`` outputs are quoted (each capped at
    ``max_chars``); the rest are summarized as a count.
    """
    parts = [f"User request: {user_request}\n\n"]
    if not history:
        parts.append("This is the first step. Start by getting the main help.\n")
        return "".join(parts)

    parts.append("Previous discovery steps:\n")
    for index, output in enumerate(history):
        if index >= recent_steps:
            parts.append(f"\n... and {len(history) - index} more previous outputs\n")
            break
        parts.append(f"\n--- Step {index + 1} ---\n{truncate(output, max_chars)}\n")
    parts.append("\nWhat command should I run next? Remember to output ONLY JSON.")
    return "".join(parts)


def _decode_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_oracle_response(raw: str) -> Result[DiscoveryResponse, OracleFailure]:
    """Parse the oracle's reply, recovering a JSON object embedded in prose."""
    text = raw.strip()
    data = _decode_object(text)
    if data is None:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return Err(OracleFailure(f"no JSON found in response: {text}"))
        data = _decode_object(text[start : end + 1])
        if data is None:
            return Err(OracleFailure(f"failed to parse LLM response as JSON: {text}"))

    try:
        return Ok(DiscoveryResponse.from_mapping(data))
    except TypeError:
        return Err(OracleFailure(f"failed to parse LLM response as JSON: {text}"))


class DiscoveryEngine:
    """Run discovery sessions for external tools.

    Usage:
        engine = DiscoveryEngine(CommandExecutor(), oracle=oracle)
        if engine.needs_discovery(command, catalog):
            result = await engine.discover(catalog.lookup(command), "list my PRs")
            print(result.text)
    """

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        oracle: Oracle | None = None,
        *,
        config: DiscoveryConfig | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        self.executor = executor or CommandExecutor()
        self.oracle = oracle
        self.config = config or DiscoveryConfig()
        self.cache = cache

    def needs_discovery(self, command: str, catalog: ToolCatalog) -> ExternalTool | None:
        """Return the tool to explore, or None if ``command`` runs directly.

        Discovery is repeated on every use; earlier sessions are never trusted.
        """
        binary = base_command(command)
        if binary is None or binary in WELL_KNOWN_COMMANDS:
            return None
        return catalog.lookup(command)

    def _header(self, tool: ExternalTool, base: str) -> str:
        header = f"=== Tool Discovery: {base} ===\n\n**Description:** {tool.description}\n"
        if tool.when_to_use:
            header += f"**When to use:** {tool.when_to_use}\n\n"
        return header

    async def discover(
        self,
        tool: ExternalTool,
        user_request: str = "",
        *,
        observer: CommandObserver | None = None,
    ) -> DiscoveryResult:
        base = tool.shell_command
        if base is None:
            raise ValueError(f"tool {tool.name!r} has no shell access command")

        loop = asyncio.get_running_loop()
        session = DiscoverySession(
            tool=tool,
            base=base,
            user_request=user_request,
            deadline=loop.time() + self.config.session_timeout,
        )
        parts = [self._header(tool, base)]

        if self.oracle is None or not user_request:
            result = await self.run_simple_discovery(session, parts, observer=observer)
        else:
            result = await self._run_loop(self.oracle, session, parts, observer=observer)

        self._remember(result)
        return result

    async def run_simple_discovery(
        self,
        session: DiscoverySession,
        parts: list[str],
        *,
        observer: CommandObserver | None = None,
    ) -> DiscoveryResult:
        """Fetch the main help text and list the subcommands it mentions."""
        logger.info("Running simple discovery for %s", session.base)
        parts.append("## Main command help\n")
        found = await fetch_help(
            self.executor,
            session.base,
            env=session.tool.build_env(),
            timeout=self.config.probe_timeout,
            observer=observer,
        )
        if found is None:
            parts.append("Could not fetch help for main command.\n")
            return DiscoveryResult("".join(parts), DiscoveryOutcome.NO_HELP, session)

        probe, help_text = found
        session.iteration_count = 1
        session.steps.append(DiscoveryStep(command=probe, output=help_text))
        parts.append(help_text)
        parts.append("\n")

        subcommands = parse_subcommands(help_text)
        if subcommands:
            parts.append(f"\n## Available subcommands: [{' '.join(subcommands)}]\n")
            parts.append("Run `<command> <subcommand> --help` to learn more about each.\n")

        parts.append("\n=== Discovery complete. ===\n")
        return DiscoveryResult("".join(parts), DiscoveryOutcome.SIMPLE, session)

    async def _ask(self, oracle: Oracle, session: DiscoverySession) -> Result[DiscoveryResponse, OracleFailure]:
        remaining = session.deadline - asyncio.get_running_loop().time()
        system_prompt = build_system_prompt(session.base)
        user_message = build_user_message(
            session.user_request,
            session.history,
            recent_steps=self.config.prompt_recent_steps,
            max_chars=self.config.prompt_output_chars,
        )
        try:
            raw = await asyncio.wait_for(oracle.ask(system_prompt, user_message), remaining)
        except asyncio.TimeoutError:
            return Err(OracleFailure("LLM call failed: discovery deadline exceeded"))
        except OracleFailure as exc:
            return Err(exc)
        except Exception as exc:
            logger.debug("Oracle raised %s", type(exc).__name__, exc_info=True)
            return Err(OracleFailure(f"LLM call failed: {exc}"))
        return parse_oracle_response(raw)

    def _check_proposal(self, session: DiscoverySession, command: str) -> ProtocolViolation | None:
        if base_command(command) != session.base:
            return ProtocolViolation(
                f"Invalid command (must start with {session.base}): {command}",
                context={"tool": session.base},
            )
        verdict, reason = CommandPolicy.build((), (session.base,)).validate(command)
        if verdict != CommandVerdict.ALLOWED:
            return ProtocolViolation(
                f"Invalid command ({reason}): {command}", context={"tool": session.base}
            )
        return None

    async def _run_step(
        self,
        session: DiscoverySession,
        command: str,
        observer: CommandObserver | None,
    ) -> str:
        notify_observer(observer, command, True)
        remaining = max(session.deadline - asyncio.get_running_loop().time(), 0.0)
        outcome = await self.executor.capture(
            command, env=session.tool.build_env(), timeout=remaining
        )
        if isinstance(outcome, Err):
            logger.warning("Discovery step could not start: %s", outcome.error)
            return ""
        # Help commands often exit nonzero; the output is what matters.
        return outcome.value.output

    async def _run_loop(
        self,
        oracle: Oracle,
        session: DiscoverySession,
        parts: list[str],
        *,
        observer: CommandObserver | None = None,
    ) -> DiscoveryResult:
        loop = asyncio.get_running_loop()
        outcome = DiscoveryOutcome.EXHAUSTED
        error: ToolgateError | None = None

        for index in range(self.config.max_iterations):
            if loop.time() >= session.deadline:
                parts.append("\n(Discovery timeout reached)\n")
                outcome = DiscoveryOutcome.TIMEOUT
                break

            session.iteration_count = index + 1
            answer = await self._ask(oracle, session)
            if isinstance(answer, Err):
                error = answer.error
                logger.warning("Discovery of %s aborted: %s", session.base, error)
                parts.append(f"\n## Discovery error: {error}\n")
                outcome = DiscoveryOutcome.ORACLE_FAILURE
                break

            response = answer.value
            if response.error:
                parts.append(f"\n## LLM reported error: {response.error}\n")
                outcome = DiscoveryOutcome.ORACLE_ERROR
                break

            if not response.command:
                parts.append("\n## Discovery complete (no more commands to run)\n")
                outcome = DiscoveryOutcome.COMPLETE
                break

            violation = self._check_proposal(session, response.command)
            if violation is not None:
                error = violation
                logger.warning("Discovery of %s stopped: %s", session.base, violation)
                parts.append(f"\n## {violation.message}\n")
                outcome = DiscoveryOutcome.PROTOCOL_VIOLATION
                break

            logger.info("Discovery step %d: %s", index + 1, response.command)
            parts.append(f"\n## Step {index + 1}: Running `{response.command}`\n")
            output = await self._run_step(session, response.command, observer)

            if not output:
                parts.append("(No output)\n")
            else:
                output = truncate(output, self.config.step_output_chars)
                parts.append(f"```\n{output}\n```\n")
                session.history.append(f"Command: {response.command}\nOutput:\n{output}")
            session.steps.append(DiscoveryStep(command=response.command, output=output))

            if not response.continue_:
                parts.append("\n## Discovery complete\n")
                outcome = DiscoveryOutcome.COMPLETE
                break

        parts.append(TRANSCRIPT_FOOTER)
        text = truncate(
            "".join(parts), self.config.max_transcript_chars, TRANSCRIPT_TRUNCATED_MARKER
        )
        return DiscoveryResult(text, outcome, session, error)

    def _remember(self, result: DiscoveryResult) -> None:
        """Store what was learned; the engine itself never reads it back."""
        if self.cache is None or not result.steps:
            return
        session = result.session
        document = {
            "tool": session.tool.name,
            "outcome": result.outcome.value,
            "user_request": session.user_request,
            "steps": [{"command": s.command, "output": s.output} for s in session.steps],
            "subcommands": parse_subcommands(session.steps[0].output),
        }
        written = self.cache.set(
            CachedSchema(command=session.base, document=document, help_text=session.steps[0].output)
        )
        if isinstance(written, Err):
            logger.warning("Discovery result for %s not cached: %s", session.base, written.error)


__all__ = [
    "WELL_KNOWN_COMMANDS",
    "DiscoveryEngine",
    "DiscoveryOutcome",
    "DiscoveryResponse",
    "DiscoveryResult",
    "DiscoverySession",
    "DiscoveryStep",
    "build_system_prompt",
    "build_user_message",
    "parse_oracle_response",
    "truncate",
]
