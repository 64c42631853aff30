from __future__ import annotations

import json
from pathlib import Path

import pytest

from toolgate.cache import SchemaCache
from toolgate.catalog.models import ExternalTool, ToolCatalog
from toolgate.core.config import DiscoveryConfig
from toolgate.core.result import Err, Ok, OracleFailure, ProtocolViolation
from toolgate.core.sys.execution import CommandExecutor
from toolgate.discovery.engine import (
    WELL_KNOWN_COMMANDS,
    DiscoveryEngine,
    DiscoveryOutcome,
    DiscoveryResponse,
    build_system_prompt,
    build_user_message,
    parse_oracle_response,
)
from tests.mocks.scripted_oracle import RecordingObserver, ScriptedOracle


def _reply(command: str = "", cont: bool = False) -> str:
    return json.dumps({"command": command, "continue": cont})


def _engine(oracle: ScriptedOracle | None, **config: object) -> DiscoveryEngine:
    return DiscoveryEngine(CommandExecutor(), oracle, config=DiscoveryConfig(**config))


class TestParseOracleResponse:
    def test_plain_json(self) -> None:
        result = parse_oracle_response('{"command": "gh --help", "continue": true}')
        assert result == Ok(DiscoveryResponse(command="gh --help", continue_=True))

    def test_json_embedded_in_prose(self) -> None:
        raw = 'Sure! Here you go:\n```json\n{"command": "gh pr --help", "continue": true}\n```'
        result = parse_oracle_response(raw)
        assert isinstance(result, Ok)
        assert result.value.command == "gh pr --help"

    def test_missing_continue_means_stop(self) -> None:
        result = parse_oracle_response('{"command": "gh pr list"}')
        assert isinstance(result, Ok)
        assert result.value.continue_ is False

    def test_error_record(self) -> None:
        result = parse_oracle_response('{"error": "no such feature"}')
        assert isinstance(result, Ok)
        assert result.value.error == "no such feature"

    def test_no_json(self) -> None:
        result = parse_oracle_response("I cannot help with that")
        assert isinstance(result, Err)
        assert str(result.error).startswith("no JSON found in response:")

    def test_unparseable_json(self) -> None:
        result = parse_oracle_response("{command: gh}")
        assert isinstance(result, Err)
        assert str(result.error).startswith("failed to parse LLM response as JSON:")

    def test_wrong_field_type(self) -> None:
        result = parse_oracle_response('{"command": ["gh"]}')
        assert isinstance(result, Err)

    @pytest.mark.parametrize("flag", ["\"false\"", "\"true\"", "1", "null"])
    def test_continue_must_be_a_json_boolean(self, flag: str) -> None:
        result = parse_oracle_response('{"command": "gh pr list", "continue": ' + flag + "}")
        assert isinstance(result, Ok)
        assert result.value.continue_ is False


class TestPrompts:
    def test_system_prompt_names_tool(self) -> None:
        prompt = build_system_prompt("gh")
        assert "exploring the 'gh' CLI tool" in prompt
        assert "All commands MUST start with 'gh'" in prompt
        assert '{"command": "gh <subcommand> --help", "continue": true}' in prompt

    def test_first_step_message(self) -> None:
        message = build_user_message("list PRs", [])
        assert message == (
            "User request: list PRs\n\nThis is the first step. Start by getting the main help.\n"
        )

    def test_history_is_truncated_and_summarized(self) -> None:
        history = [f"Command: gh {i}\nOutput:\n" + "x" * 2000 for i in range(6)]
        message = build_user_message("list PRs", history)
        assert message.count("--- Step") == 4
        assert "--- Step 4 ---" in message
        assert "\n... and 2 more previous outputs\n" in message
        assert message.count("\n... (truncated)") == 4
        assert message.endswith("What command should I run next? Remember to output ONLY JSON.")


class TestNeedsDiscovery:
    def test_well_known_commands_skip(self, fake_tool: ExternalTool) -> None:
        catalog = ToolCatalog.build(["ls"], [fake_tool])
        engine = _engine(None)
        assert "ls" in WELL_KNOWN_COMMANDS
        assert engine.needs_discovery("ls -la", catalog) is None

    def test_unconfigured_command_skips(self, fake_tool: ExternalTool) -> None:
        catalog = ToolCatalog.build(["git"], [fake_tool])
        assert _engine(None).needs_discovery("git status", catalog) is None

    def test_external_tool_needs_discovery(self, fake_tool: ExternalTool) -> None:
        catalog = ToolCatalog.build([], [fake_tool])
        assert _engine(None).needs_discovery("fakecli pr list", catalog) == fake_tool

    def test_well_known_external_tool_still_skips(self) -> None:
        curl = ExternalTool.model_validate({"name": "curl", "access": {"type": "shell", "command": "curl"}})
        catalog = ToolCatalog.build([], [curl])
        assert _engine(None).needs_discovery("curl example.com", catalog) is None


@pytest.mark.asyncio
async def test_one_step_then_complete(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True), _reply("", False)])
    observer = RecordingObserver()

    result = await _engine(oracle).discover(fake_tool, "list PRs", observer=observer)

    assert result.outcome is DiscoveryOutcome.COMPLETE
    assert len(result.steps) == 1
    assert result.text.count("## Step ") == 1
    assert "## Step 1: Running `fakecli --help`" in result.text
    assert "Available Commands:" in result.text
    assert "\n## Discovery complete (no more commands to run)\n" in result.text
    assert result.text.startswith("=== Tool Discovery: fakecli ===\n\n**Description:** Manage fake things\n")
    assert result.text.endswith(
        "\n=== Use the discovered information above to construct your command. ===\n"
    )
    assert observer.events == [("fakecli --help", True)]
    assert oracle.call_count == 2


@pytest.mark.asyncio
async def test_history_is_fed_back_to_oracle(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle(
        [_reply("fakecli --help", True), _reply("fakecli pr --help", True), _reply("fakecli pr list", False)]
    )
    result = await _engine(oracle).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.COMPLETE
    assert result.text.rstrip().endswith("=== Use the discovered information above to construct your command. ===")
    assert "\n## Discovery complete\n" in result.text
    assert [step.command for step in result.steps] == [
        "fakecli --help",
        "fakecli pr --help",
        "fakecli pr list",
    ]
    first, second, third = oracle.user_messages
    assert "This is the first step" in first
    assert "--- Step 1 ---\nCommand: fakecli --help\nOutput:\n" in second
    assert "--- Step 2 ---\nCommand: fakecli pr --help" in third


@pytest.mark.asyncio
async def test_protocol_violation_stops_without_more_oracle_calls(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("rm -rf /", True), _reply("fakecli --help", True)])
    observer = RecordingObserver()

    result = await _engine(oracle).discover(fake_tool, "list PRs", observer=observer)

    assert result.outcome is DiscoveryOutcome.PROTOCOL_VIOLATION
    assert isinstance(result.error, ProtocolViolation)
    assert "\n## Invalid command (must start with fakecli): rm -rf /\n" in result.text
    assert oracle.call_count == 1
    assert result.steps == []
    assert observer.events == []


@pytest.mark.asyncio
async def test_prefix_must_be_whole_word(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakeclix --help", True)])
    result = await _engine(oracle).discover(fake_tool, "list PRs")
    assert result.outcome is DiscoveryOutcome.PROTOCOL_VIOLATION


@pytest.mark.asyncio
async def test_operators_in_proposal_are_rejected(fake_tool: ExternalTool, tmp_path: Path) -> None:
    marker = tmp_path / "pwned"
    oracle = ScriptedOracle([_reply(f"fakecli --help; touch {marker}", True)])
    result = await _engine(oracle).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.PROTOCOL_VIOLATION
    assert "disallowed pattern: ;" in result.text
    assert not marker.exists()


@pytest.mark.asyncio
async def test_oracle_error_record(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle(['{"error": "tool has no PR support"}'])
    result = await _engine(oracle).discover(fake_tool, "list PRs")
    assert result.outcome is DiscoveryOutcome.ORACLE_ERROR
    assert "\n## LLM reported error: tool has no PR support\n" in result.text


@pytest.mark.asyncio
async def test_oracle_failure_is_reported_inline(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True), OracleFailure("LLM call failed: connection refused")])
    result = await _engine(oracle).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.ORACLE_FAILURE
    assert len(result.steps) == 1
    assert "\n## Discovery error: LLM call failed: connection refused\n" in result.text


@pytest.mark.asyncio
async def test_unexpected_oracle_exception_is_reported_inline(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True), RuntimeError("connection reset")])
    result = await _engine(oracle).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.ORACLE_FAILURE
    assert isinstance(result.error, OracleFailure)
    assert len(result.steps) == 1
    assert "\n## Discovery error: LLM call failed: connection reset\n" in result.text


@pytest.mark.asyncio
async def test_unparseable_reply_aborts(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle(["just run the help command"])
    result = await _engine(oracle).discover(fake_tool, "list PRs")
    assert result.outcome is DiscoveryOutcome.ORACLE_FAILURE
    assert "no JSON found in response" in result.text


@pytest.mark.asyncio
async def test_empty_output_step(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli noop", True), _reply()])
    result = await _engine(oracle).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.COMPLETE
    assert "## Step 1: Running `fakecli noop`\n(No output)\n" in result.text
    # Empty outputs are not quoted back to the oracle.
    assert "This is the first step" in oracle.user_messages[1]


@pytest.mark.asyncio
async def test_iteration_bound(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True)] * 20)
    result = await _engine(oracle, max_iterations=3).discover(fake_tool, "list PRs")

    assert result.outcome is DiscoveryOutcome.EXHAUSTED
    assert oracle.call_count == 3
    assert result.session.iteration_count == 3
    assert len(result.steps) == 3


@pytest.mark.asyncio
async def test_step_output_truncated(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", False)])
    result = await _engine(oracle, step_output_chars=40).discover(fake_tool, "list PRs")
    assert result.steps[0].output.endswith("\n... (truncated)")
    assert len(result.steps[0].output) == 40 + len("\n... (truncated)")


@pytest.mark.asyncio
async def test_transcript_capped(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True)] * 5)
    result = await _engine(oracle, max_transcript_chars=300).discover(fake_tool, "list PRs")
    assert result.text.endswith("\n... (discovery output truncated)")
    assert len(result.text) == 300 + len("\n... (discovery output truncated)")


@pytest.mark.asyncio
async def test_session_deadline(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([_reply("fakecli --help", True)] * 10, delay=0.2)
    result = await _engine(oracle, session_timeout=0.3).discover(fake_tool, "list PRs")

    assert result.outcome in (DiscoveryOutcome.TIMEOUT, DiscoveryOutcome.ORACLE_FAILURE)
    assert oracle.call_count < 10
    assert "timeout reached" in result.text or "deadline exceeded" in result.text


@pytest.mark.asyncio
async def test_simple_discovery_without_oracle(fake_tool: ExternalTool) -> None:
    observer = RecordingObserver()
    result = await _engine(None).discover(fake_tool, "list PRs", observer=observer)

    assert result.outcome is DiscoveryOutcome.SIMPLE
    assert "## Main command help\n" in result.text
    assert "\n## Available subcommands: [issue pr repo]\n" in result.text
    assert result.text.endswith("\n=== Discovery complete. ===\n")
    assert observer.discovery_commands == ["fakecli --help"]


@pytest.mark.asyncio
async def test_simple_discovery_without_request(fake_tool: ExternalTool) -> None:
    oracle = ScriptedOracle([])
    result = await _engine(oracle).discover(fake_tool, "")
    assert result.outcome is DiscoveryOutcome.SIMPLE
    assert oracle.call_count == 0


@pytest.mark.asyncio
async def test_simple_discovery_no_help() -> None:
    tool = ExternalTool.model_validate(
        {"name": "false", "description": "Always fails", "access": {"type": "shell", "command": "false"}}
    )
    result = await _engine(None).discover(tool)
    assert result.outcome is DiscoveryOutcome.NO_HELP
    assert result.text.endswith("Could not fetch help for main command.\n")


@pytest.mark.asyncio
async def test_results_are_written_to_cache(fake_tool: ExternalTool, tmp_path: Path) -> None:
    cache = SchemaCache(tmp_path / "schemas")
    oracle = ScriptedOracle([_reply("fakecli --help", False)])
    engine = DiscoveryEngine(CommandExecutor(), oracle, cache=cache)

    await engine.discover(fake_tool, "list PRs")

    entry = cache.get("fakecli")
    assert entry is not None
    assert "Available Commands:" in entry.help_text
    assert entry.document["subcommands"] == ["issue", "pr", "repo"]
    assert entry.document["steps"][0]["command"] == "fakecli --help"


@pytest.mark.asyncio
async def test_tool_without_shell_access_is_rejected() -> None:
    tool = ExternalTool.model_validate({"name": "rpc", "access": {"type": "rpc"}})
    with pytest.raises(ValueError):
        await _engine(None).discover(tool)
