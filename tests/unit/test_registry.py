from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

import pytest

from toolgate.catalog.models import ToolCatalog
from toolgate.core.result import Err, Ok, Result, ToolgateError, ToolValidationError
from toolgate.gateway import Tool, ToolGateway, ToolRegistry, definition


class EchoTool:
    def __init__(self, name: str = "echo_args") -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Return the arguments"

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, args: Mapping[str, Any]) -> Result[str, ToolgateError]:
        return Ok(repr(dict(args)))


def test_gateway_satisfies_tool_protocol() -> None:
    gateway = ToolGateway(ToolCatalog.build(["ls"]))
    assert isinstance(gateway, Tool)


def test_definition_format() -> None:
    assert definition(EchoTool()) == {
        "type": "function",
        "function": {
            "name": "echo_args",
            "description": "Return the arguments",
            "parameters": {"type": "object", "properties": {}},
        },
    }


def test_register_get_list() -> None:
    registry = ToolRegistry()
    tool = EchoTool()
    registry.register(tool)
    assert registry.get("echo_args") is tool
    assert registry.get("missing") is None
    assert registry.list_tools() == [tool]
    assert [d["function"]["name"] for d in registry.definitions()] == ["echo_args"]


def test_register_replaces_same_name() -> None:
    registry = ToolRegistry()
    first, second = EchoTool(), EchoTool()
    registry.register(first)
    registry.register(second)
    assert registry.get("echo_args") is second
    assert len(registry.list_tools()) == 1


@pytest.mark.asyncio
async def test_execute_dispatches_by_name() -> None:
    registry = ToolRegistry()
    registry.register(EchoTool())
    assert await registry.execute("echo_args", {"a": 1}) == Ok("{'a': 1}")


@pytest.mark.asyncio
async def test_execute_unknown_tool() -> None:
    result = await ToolRegistry().execute("nope", {})
    assert isinstance(result, Err)
    assert isinstance(result.error, ToolValidationError)
    assert str(result.error) == "unknown tool: nope"


@pytest.mark.asyncio
async def test_execute_shell_gateway() -> None:
    registry = ToolRegistry()
    registry.register(ToolGateway(ToolCatalog.build(["echo"])))
    assert await registry.execute("shell", {"command": "echo via registry"}) == Ok("via registry\n")


def test_concurrent_registration_keeps_every_tool() -> None:
    registry = ToolRegistry()

    def register_batch(offset: int) -> None:
        for i in range(50):
            registry.register(EchoTool(f"tool_{offset}_{i}"))

    threads = [threading.Thread(target=register_batch, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry.list_tools()) == 200
