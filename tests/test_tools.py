"""Tests for local tools, the lazy tool stub and the tool catalog."""

import asyncio
from typing import Any, Dict, Optional

import pytest
from pydantic import BaseModel, Field

from nodeswarm.agents.agent import BaseTool, LocalToolExecutor, StructuredTool, ToolCatalog, ToolExecutor, ToolStub, tool
from nodeswarm.agents.errors import ToolExecutionError


class CountingExecutor(ToolExecutor):
    """Executor that counts schema fetches and answers slowly."""

    def __init__(self, known=("search",)):
        self.known = set(known)
        self.info_calls = 0

    async def tool_info(self, name: str) -> Optional[Dict[str, Any]]:
        self.info_calls += 1
        await asyncio.sleep(0.01)
        if name not in self.known:
            return None
        return {"description": f"{name} the web", "input_schema": {"type": "object", "properties": {"q": {"type": "string"}}}}

    async def execute(self, tool_name: str, args: Dict[str, Any]) -> str:
        return f"{tool_name}:{args}"


class EchoInput(BaseModel):
    text: str = Field(description="Text to echo")


class EchoTool(BaseTool):
    """Echo the input back."""
    name = "echo"
    args_schema = EchoInput

    async def _arun(self, text: str) -> str:
        return text


@pytest.mark.asyncio
async def test_concurrent_first_use_fetches_once():
    """N concurrent definition requests trigger exactly one schema fetch."""
    executor = CountingExecutor()
    stub = ToolStub(executor, "search")

    definitions = await asyncio.gather(*(stub.definition() for _ in range(10)))

    assert executor.info_calls == 1
    assert all(d == definitions[0] for d in definitions)
    assert definitions[0]["description"] == "search the web"
    assert stub.loaded


@pytest.mark.asyncio
async def test_preloaded_stub_never_fetches():
    executor = CountingExecutor()
    stub = ToolStub(executor, "search", description="given", schema={"type": "object", "properties": {}})

    definition = await stub.definition()

    assert executor.info_calls == 0
    assert definition["description"] == "given"


@pytest.mark.asyncio
async def test_catalog_skips_unknown_tools():
    """Tools the executor does not know are omitted from the LLM schemas."""
    executor = CountingExecutor(known=("search",))
    catalog = ToolCatalog(executor)

    definitions = await catalog.definitions(["search", "ghost"])

    assert [d["name"] for d in definitions] == ["search"]
    assert catalog.stub("ghost").found is False
    assert catalog.stub("search") is catalog.stub("search")


def test_catalog_without_executor_rejects_tools():
    with pytest.raises(ToolExecutionError, match="no tool executor"):
        ToolCatalog().stub("anything")


@pytest.mark.asyncio
async def test_base_tool_validates_arguments():
    echo = EchoTool()

    assert await echo.arun({"text": "hi"}) == "hi"
    with pytest.raises(ToolExecutionError, match="invalid arguments"):
        await echo.arun({})
    assert echo.definition()["input_schema"]["required"] == ["text"]
    assert echo.description == "Echo the input back."


@pytest.mark.asyncio
async def test_structured_tool_from_function():
    """Schemas are derived from the signature; sync and async functions work."""
    @tool(name="add")
    def add(a: int, b: int = 1) -> int:
        """Add two numbers."""
        return a + b

    async def shout(text: str) -> str:
        return text.upper()

    shout_tool = StructuredTool.from_function(shout)

    assert await add.arun({"a": 2}) == "3"
    assert add.description == "Add two numbers."
    assert add.input_schema["required"] == ["a"]
    assert await shout_tool.arun({"text": "hey"}) == "HEY"


@pytest.mark.asyncio
async def test_tool_exceptions_become_execution_errors():
    def broken() -> str:
        raise RuntimeError("disk full")

    with pytest.raises(ToolExecutionError, match="disk full"):
        await StructuredTool.from_function(broken).arun({})


@pytest.mark.asyncio
async def test_local_executor():
    executor = LocalToolExecutor([EchoTool()])

    assert executor.names == ["echo"]
    assert await executor.execute("echo", {"text": "x"}) == "x"
    assert (await executor.tool_info("echo"))["description"] == "Echo the input back."
    assert await executor.tool_info("nope") is None
    with pytest.raises(ToolExecutionError, match="unknown tool"):
        await executor.execute("nope", {})
    with pytest.raises(ValueError, match="already registered"):
        executor.add(EchoTool())
