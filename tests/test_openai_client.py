"""Tests for the OpenAI-compatible client adapter (no network)."""

from types import SimpleNamespace

import openai
import pytest

from nodeswarm.agents.agent import Message, OpenAIChatClient, ToolCall, create_agent
from nodeswarm.agents.agent.openai_client import to_openai_messages, to_openai_tools
from nodeswarm.agents.errors import ProviderError


class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def completion(content=None, tool_calls=None, usage=(100, 20)):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=usage[0], completion_tokens=usage[1]) if usage else None
    )


@pytest.fixture
def priced(settings):
    return settings.model_copy(update={
        "llm_model": "test-model",
        "llm_input_cost_per_1k": 1.0,
        "llm_output_cost_per_1k": 2.0,
        "llm_max_tokens": 256
    })


@pytest.mark.asyncio
async def test_final_content_and_usage(priced):
    completions = FakeCompletions(completion(content="hello"))
    client = OpenAIChatClient(settings=priced, client=fake_client(completions))

    response = await client.send([Message(role="user", content="hi")], [])

    assert response.content == "hello"
    assert not response.wants_tools
    assert response.usage.input_tokens == 100
    assert response.usage.cost == pytest.approx(0.1 + 0.04)
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["max_tokens"] == 256
    assert "tools" not in request


@pytest.mark.asyncio
async def test_tool_calls_are_parsed(priced):
    calls = [
        SimpleNamespace(id="c1", function=SimpleNamespace(name="search", arguments='{"q": "docs"}')),
        SimpleNamespace(id="c2", function=SimpleNamespace(name="bash", arguments="not json")),
    ]
    completions = FakeCompletions(completion(tool_calls=calls))
    client = OpenAIChatClient(settings=priced, client=fake_client(completions))
    schemas = [{"name": "search", "description": "Search", "input_schema": {"type": "object", "properties": {}}}]

    response = await client.send([Message(role="user", content="find")], schemas)

    assert response.tool_calls == (
        ToolCall(id="c1", name="search", arguments={"q": "docs"}),
        ToolCall(id="c2", name="bash", arguments={"input": "not json"}),
    )
    assert completions.requests[0]["tools"][0]["function"]["name"] == "search"


@pytest.mark.asyncio
async def test_provider_errors_are_wrapped(priced):
    client = OpenAIChatClient(settings=priced, client=fake_client(FakeCompletions(error=openai.OpenAIError("quota"))))

    with pytest.raises(ProviderError, match="quota"):
        await client.send([Message(role="user", content="hi")], [])


@pytest.mark.asyncio
async def test_empty_choices_is_an_error(priced):
    empty = SimpleNamespace(choices=[], usage=None)
    client = OpenAIChatClient(settings=priced, client=fake_client(FakeCompletions(empty)))

    with pytest.raises(ProviderError, match="no choices"):
        await client.send([Message(role="user", content="hi")], [])


@pytest.mark.asyncio
async def test_missing_usage_is_estimated(priced):
    client = OpenAIChatClient(settings=priced, client=fake_client(FakeCompletions(completion("a reply", usage=None))))

    response = await client.send([Message(role="user", content="count these tokens please")], [])

    assert response.usage.input_tokens > 0
    assert response.usage.output_tokens > 0


def test_message_conversion():
    messages = [
        Message(role="system", content="be brief"),
        Message(role="assistant", tool_calls=(ToolCall(id="c1", name="search", arguments={"q": "x"}),)),
        Message(role="tool", content="result", tool_call_id="c1", name="search"),
    ]

    converted = to_openai_messages(messages)

    assert converted[0] == {"role": "system", "content": "be brief"}
    assert converted[1]["tool_calls"][0]["function"] == {"name": "search", "arguments": '{"q": "x"}'}
    assert converted[2]["tool_call_id"] == "c1"


def test_tool_conversion_defaults_parameters():
    tools = to_openai_tools([{"name": "ping"}])

    assert tools == [{
        "type": "function",
        "function": {"name": "ping", "description": "", "parameters": {"type": "object", "properties": {}}}
    }]


def test_create_agent_builds_openai_client(priced):
    agent = create_agent(
        "coder",
        system_prompt="You write code.",
        tools=["bash"],
        model="other-model",
        client=fake_client(FakeCompletions()),
        settings=priced
    )

    assert agent.name == "coder"
    assert agent.tools == ["bash"]
    assert isinstance(agent.llm, OpenAIChatClient)
    assert agent.llm.model == "other-model"
