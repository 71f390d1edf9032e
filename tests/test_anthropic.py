"""Tests for the Anthropic Messages API provider."""

import json

import pytest
import respx
from httpx import Response

from agentree.errors import ProviderError
from agentree.llm.anthropic import AnthropicProvider
from agentree.llm.client import (
    Message,
    MessageComplete,
    ProviderRequest,
    RawBlock,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ToolCallDelta,
    ToolCallStart,
    ToolResultBlock,
    ToolUseBlock,
)

MESSAGES_URL = "https://api.anthropic.com/v1/messages"


def sse(*events):
    return "".join(f"event: {event['type']}\ndata: {json.dumps(event)}\n\n" for event in events)


def test_build_payload_maps_request_fields():
    provider = AnthropicProvider(api_key="test-key")
    request = ProviderRequest(
        model="claude-test",
        max_tokens=100,
        system="Be brief.",
        messages=[
            Message(role="user", content="Hi"),
            Message(
                role="assistant",
                content=[
                    ThinkingBlock(thinking="hmm", signature="sig"),
                    ToolUseBlock(id="t1", name="search", input={"q": "x"}),
                ],
            ),
            Message(
                role="user",
                content=[ToolResultBlock(tool_use_id="t1", content="nope", is_error=True)],
            ),
        ],
        tools=[{"name": "search", "description": "Search", "input_schema": {"type": "object"}}],
        temperature=0.2,
        thinking_budget=1024,
        stop_sequences=["STOP"],
    )

    payload = provider.build_payload(request)

    assert payload["model"] == "claude-test"
    assert payload["system"] == "Be brief."
    assert payload["messages"][0] == {"role": "user", "content": "Hi"}
    assert payload["messages"][1]["content"] == [
        {"type": "thinking", "thinking": "hmm", "signature": "sig"},
        {"type": "tool_use", "id": "t1", "name": "search", "input": {"q": "x"}},
    ]
    assert payload["messages"][2]["content"] == [
        {"type": "tool_result", "tool_use_id": "t1", "content": "nope", "is_error": True}
    ]
    assert payload["thinking"] == {"type": "enabled", "budget_tokens": 1024}
    assert payload["temperature"] == 0.2
    assert payload["stop_sequences"] == ["STOP"]
    assert "stream" not in payload
    assert "mcp_servers" not in payload


@pytest.mark.asyncio
@respx.mock
async def test_create_message_parses_response():
    route = respx.post(MESSAGES_URL).mock(
        return_value=Response(
            200,
            json={
                "id": "msg_1",
                "model": "claude-test",
                "content": [
                    {"type": "text", "text": "Searching."},
                    {"type": "tool_use", "id": "t1", "name": "search", "input": {"q": "x"}},
                    {"type": "server_tool_use", "id": "s1", "name": "web"},
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 12, "output_tokens": 5},
            },
        )
    )
    provider = AnthropicProvider(api_key="test-key")

    message = await provider.create_message(
        ProviderRequest(
            model="claude-test",
            max_tokens=100,
            messages=[Message(role="user", content="Hi")],
            betas=["mcp-client-2025-04-04"],
        )
    )

    assert message.id == "msg_1"
    assert message.stop_reason == "tool_use"
    assert message.content == [
        TextBlock(text="Searching."),
        ToolUseBlock(id="t1", name="search", input={"q": "x"}),
        RawBlock(data={"type": "server_tool_use", "id": "s1", "name": "web"}),
    ]
    assert message.usage.input_tokens == 12
    assert message.usage.output_tokens == 5

    sent = route.calls.last.request
    assert sent.headers["x-api-key"] == "test-key"
    assert sent.headers["anthropic-version"] == "2023-06-01"
    assert sent.headers["anthropic-beta"] == "mcp-client-2025-04-04"

    await provider.close()


@pytest.mark.asyncio
@respx.mock
async def test_error_status_raises_provider_error():
    respx.post(MESSAGES_URL).mock(
        return_value=Response(429, json={"type": "error", "error": {"type": "rate_limit_error"}})
    )
    provider = AnthropicProvider(api_key="test-key")

    with pytest.raises(ProviderError) as exc_info:
        await provider.create_message(
            ProviderRequest(model="m", max_tokens=10, messages=[Message(role="user", content="Hi")])
        )

    assert exc_info.value.status_code == 429
    await provider.close()


@pytest.mark.asyncio
@respx.mock
async def test_stream_message_yields_deltas_and_final_message():
    body = sse(
        {
            "type": "message_start",
            "message": {"id": "msg_2", "model": "m", "usage": {"input_tokens": 7}},
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Let me "},
        },
        {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "look."},
        },
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "t1", "name": "search", "input": {}},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '{"q": '},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '"x"}'},
        },
        {"type": "content_block_stop", "index": 1},
        {
            "type": "message_delta",
            "delta": {"stop_reason": "tool_use"},
            "usage": {"output_tokens": 9},
        },
        {"type": "message_stop"},
    )
    route = respx.post(MESSAGES_URL).mock(
        return_value=Response(200, text=body, headers={"content-type": "text/event-stream"})
    )
    provider = AnthropicProvider(api_key="test-key")
    request = ProviderRequest(
        model="m", max_tokens=10, messages=[Message(role="user", content="Hi")]
    )

    events = [event async for event in provider.stream_message(request)]

    assert json.loads(route.calls.last.request.content)["stream"] is True
    assert events[:5] == [
        TextDelta(text="Let me "),
        TextDelta(text="look."),
        ToolCallStart(id="t1", name="search"),
        ToolCallDelta(id="t1", partial_json='{"q": '),
        ToolCallDelta(id="t1", partial_json='"x"}'),
    ]
    final = events[-1]
    assert isinstance(final, MessageComplete)
    assert final.message.content == [
        TextBlock(text="Let me look."),
        ToolUseBlock(id="t1", name="search", input={"q": "x"}),
    ]
    assert final.message.stop_reason == "tool_use"
    assert final.message.usage.input_tokens == 7
    assert final.message.usage.output_tokens == 9

    await provider.close()


@pytest.mark.asyncio
@respx.mock
async def test_stream_error_event_raises():
    body = sse(
        {"type": "message_start", "message": {"id": "msg_3", "model": "m"}},
        {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
    )
    respx.post(MESSAGES_URL).mock(
        return_value=Response(200, text=body, headers={"content-type": "text/event-stream"})
    )
    provider = AnthropicProvider(api_key="test-key")
    request = ProviderRequest(
        model="m", max_tokens=10, messages=[Message(role="user", content="Hi")]
    )

    with pytest.raises(ProviderError, match="Overloaded"):
        async for _ in provider.stream_message(request):
            pass

    await provider.close()


@pytest.mark.asyncio
@respx.mock
async def test_stream_error_status_raises():
    respx.post(MESSAGES_URL).mock(return_value=Response(500, text="boom"))
    provider = AnthropicProvider(api_key="test-key")
    request = ProviderRequest(
        model="m", max_tokens=10, messages=[Message(role="user", content="Hi")]
    )

    with pytest.raises(ProviderError) as exc_info:
        async for _ in provider.stream_message(request):
            pass

    assert exc_info.value.status_code == 500
    await provider.close()


SERVER_SEARCH_CONTENT = [
    {"type": "redacted_thinking", "data": "EmwKAhgBEgy3va3pzix"},
    {
        "type": "server_tool_use",
        "id": "srvtoolu_1",
        "name": "web_search",
        "input": {"query": "weather in Paris"},
    },
    {
        "type": "web_search_tool_result",
        "tool_use_id": "srvtoolu_1",
        "content": [
            {
                "type": "web_search_result",
                "url": "https://weather.example.com/paris",
                "title": "Paris weather",
                "encrypted_content": "abc123",
            }
        ],
    },
    {
        "type": "text",
        "text": "It is sunny in Paris.",
        "citations": [
            {
                "type": "web_search_result_location",
                "url": "https://weather.example.com/paris",
                "title": "Paris weather",
                "encrypted_index": "idx",
                "cited_text": "Sunny, 24C",
            }
        ],
    },
]


@pytest.mark.asyncio
@respx.mock
async def test_server_tool_blocks_are_sent_back_unchanged():
    route = respx.post(MESSAGES_URL).mock(
        side_effect=[
            Response(
                200,
                json={
                    "id": "msg_3",
                    "model": "m",
                    "content": SERVER_SEARCH_CONTENT,
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": 3, "output_tokens": 4},
                },
            ),
            Response(
                200,
                json={
                    "id": "msg_4",
                    "model": "m",
                    "content": [{"type": "text", "text": "You're welcome."}],
                    "stop_reason": "end_turn",
                    "usage": {},
                },
            ),
        ]
    )
    provider = AnthropicProvider(api_key="test-key")
    history = [Message(role="user", content="Weather in Paris?")]

    message = await provider.create_message(
        ProviderRequest(model="m", max_tokens=10, messages=list(history))
    )

    assert len(message.content) == 4
    assert [type(block) for block in message.content] == [RawBlock, RawBlock, RawBlock, TextBlock]
    assert message.content[2].type == "web_search_tool_result"
    assert message.content[3].text == "It is sunny in Paris."

    history.append(Message(role="assistant", content=list(message.content)))
    history.append(Message(role="user", content="Thanks"))
    await provider.create_message(ProviderRequest(model="m", max_tokens=10, messages=history))

    sent = json.loads(route.calls.last.request.content)
    assert sent["messages"][1] == {"role": "assistant", "content": SERVER_SEARCH_CONTENT}

    await provider.close()


@pytest.mark.asyncio
@respx.mock
async def test_stream_keeps_server_tool_blocks_and_citations():
    citation = {"type": "char_location", "cited_text": "Sunny", "document_index": 0}
    body = sse(
        {"type": "message_start", "message": {"id": "msg_5", "model": "m", "usage": {}}},
        {
            "type": "content_block_start",
            "index": 0,
            "content_block": {
                "type": "server_tool_use",
                "id": "srv_1",
                "name": "web_search",
                "input": {},
            },
        },
        {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "input_json_delta", "partial_json": '{"query": "paris"}'},
        },
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}},
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "text_delta", "text": "Sunny."},
        },
        {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "citations_delta", "citation": citation},
        },
        {"type": "content_block_stop", "index": 1},
        {
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn"},
            "usage": {"output_tokens": 2},
        },
        {"type": "message_stop"},
    )
    respx.post(MESSAGES_URL).mock(
        return_value=Response(200, text=body, headers={"content-type": "text/event-stream"})
    )
    provider = AnthropicProvider(api_key="test-key")
    request = ProviderRequest(
        model="m", max_tokens=10, messages=[Message(role="user", content="Hi")]
    )

    events = [event async for event in provider.stream_message(request)]

    assert not any(isinstance(event, (ToolCallStart, ToolCallDelta)) for event in events)
    final = events[-1]
    assert isinstance(final, MessageComplete)
    assert final.message.content == [
        RawBlock(
            data={
                "type": "server_tool_use",
                "id": "srv_1",
                "name": "web_search",
                "input": {"query": "paris"},
            }
        ),
        TextBlock(text="Sunny.", citations=[citation]),
    ]

    await provider.close()
