"""Anthropic Messages API provider using httpx.

Implements the LLMProvider protocol without the anthropic SDK: requests are
built from ProviderRequest objects and responses (blocking or server-sent
events) are parsed back into ProviderMessage objects.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from agentree.errors import ProviderError
from agentree.llm.client import (
    ContentBlock,
    Message,
    MessageComplete,
    ProviderMessage,
    ProviderRequest,
    ProviderStreamEvent,
    RawBlock,
    ReasoningDelta,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ToolCallDelta,
    ToolCallStart,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"


def block_to_wire(block: ContentBlock) -> dict[str, Any]:
    """Convert a content block to its Anthropic JSON form."""
    if isinstance(block, TextBlock):
        if block.citations:
            return {"type": "text", "text": block.text, "citations": block.citations}
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingBlock):
        wire: dict[str, Any] = {"type": "thinking", "thinking": block.thinking}
        if block.signature is not None:
            wire["signature"] = block.signature
        return wire
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        wire = {"type": "tool_result", "tool_use_id": block.tool_use_id, "content": block.content}
        if block.is_error:
            wire["is_error"] = True
        return wire
    if isinstance(block, RawBlock):
        return dict(block.data)
    raise TypeError(f"Unsupported content block: {block!r}")


def block_from_wire(data: dict[str, Any]) -> ContentBlock:
    """Parse an Anthropic content block; unknown block types are kept as RawBlock."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text", ""), citations=data.get("citations") or None)
    if block_type == "thinking":
        return ThinkingBlock(thinking=data.get("thinking", ""), signature=data.get("signature"))
    if block_type == "tool_use":
        return ToolUseBlock(id=data["id"], name=data["name"], input=data.get("input") or {})
    logger.debug("Keeping %s content block verbatim", block_type)
    return RawBlock(data=dict(data))


def usage_from_wire(data: dict[str, Any] | None) -> Usage:
    data = data or {}
    return Usage(
        input_tokens=data.get("input_tokens") or 0,
        output_tokens=data.get("output_tokens") or 0,
        cache_creation_input_tokens=data.get("cache_creation_input_tokens") or 0,
        cache_read_input_tokens=data.get("cache_read_input_tokens") or 0,
    )


def message_to_wire(message: Message) -> dict[str, Any]:
    if isinstance(message.content, str):
        return {"role": message.role, "content": message.content}
    return {"role": message.role, "content": [block_to_wire(block) for block in message.content]}


def message_from_wire(data: dict[str, Any]) -> ProviderMessage:
    return ProviderMessage(
        id=data.get("id", ""),
        model=data.get("model", ""),
        content=[block_from_wire(block) for block in data.get("content", [])],
        stop_reason=data.get("stop_reason"),
        usage=usage_from_wire(data.get("usage")),
    )


class AnthropicProvider:
    """Model provider for the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = ANTHROPIC_API_URL,
        timeout: int = 120,
        api_version: str = ANTHROPIC_API_VERSION,
    ):
        """Initialize the provider.

        Args:
            api_key: Anthropic API key
            base_url: API base URL
            timeout: Request timeout in seconds
            api_version: Value of the ``anthropic-version`` header
        """
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": api_version,
                "content-type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
        )

    def build_payload(self, request: ProviderRequest, stream: bool = False) -> dict[str, Any]:
        """Convert a ProviderRequest to the Messages API JSON body.

        Args:
            request: Provider request
            stream: Whether to ask for server-sent events

        Returns:
            JSON-serialisable request body
        """
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [message_to_wire(message) for message in request.messages],
        }
        if request.system:
            payload["system"] = request.system
        if request.tools:
            payload["tools"] = request.tools
        if request.mcp_servers:
            payload["mcp_servers"] = request.mcp_servers
        if request.stop_sequences:
            payload["stop_sequences"] = request.stop_sequences
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.thinking_budget:
            payload["thinking"] = {"type": "enabled", "budget_tokens": request.thinking_budget}
        if request.tool_choice:
            payload["tool_choice"] = request.tool_choice
        if stream:
            payload["stream"] = True
        return payload

    def _headers(self, request: ProviderRequest) -> dict[str, str]:
        if request.betas:
            return {"anthropic-beta": ",".join(request.betas)}
        return {}

    async def create_message(self, request: ProviderRequest) -> ProviderMessage:
        """Generate a complete message from the Messages API.

        Args:
            request: Provider request

        Returns:
            Parsed assistant message

        Raises:
            ProviderError: If the HTTP call fails or returns an error status
        """
        payload = self.build_payload(request)
        try:
            response = await self.client.post(
                "/v1/messages", json=payload, headers=self._headers(request)
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Anthropic API returned {e.response.status_code}: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic API request failed: {e}") from e

        return message_from_wire(response.json())

    async def stream_message(self, request: ProviderRequest) -> AsyncIterator[ProviderStreamEvent]:
        """Stream a message from the Messages API.

        Args:
            request: Provider request

        Yields:
            TextDelta, ReasoningDelta, ToolCallStart and ToolCallDelta events
            as they arrive, then one MessageComplete with the full message

        Raises:
            ProviderError: If the HTTP call fails or the stream reports an error
        """
        payload = self.build_payload(request, stream=True)
        state = _StreamState()
        try:
            async with self.client.stream(
                "POST", "/v1/messages", json=payload, headers=self._headers(request)
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    text = body.decode(errors="replace")
                    raise ProviderError(
                        f"Anthropic API returned {response.status_code}: {text}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    for event in state.feed(json.loads(line[6:])):
                        yield event
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic API stream failed: {e}") from e

        yield MessageComplete(message=state.finish())

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()


class _StreamState:
    """Accumulates server-sent events into a ProviderMessage."""

    def __init__(self) -> None:
        self.message_id = ""
        self.model = ""
        self.stop_reason: str | None = None
        self.usage = Usage()
        self.blocks: dict[int, dict[str, Any]] = {}
        self.partial_json: dict[int, list[str]] = {}

    def feed(self, data: dict[str, Any]) -> list[ProviderStreamEvent]:
        event_type = data.get("type")
        events: list[ProviderStreamEvent] = []

        if event_type == "message_start":
            message = data.get("message", {})
            self.message_id = message.get("id", "")
            self.model = message.get("model", "")
            self.usage = usage_from_wire(message.get("usage"))

        elif event_type == "content_block_start":
            index = data["index"]
            block = dict(data.get("content_block", {}))
            self.blocks[index] = block
            if block.get("type") == "tool_use":
                self.partial_json[index] = []
                events.append(ToolCallStart(id=block["id"], name=block["name"]))

        elif event_type == "content_block_delta":
            index = data["index"]
            delta = data.get("delta", {})
            block = self.blocks.setdefault(index, {})
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                block["text"] = block.get("text", "") + delta["text"]
                events.append(TextDelta(text=delta["text"]))
            elif delta_type == "thinking_delta":
                block["thinking"] = block.get("thinking", "") + delta["thinking"]
                events.append(ReasoningDelta(text=delta["thinking"]))
            elif delta_type == "signature_delta":
                block["signature"] = delta.get("signature")
            elif delta_type == "citations_delta":
                block.setdefault("citations", []).append(delta["citation"])
            elif delta_type == "input_json_delta":
                self.partial_json.setdefault(index, []).append(delta["partial_json"])
                if block.get("type") == "tool_use":
                    events.append(
                        ToolCallDelta(id=block.get("id", ""), partial_json=delta["partial_json"])
                    )

        elif event_type == "content_block_stop":
            index = data["index"]
            chunks = self.partial_json.pop(index, None)
            if chunks is not None:
                raw = "".join(chunks)
                self.blocks[index]["input"] = json.loads(raw) if raw else {}

        elif event_type == "message_delta":
            delta = data.get("delta", {})
            if "stop_reason" in delta:
                self.stop_reason = delta["stop_reason"]
            if data.get("usage"):
                self.usage.output_tokens = data["usage"].get(
                    "output_tokens", self.usage.output_tokens
                )

        elif event_type == "error":
            error = data.get("error", {})
            raise ProviderError(f"Anthropic stream error: {error.get('message', error)}")

        return events

    def finish(self) -> ProviderMessage:
        return ProviderMessage(
            id=self.message_id,
            model=self.model,
            content=[block_from_wire(self.blocks[index]) for index in sorted(self.blocks)],
            stop_reason=self.stop_reason,
            usage=self.usage,
        )
