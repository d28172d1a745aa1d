from __future__ import annotations

from typing import Any
from urllib.parse import urlparse, urlunparse

from ..errors import UpstreamError
from ..streaming import StreamAccumulator
from ..types import (
    DEFAULT_FINISH_REASON,
    FunctionCall,
    FunctionCallPart,
    FunctionDeclaration,
    GenerateContentRequest,
    GenerateContentResponse,
    TextPart,
    system_text,
)
from .base import BaseProvider, ToolCallIds, function_response_output, map_role, split_parts

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1000


def _is_version_segment(segment: str) -> bool:
    lowered = segment.lower()
    if not lowered.startswith("v"):
        return False
    suffix = lowered[1:]
    return bool(suffix) and suffix[0].isdigit()


def _normalize_tool(declaration: FunctionDeclaration) -> dict[str, Any]:
    input_schema = declaration.parameters or {"type": "object", "properties": {}}
    tool: dict[str, Any] = {"name": declaration.name, "input_schema": input_schema}
    if declaration.description is not None:
        tool["description"] = declaration.description
    return tool


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    display_name = "Anthropic"
    default_base_url = "https://api.anthropic.com"

    def _messages_url(self) -> str:
        parsed = urlparse(self.base_url)
        segments = [segment for segment in (parsed.path or "").split("/") if segment]
        ends_with_messages = bool(segments) and segments[-1].lower() == "messages"
        if not any(_is_version_segment(segment) for segment in segments):
            insert_index = len(segments) - 1 if ends_with_messages else len(segments)
            segments.insert(insert_index, "v1")
        if not ends_with_messages:
            segments.append("messages")
        return urlunparse(parsed._replace(path="/" + "/".join(segments)))

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _convert_messages(self, request: GenerateContentRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        ids = ToolCallIds(prefix="toolu")
        for content in request.contents:
            text, calls, responses = split_parts(content.parts)
            if calls:
                blocks: list[dict[str, Any]] = []
                if text:
                    blocks.append({"type": "text", "text": text})
                for call in calls:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": ids.for_call(call),
                            "name": call.name,
                            "input": call.args,
                        }
                    )
                messages.append({"role": "assistant", "content": blocks})
            elif responses:
                for response in responses:
                    messages.append(
                        {
                            "role": "user",
                            "content": [
                                {
                                    "type": "tool_result",
                                    "tool_use_id": ids.for_response(response),
                                    "content": function_response_output(response),
                                }
                            ],
                        }
                    )
            elif text.strip():
                messages.append({"role": map_role(content.role), "content": text})
        return messages

    def _build_generate_request(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        generation = request.generation_config
        max_tokens = DEFAULT_MAX_TOKENS
        if generation is not None and generation.max_output_tokens is not None:
            max_tokens = generation.max_output_tokens
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request),
            "max_tokens": max_tokens,
            "stream": stream,
        }
        if generation is not None:
            if generation.temperature is not None:
                payload["temperature"] = generation.temperature
            if generation.top_p is not None:
                payload["top_p"] = generation.top_p
        system = system_text(request.system_instruction)
        if system.strip():
            payload["system"] = system
        if request.tools:
            payload["tools"] = [_normalize_tool(tool) for tool in request.tools]
        return self._messages_url(), self._headers(), payload

    def _convert_response(self, data: dict[str, Any]) -> GenerateContentResponse:
        parts: list[TextPart | FunctionCallPart] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                text_value = block.get("text")
                if isinstance(text_value, str) and text_value:
                    parts.append(TextPart(text=text_value))
            elif block_type == "tool_use":
                name = block.get("name")
                if not isinstance(name, str) or not name:
                    continue
                identifier = block.get("id")
                parts.append(
                    FunctionCallPart(
                        function_call=FunctionCall(
                            name=name,
                            args=self._parse_arguments(name, block.get("input")),
                            id=identifier if isinstance(identifier, str) and identifier else None,
                        )
                    )
                )
        stop_reason = data.get("stop_reason")
        if not isinstance(stop_reason, str) or not stop_reason:
            stop_reason = DEFAULT_FINISH_REASON
        return GenerateContentResponse.from_parts(parts, stop_reason)

    def _handle_stream_record(
        self, record: dict[str, Any], accumulator: StreamAccumulator
    ) -> list[GenerateContentResponse]:
        event_type = record.get("type")
        if event_type == "content_block_start":
            index = record.get("index")
            block = record.get("content_block")
            if not isinstance(block, dict):
                return []
            if block.get("type") == "tool_use":
                pending = accumulator.tool_call(index)
                identifier = block.get("id")
                if isinstance(identifier, str) and identifier:
                    pending.id = identifier
                name = block.get("name")
                if isinstance(name, str):
                    pending.name = name
                initial_input = block.get("input")
                if isinstance(initial_input, dict) and initial_input:
                    pending.arguments = initial_input
                return []
            text_value = block.get("text")
            if block.get("type") == "text" and isinstance(text_value, str) and text_value:
                accumulator.add_text(text_value)
                return [GenerateContentResponse.from_text(text_value)]
            return []
        if event_type == "content_block_delta":
            delta = record.get("delta")
            if not isinstance(delta, dict):
                return []
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text_value = delta.get("text")
                if isinstance(text_value, str) and text_value:
                    accumulator.add_text(text_value)
                    return [GenerateContentResponse.from_text(text_value)]
            elif delta_type == "input_json_delta":
                fragment = delta.get("partial_json")
                if isinstance(fragment, str):
                    accumulator.tool_call(record.get("index")).add_arguments(fragment)
            return []
        if event_type == "message_delta":
            delta = record.get("delta")
            if isinstance(delta, dict):
                stop_reason = delta.get("stop_reason")
                if isinstance(stop_reason, str) and stop_reason:
                    accumulator.finish_reason = stop_reason
            return []
        if event_type == "message_stop":
            return self._finish_stream(accumulator)
        if event_type == "error":
            error = record.get("error")
            error = error if isinstance(error, dict) else {}
            message = error.get("message")
            raise UpstreamError(
                self.display_name,
                None,
                str(error.get("type") or "stream error"),
                message if isinstance(message, str) else None,
            )
        return []


__all__ = ["AnthropicProvider"]
