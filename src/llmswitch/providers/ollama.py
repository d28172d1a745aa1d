from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..streaming import StreamAccumulator
from ..types import (
    DEFAULT_FINISH_REASON,
    ContentEmbedding,
    EmbedContentRequest,
    EmbedContentResponse,
    FunctionCall,
    FunctionCallPart,
    GenerateContentRequest,
    GenerateContentResponse,
    TextPart,
    request_text,
    system_text,
)
from .base import (
    BaseProvider,
    coerce,
    function_declarations_to_openai_tools,
    function_response_output,
    map_role,
    split_parts,
)


class OllamaProvider(BaseProvider):
    """Local models served by Ollama's ``/api/chat`` endpoint.

    Ollama streams newline-delimited JSON and reports tool calls as complete
    objects with pre-parsed arguments; the stream ends with ``"done": true``.
    """

    name = "ollama"
    display_name = "Ollama"
    requires_api_key = False
    default_base_url = "http://localhost:11434"
    framing = "ndjson"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _convert_messages(self, request: GenerateContentRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        system = system_text(request.system_instruction)
        if system.strip():
            messages.append({"role": "system", "content": system})
        for content in request.contents:
            text, calls, responses = split_parts(content.parts)
            if calls:
                messages.append(
                    {
                        "role": "assistant",
                        "content": text,
                        "tool_calls": [
                            {"function": {"name": call.name, "arguments": call.args}}
                            for call in calls
                        ],
                    }
                )
            elif responses:
                for response in responses:
                    messages.append(
                        {
                            "role": "tool",
                            "content": function_response_output(response),
                            "name": response.name,
                        }
                    )
            elif text.strip():
                messages.append({"role": map_role(content.role), "content": text})
        return messages

    def _build_generate_request(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        options: dict[str, Any] = {}
        generation = request.generation_config
        if generation is not None:
            if generation.temperature is not None:
                options["temperature"] = generation.temperature
            if generation.top_p is not None:
                options["top_p"] = generation.top_p
            if generation.max_output_tokens is not None:
                options["num_predict"] = generation.max_output_tokens
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request),
            "stream": stream,
            "options": options,
        }
        if request.tools:
            payload["tools"] = function_declarations_to_openai_tools(request.tools)
        return f"{self.base_url}/api/chat", self._headers(), payload

    def _tool_call_parts(self, message: dict[str, Any]) -> list[FunctionCallPart]:
        parts: list[FunctionCallPart] = []
        for tool_call in message.get("tool_calls") or []:
            if not isinstance(tool_call, dict):
                continue
            function = tool_call.get("function")
            if not isinstance(function, dict):
                continue
            name = function.get("name")
            if not isinstance(name, str) or not name:
                continue
            identifier = tool_call.get("id")
            parts.append(
                FunctionCallPart(
                    function_call=FunctionCall(
                        name=name,
                        args=self._parse_arguments(name, function.get("arguments")),
                        id=identifier if isinstance(identifier, str) and identifier else None,
                    )
                )
            )
        return parts

    def _convert_response(self, data: dict[str, Any]) -> GenerateContentResponse:
        # {"message": {"role": "assistant", "content": ..., "tool_calls": [...]}, "done": true}
        message = data.get("message")
        if not isinstance(message, dict):
            message = {}
        parts: list[TextPart | FunctionCallPart] = []
        text = message.get("content")
        if isinstance(text, str) and text:
            parts.append(TextPart(text=text))
        parts.extend(self._tool_call_parts(message))
        finish_reason = data.get("done_reason")
        if not isinstance(finish_reason, str) or not finish_reason:
            finish_reason = DEFAULT_FINISH_REASON
        return GenerateContentResponse.from_parts(parts, finish_reason)

    def _handle_stream_record(
        self, record: dict[str, Any], accumulator: StreamAccumulator
    ) -> list[GenerateContentResponse]:
        results: list[GenerateContentResponse] = []
        message = record.get("message")
        if isinstance(message, dict):
            text = message.get("content")
            if isinstance(text, str) and text:
                accumulator.add_text(text)
                results.append(GenerateContentResponse.from_text(text))
            for part in self._tool_call_parts(message):
                pending = accumulator.new_tool_call()
                pending.id = part.function_call.id
                pending.name = part.function_call.name
                pending.arguments = part.function_call.args
        if record.get("done"):
            finish_reason = record.get("done_reason")
            if isinstance(finish_reason, str) and finish_reason:
                accumulator.finish_reason = finish_reason
            results.extend(self._finish_stream(accumulator))
        return results

    async def embed_content(
        self, request: EmbedContentRequest | Mapping[str, Any]
    ) -> EmbedContentResponse:
        resolved = coerce(EmbedContentRequest, request)
        model = resolved.model or self.config.option("embedding_model") or self.model
        payload = {"model": model, "prompt": request_text(resolved)}
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/api/embeddings", headers=self._headers(), json=payload
            )
            await self._raise_for_status(response)
            data = response.json()
        values = data.get("embedding")
        if not isinstance(values, list):
            return EmbedContentResponse(embeddings=[])
        return EmbedContentResponse(embeddings=[ContentEmbedding(values=values)])


__all__ = ["OllamaProvider"]
