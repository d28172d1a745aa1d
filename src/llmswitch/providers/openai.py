from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, ClassVar
from urllib.parse import quote

from ..errors import UpstreamError
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
    ProviderConfig,
    TextPart,
    request_text,
    system_text,
)
from .base import (
    BaseProvider,
    ToolCallIds,
    coerce,
    function_declarations_to_openai_tools,
    function_response_output,
    map_role,
    split_parts,
)

DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"
DEFAULT_AZURE_API_VERSION = "2024-02-01"


def _message_text(raw_content: Any) -> str:
    if isinstance(raw_content, str):
        return raw_content
    if isinstance(raw_content, list):
        texts: list[str] = []
        for block in raw_content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                texts.append(block["text"])
        return "".join(texts)
    return ""


class OpenAIProvider(BaseProvider):
    name = "openai"
    display_name = "OpenAI"
    default_base_url = "https://api.openai.com/v1"

    def _chat_url(self) -> str:
        if self.base_url.lower().endswith("/chat/completions"):
            return self.base_url
        return f"{self.base_url}/chat/completions"

    def _embeddings_url(self, model: str) -> str:
        _ = model
        return f"{self.base_url}/embeddings"

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
        ids = ToolCallIds()
        for content in request.contents:
            text, calls, responses = split_parts(content.parts)
            if calls:
                messages.append(
                    {
                        "role": "assistant",
                        "content": text or None,
                        "tool_calls": [
                            {
                                "id": ids.for_call(call),
                                "type": "function",
                                "function": {
                                    "name": call.name,
                                    "arguments": json.dumps(call.args),
                                },
                            }
                            for call in calls
                        ],
                    }
                )
            elif responses:
                for response in responses:
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": ids.for_response(response),
                            "content": function_response_output(response),
                        }
                    )
            elif text.strip():
                messages.append({"role": map_role(content.role), "content": text})
        return messages

    def _build_generate_request(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request),
            "stream": stream,
        }
        generation = request.generation_config
        if generation is not None:
            if generation.temperature is not None:
                payload["temperature"] = generation.temperature
            if generation.top_p is not None:
                payload["top_p"] = generation.top_p
            if generation.max_output_tokens is not None:
                payload["max_tokens"] = generation.max_output_tokens
        if request.tools:
            payload["tools"] = function_declarations_to_openai_tools(request.tools)
            payload["tool_choice"] = "auto"
        return self._chat_url(), self._headers(), payload

    def _function_call_part(
        self, function: Any, identifier: Any = None
    ) -> FunctionCallPart | None:
        if not isinstance(function, dict):
            return None
        name = function.get("name")
        if not isinstance(name, str) or not name:
            return None
        args = self._parse_arguments(name, function.get("arguments"))
        call_id = identifier if isinstance(identifier, str) and identifier else None
        return FunctionCallPart(function_call=FunctionCall(name=name, args=args, id=call_id))

    def _convert_response(self, data: dict[str, Any]) -> GenerateContentResponse:
        raw_choices = data.get("choices") or []
        choice = raw_choices[0] if raw_choices and isinstance(raw_choices[0], dict) else {}
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        parts: list[TextPart | FunctionCallPart] = []
        text = _message_text(message.get("content"))
        if text:
            parts.append(TextPart(text=text))
        for tool_call in message.get("tool_calls") or []:
            if not isinstance(tool_call, dict):
                continue
            part = self._function_call_part(tool_call.get("function"), tool_call.get("id"))
            if part is not None:
                parts.append(part)
        legacy_part = self._function_call_part(message.get("function_call"))
        if legacy_part is not None:
            parts.append(legacy_part)
        finish_reason = choice.get("finish_reason")
        if not isinstance(finish_reason, str) or not finish_reason:
            finish_reason = DEFAULT_FINISH_REASON
        return GenerateContentResponse.from_parts(parts, finish_reason)

    def _handle_stream_record(
        self, record: dict[str, Any], accumulator: StreamAccumulator
    ) -> list[GenerateContentResponse]:
        error = record.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            raise UpstreamError(
                self.display_name,
                None,
                str(error.get("type") or error.get("code") or "stream error"),
                message if isinstance(message, str) else None,
            )
        choices = record.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            delta = {}
        finish_reason = choice.get("finish_reason")
        if not isinstance(finish_reason, str) or not finish_reason:
            finish_reason = None

        results: list[GenerateContentResponse] = []
        content = delta.get("content")
        if isinstance(content, str) and content:
            accumulator.add_text(content)
            results.append(GenerateContentResponse.from_text(content, finish_reason))

        for position, fragment in enumerate(delta.get("tool_calls") or []):
            if not isinstance(fragment, dict):
                continue
            index = fragment.get("index")
            pending = accumulator.tool_call(index if isinstance(index, int) else position)
            identifier = fragment.get("id")
            if isinstance(identifier, str) and identifier:
                pending.id = identifier
            function = fragment.get("function")
            if isinstance(function, dict):
                name = function.get("name")
                if isinstance(name, str) and name:
                    pending.name = name
                arguments = function.get("arguments")
                if arguments is not None:
                    pending.add_arguments(arguments)

        legacy = delta.get("function_call")
        if isinstance(legacy, dict):
            pending = accumulator.tool_call("function_call")
            name = legacy.get("name")
            if isinstance(name, str) and name:
                pending.name = name
            if legacy.get("arguments") is not None:
                pending.add_arguments(legacy["arguments"])

        if finish_reason is not None and accumulator.has_pending_tool_calls:
            results.append(
                GenerateContentResponse.from_function_calls(
                    accumulator.drain_function_calls(), finish_reason
                )
            )
        return results

    async def embed_content(
        self, request: EmbedContentRequest | Mapping[str, Any]
    ) -> EmbedContentResponse:
        resolved = coerce(EmbedContentRequest, request)
        model = (
            resolved.model
            or self.config.option("embedding_model")
            or DEFAULT_EMBEDDING_MODEL
        )
        payload = {"model": model, "input": request_text(resolved)}
        async with self._client() as client:
            response = await client.post(
                self._embeddings_url(model), headers=self._headers(), json=payload
            )
            await self._raise_for_status(response)
            data = response.json()
        items = [item for item in data.get("data") or [] if isinstance(item, dict)]
        items.sort(key=lambda item: item.get("index", 0))
        return EmbedContentResponse(
            embeddings=[ContentEmbedding(values=item.get("embedding") or []) for item in items]
        )


class AzureOpenAIProvider(OpenAIProvider):
    name = "azure-openai"
    display_name = "Azure OpenAI"
    default_base_url = ""

    def __init__(self, config: ProviderConfig | Mapping[str, Any]):
        super().__init__(config)
        self.api_version = str(self.config.option("api_version") or DEFAULT_AZURE_API_VERSION)

    def validate_config(self, config: ProviderConfig | Mapping[str, Any]) -> bool:
        if not super().validate_config(config):
            return False
        resolved = coerce(ProviderConfig, config)
        return bool((resolved.base_url or "").strip())

    def _deployment_url(self, deployment: str, suffix: str) -> str:
        base = self.base_url
        if base.lower().endswith("/openai"):
            base = base[: -len("/openai")]
        return (
            f"{base}/openai/deployments/{quote(deployment, safe='')}/{suffix}"
            f"?api-version={self.api_version}"
        )

    def _chat_url(self) -> str:
        return self._deployment_url(self.model, "chat/completions")

    def _embeddings_url(self, model: str) -> str:
        return self._deployment_url(model, "embeddings")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["api-key"] = self.api_key
        return headers


__all__ = ["AzureOpenAIProvider", "OpenAIProvider"]
