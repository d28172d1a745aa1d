from __future__ import annotations

import json
import logging
import math
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import aclosing
from typing import Any, ClassVar, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import UpstreamError
from ..streaming import Framing, StreamAccumulator, iter_json_records, parse_tool_arguments
from ..types import (
    DEFAULT_FINISH_REASON,
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    FunctionCall,
    FunctionCallPart,
    FunctionDeclaration,
    FunctionResponse,
    FunctionResponsePart,
    GenerateContentRequest,
    GenerateContentResponse,
    ProviderConfig,
    TextPart,
    request_text,
)

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_ERROR_BODY_LIMIT = 500


def coerce(model_cls: type[_ModelT], value: _ModelT | Mapping[str, Any]) -> _ModelT:
    if isinstance(value, model_cls):
        return value
    return model_cls.model_validate(value)


def estimate_tokens(text: str) -> int:
    """Character-based estimate (four characters per token); not a tokenizer."""
    return math.ceil(len(text) / 4)


def map_role(role: str | None) -> str:
    if role in ("model", "assistant"):
        return "assistant"
    return "user"


def split_parts(
    parts: Iterable[Any],
) -> tuple[str, list[FunctionCall], list[FunctionResponse]]:
    texts: list[str] = []
    calls: list[FunctionCall] = []
    responses: list[FunctionResponse] = []
    for part in parts:
        match part:
            case TextPart(text=text):
                texts.append(text)
            case FunctionCallPart(function_call=call):
                calls.append(call)
            case FunctionResponsePart(function_response=response):
                responses.append(response)
    return "".join(texts), calls, responses


def function_response_output(response: FunctionResponse) -> str:
    payload = response.response
    output = payload.get("output") if "output" in payload else payload
    if isinstance(output, str):
        return output
    return json.dumps(output)


def function_declarations_to_openai_tools(
    declarations: Iterable[FunctionDeclaration],
) -> list[dict[str, Any]]:
    tools: list[dict[str, Any]] = []
    for declaration in declarations:
        function: dict[str, Any] = {"name": declaration.name}
        if declaration.description is not None:
            function["description"] = declaration.description
        function["parameters"] = declaration.parameters
        tools.append({"type": "function", "function": function})
    return tools


class ToolCallIds:
    """Pairs tool results with the tool calls they answer.

    Canonical function calls may arrive without an id; generated ids are queued
    per function name so a later response without an id picks up the oldest
    unanswered call of the same name.
    """

    def __init__(self, prefix: str = "call") -> None:
        self._prefix = prefix
        self._counter = 0
        self._pending: dict[str, list[str]] = {}

    def for_call(self, call: FunctionCall) -> str:
        identifier = call.id
        if not identifier:
            self._counter += 1
            identifier = f"{self._prefix}_{self._counter}"
        self._pending.setdefault(call.name, []).append(identifier)
        return identifier

    def for_response(self, response: FunctionResponse) -> str:
        queue = self._pending.get(response.name) or []
        if response.id:
            if response.id in queue:
                queue.remove(response.id)
            return response.id
        if queue:
            return queue.pop(0)
        return response.name


class BaseProvider:
    name: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    requires_api_key: ClassVar[bool] = True
    default_base_url: ClassVar[str] = ""
    framing: ClassVar[Framing] = "sse"

    def __init__(self, config: ProviderConfig | Mapping[str, Any]):
        self.config = coerce(ProviderConfig, config)
        self.api_key = (self.config.api_key or "").strip()
        self.base_url = (self.config.base_url or self.default_base_url).strip().rstrip("/")
        self.model = self.config.model or ""

    def validate_config(self, config: ProviderConfig | Mapping[str, Any]) -> bool:
        try:
            resolved = coerce(ProviderConfig, config)
        except ValidationError:
            return False
        if resolved.provider != self.name:
            return False
        if not (resolved.model or "").strip():
            return False
        if self.requires_api_key and not (resolved.api_key or "").strip():
            return False
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout)

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            raw_body = await response.aread()
        except httpx.HTTPError as exc:
            logger.debug("could not read %s error body: %s", self.display_name, exc)
            body = None
        else:
            body = raw_body.decode("utf-8", errors="replace").strip()[:_ERROR_BODY_LIMIT] or None
        raise UpstreamError(
            self.display_name, response.status_code, response.reason_phrase, body
        )

    def _parse_arguments(self, name: str, raw: Any) -> dict[str, Any]:
        return parse_tool_arguments(self.display_name, name, raw)

    def _build_generate_request(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _convert_response(self, data: dict[str, Any]) -> GenerateContentResponse:
        raise NotImplementedError

    def _handle_stream_record(
        self, record: dict[str, Any], accumulator: StreamAccumulator
    ) -> list[GenerateContentResponse]:
        raise NotImplementedError

    def _finish_stream(self, accumulator: StreamAccumulator) -> list[GenerateContentResponse]:
        if not accumulator.has_pending_tool_calls:
            return []
        return [
            GenerateContentResponse.from_function_calls(
                accumulator.drain_function_calls(),
                accumulator.finish_reason or DEFAULT_FINISH_REASON,
            )
        ]

    async def generate_content(
        self, request: GenerateContentRequest | Mapping[str, Any]
    ) -> GenerateContentResponse:
        resolved = coerce(GenerateContentRequest, request)
        url, headers, payload = self._build_generate_request(resolved, stream=False)
        logger.debug("%s generate_content url=%s model=%s", self.name, url, self.model)
        async with self._client() as client:
            response = await client.post(url, headers=headers, json=payload)
            await self._raise_for_status(response)
            data = response.json()
        return self._convert_response(data)

    async def generate_content_stream(
        self, request: GenerateContentRequest | Mapping[str, Any]
    ) -> AsyncIterator[GenerateContentResponse]:
        resolved = coerce(GenerateContentRequest, request)
        url, headers, payload = self._build_generate_request(resolved, stream=True)
        logger.debug("%s generate_content_stream url=%s model=%s", self.name, url, self.model)
        accumulator = StreamAccumulator(self.display_name)
        async with self._client() as client:
            async with client.stream("POST", url, headers=headers, json=payload) as response:
                await self._raise_for_status(response)
                async with aclosing(
                    iter_json_records(response.aiter_bytes(), self.framing)
                ) as records:
                    async for record in records:
                        for item in self._handle_stream_record(record, accumulator):
                            yield item
                for item in self._finish_stream(accumulator):
                    yield item

    async def count_tokens(
        self, request: CountTokensRequest | GenerateContentRequest | Mapping[str, Any]
    ) -> CountTokensResponse:
        if not isinstance(request, (CountTokensRequest, GenerateContentRequest)):
            request = coerce(CountTokensRequest, request)
        return CountTokensResponse(total_tokens=estimate_tokens(request_text(request)))

    async def embed_content(
        self, request: EmbedContentRequest | Mapping[str, Any]
    ) -> EmbedContentResponse:
        _ = request
        return EmbedContentResponse(embeddings=[])


__all__ = [
    "BaseProvider",
    "ToolCallIds",
    "coerce",
    "estimate_tokens",
    "function_declarations_to_openai_tools",
    "function_response_output",
    "map_role",
    "split_parts",
]
