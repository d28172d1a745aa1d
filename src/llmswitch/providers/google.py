from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from ..streaming import StreamAccumulator
from ..types import (
    DEFAULT_FINISH_REASON,
    Content,
    ContentEmbedding,
    CountTokensRequest,
    CountTokensResponse,
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
from .base import BaseProvider, coerce, split_parts

DEFAULT_EMBEDDING_MODEL = "text-embedding-004"


class GoogleProvider(BaseProvider):
    """Gemini over the Generative Language REST API.

    The canonical content model is Gemini's own, so requests are mostly passed
    through; roles are still normalised to ``user``/``model``.
    """

    name = "google"
    display_name = "Google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        return headers

    def _model_url(self, model: str, method: str) -> str:
        model_path = model if model.startswith("models/") else f"models/{model}"
        return f"{self.base_url}/{quote(model_path, safe='/')}:{method}"

    @staticmethod
    def _convert_contents(contents: list[Content]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for content in contents:
            text, calls, responses = split_parts(content.parts)
            if not calls and not responses and not text.strip():
                continue
            wire = content.to_wire()
            wire["role"] = "model" if content.role in ("model", "assistant") else "user"
            converted.append(wire)
        return converted

    @staticmethod
    def _system_instruction(request: GenerateContentRequest | CountTokensRequest) -> dict[str, Any] | None:
        system = system_text(request.system_instruction)
        if not system.strip():
            return None
        return {"parts": [{"text": system}]}

    def _build_generate_request(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload: dict[str, Any] = {"contents": self._convert_contents(request.contents)}
        system = self._system_instruction(request)
        if system is not None:
            payload["systemInstruction"] = system
        if request.generation_config is not None:
            generation = request.generation_config.to_wire()
            if generation:
                payload["generationConfig"] = generation
        if request.tools:
            payload["tools"] = [
                {"functionDeclarations": [tool.to_wire() for tool in request.tools]}
            ]
        if stream:
            url = self._model_url(self.model, "streamGenerateContent") + "?alt=sse"
        else:
            url = self._model_url(self.model, "generateContent")
        return url, self._headers(), payload

    def _candidate_parts(
        self, data: dict[str, Any]
    ) -> tuple[list[TextPart | FunctionCallPart], str | None]:
        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
        content = candidate.get("content")
        raw_parts = content.get("parts") if isinstance(content, dict) else None
        parts: list[TextPart | FunctionCallPart] = []
        for raw_part in raw_parts or []:
            if not isinstance(raw_part, dict) or raw_part.get("thought"):
                continue
            function_call = raw_part.get("functionCall")
            if isinstance(function_call, dict):
                name = function_call.get("name")
                if not isinstance(name, str) or not name:
                    continue
                identifier = function_call.get("id")
                parts.append(
                    FunctionCallPart(
                        function_call=FunctionCall(
                            name=name,
                            args=self._parse_arguments(name, function_call.get("args")),
                            id=identifier if isinstance(identifier, str) and identifier else None,
                        )
                    )
                )
                continue
            text = raw_part.get("text")
            if isinstance(text, str) and text:
                parts.append(TextPart(text=text))
        finish_reason = candidate.get("finishReason")
        if not isinstance(finish_reason, str) or not finish_reason:
            finish_reason = None
        return parts, finish_reason

    def _convert_response(self, data: dict[str, Any]) -> GenerateContentResponse:
        parts, finish_reason = self._candidate_parts(data)
        return GenerateContentResponse.from_parts(parts, finish_reason or DEFAULT_FINISH_REASON)

    def _handle_stream_record(
        self, record: dict[str, Any], accumulator: StreamAccumulator
    ) -> list[GenerateContentResponse]:
        parts, finish_reason = self._candidate_parts(record)
        results: list[GenerateContentResponse] = []
        for part in parts:
            if isinstance(part, TextPart):
                accumulator.add_text(part.text)
                results.append(GenerateContentResponse.from_text(part.text))
            else:
                pending = accumulator.new_tool_call()
                pending.id = part.function_call.id
                pending.name = part.function_call.name
                pending.arguments = part.function_call.args
        if finish_reason is not None:
            accumulator.finish_reason = finish_reason
            results.extend(self._finish_stream(accumulator))
        return results

    async def count_tokens(
        self, request: CountTokensRequest | GenerateContentRequest | Mapping[str, Any]
    ) -> CountTokensResponse:
        if not isinstance(request, (CountTokensRequest, GenerateContentRequest)):
            request = coerce(CountTokensRequest, request)
        contents = self._convert_contents(request.contents)
        system = self._system_instruction(request)
        if system is None:
            payload: dict[str, Any] = {"contents": contents}
        else:
            model_path = self.model if self.model.startswith("models/") else f"models/{self.model}"
            payload = {
                "generateContentRequest": {
                    "model": model_path,
                    "contents": contents,
                    "systemInstruction": system,
                }
            }
        async with self._client() as client:
            response = await client.post(
                self._model_url(self.model, "countTokens"), headers=self._headers(), json=payload
            )
            await self._raise_for_status(response)
            data = response.json()
        total = data.get("totalTokens")
        return CountTokensResponse(total_tokens=total if isinstance(total, int) else 0)

    async def embed_content(
        self, request: EmbedContentRequest | Mapping[str, Any]
    ) -> EmbedContentResponse:
        resolved = coerce(EmbedContentRequest, request)
        model = (
            resolved.model
            or self.config.option("embedding_model")
            or DEFAULT_EMBEDDING_MODEL
        )
        model_path = model if model.startswith("models/") else f"models/{model}"
        payload = {
            "model": model_path,
            "content": {"parts": [{"text": request_text(resolved)}]},
        }
        async with self._client() as client:
            response = await client.post(
                self._model_url(model, "embedContent"), headers=self._headers(), json=payload
            )
            await self._raise_for_status(response)
            data = response.json()
        embedding = data.get("embedding")
        values = embedding.get("values") if isinstance(embedding, dict) else None
        if not isinstance(values, list):
            return EmbedContentResponse(embeddings=[])
        return EmbedContentResponse(embeddings=[ContentEmbedding(values=values)])


__all__ = ["GoogleProvider"]
