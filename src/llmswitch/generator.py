from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

from .errors import UpstreamError
from .providers import BaseProvider, ProviderRegistry, default_registry
from .types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    GenerateContentRequest,
    GenerateContentResponse,
    ProviderConfig,
)

logger = logging.getLogger(__name__)


def _log_event(
    level: int,
    *,
    event: str,
    provider: BaseProvider,
    started: float,
    detail: str | None = None,
) -> None:
    latency_ms = int((time.perf_counter() - started) * 1000)
    message = (
        f"{event} provider={provider.name} model={provider.model or '-'} latency_ms={latency_ms}"
    )
    if detail:
        message = f"{message} detail={detail}"
    logger.log(level, message)


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, UpstreamError):
        status = exc.status_code if exc.status_code is not None else "-"
        return f"status={status} {exc.status_text}"
    return f"{type(exc).__name__}: {exc}"


class LoggingContentGenerator:
    """Wraps a provider and logs every call; results and errors pass through."""

    def __init__(self, provider: BaseProvider):
        self.provider = provider

    @property
    def name(self) -> str:
        return self.provider.name

    def validate_config(self, config: ProviderConfig | Mapping[str, Any]) -> bool:
        return self.provider.validate_config(config)

    async def generate_content(
        self, request: GenerateContentRequest | Mapping[str, Any]
    ) -> GenerateContentResponse:
        started = time.perf_counter()
        try:
            response = await self.provider.generate_content(request)
        except Exception as exc:
            _log_event(
                logging.ERROR,
                event="generate_content.error",
                provider=self.provider,
                started=started,
                detail=_error_detail(exc),
            )
            raise
        _log_event(
            logging.INFO,
            event="generate_content.ok",
            provider=self.provider,
            started=started,
            detail=f"function_calls={len(response.function_calls)}",
        )
        return response

    async def generate_content_stream(
        self, request: GenerateContentRequest | Mapping[str, Any]
    ) -> AsyncIterator[GenerateContentResponse]:
        started = time.perf_counter()
        chunks = 0
        function_calls = 0
        stream = self.provider.generate_content_stream(request)
        try:
            async for chunk in stream:
                chunks += 1
                function_calls += len(chunk.function_calls)
                yield chunk
        except Exception as exc:
            _log_event(
                logging.ERROR,
                event="generate_content_stream.error",
                provider=self.provider,
                started=started,
                detail=_error_detail(exc),
            )
            raise
        finally:
            await stream.aclose()
        _log_event(
            logging.INFO,
            event="generate_content_stream.ok",
            provider=self.provider,
            started=started,
            detail=f"chunks={chunks} function_calls={function_calls}",
        )

    async def count_tokens(
        self, request: CountTokensRequest | GenerateContentRequest | Mapping[str, Any]
    ) -> CountTokensResponse:
        started = time.perf_counter()
        try:
            result = await self.provider.count_tokens(request)
        except Exception as exc:
            _log_event(
                logging.ERROR,
                event="count_tokens.error",
                provider=self.provider,
                started=started,
                detail=_error_detail(exc),
            )
            raise
        _log_event(
            logging.DEBUG,
            event="count_tokens.ok",
            provider=self.provider,
            started=started,
            detail=f"total_tokens={result.total_tokens}",
        )
        return result

    async def embed_content(
        self, request: EmbedContentRequest | Mapping[str, Any]
    ) -> EmbedContentResponse:
        started = time.perf_counter()
        try:
            result = await self.provider.embed_content(request)
        except Exception as exc:
            _log_event(
                logging.ERROR,
                event="embed_content.error",
                provider=self.provider,
                started=started,
                detail=_error_detail(exc),
            )
            raise
        _log_event(
            logging.DEBUG,
            event="embed_content.ok",
            provider=self.provider,
            started=started,
            detail=f"embeddings={len(result.embeddings)}",
        )
        return result


def create_content_generator(
    config: ProviderConfig | Mapping[str, Any],
    *,
    registry: ProviderRegistry | None = None,
) -> LoggingContentGenerator:
    """Build a validated provider for ``config`` and wrap it for logging.

    Raises ``UnknownProviderError`` for an unregistered tag and
    ``ConfigValidationError`` when the provider rejects the configuration.
    """
    active_registry = registry or default_registry
    provider = active_registry.create_provider(config, validate=True)
    logger.info("content generator ready provider=%s model=%s", provider.name, provider.model)
    return LoggingContentGenerator(provider)


__all__ = ["LoggingContentGenerator", "create_content_generator"]
