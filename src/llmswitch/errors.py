from __future__ import annotations

from typing import Iterable


class ProviderError(Exception):
    """Base class for failures raised by the provider layer."""


class UnknownProviderError(ProviderError, ValueError):
    def __init__(self, provider: str, available: Iterable[str]) -> None:
        self.provider = provider
        self.available = list(available)
        super().__init__(
            f"Unknown provider: {provider}. Available providers: {', '.join(self.available)}"
        )


class ConfigValidationError(ProviderError, ValueError):
    """Raised when a configuration is rejected by the provider it names."""


class UpstreamError(ProviderError):
    """A backend answered with a non-2xx status or reported an error in-stream."""

    def __init__(
        self,
        provider: str,
        status_code: int | None,
        status_text: str,
        body: str | None = None,
        *,
        message: str | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        if message is None:
            status = f"{status_code} {status_text}" if status_code is not None else status_text
            message = f"{provider} API error: {status}"
            if body:
                message = f"{message} - {body}"
        super().__init__(message)


class ArgumentParseError(UpstreamError):
    """Tool-call arguments were present but could not be decoded as a JSON object."""

    def __init__(self, provider: str, function_name: str, raw_arguments: str) -> None:
        self.function_name = function_name
        self.raw_arguments = raw_arguments
        super().__init__(
            provider,
            None,
            "invalid tool call arguments",
            body=raw_arguments,
            message=(
                f"{provider} returned invalid JSON arguments for tool call "
                f"'{function_name}': {raw_arguments[:200]!r}"
            ),
        )


class StreamDecodeWarning(UserWarning):
    """A streamed line that could not be decoded; recorded and skipped."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"skipped stream line ({reason}): {line[:200]!r}")


__all__ = [
    "ArgumentParseError",
    "ConfigValidationError",
    "ProviderError",
    "StreamDecodeWarning",
    "UnknownProviderError",
    "UpstreamError",
]
