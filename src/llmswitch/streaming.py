"""Framed stream decoding shared by every provider.

Backends stream either Server-Sent Events (``data: {...}`` lines terminated by
``data: [DONE]``) or newline-delimited JSON. ``FramedStreamDecoder`` turns raw
network reads into JSON records for both framings, carrying partial lines over
read boundaries. A line that does not decode is recorded as a
``StreamDecodeWarning``, logged, and skipped so the rest of the stream
survives it.

``StreamAccumulator`` holds the per-stream state a provider needs to defer
tool calls until the backend signals completion.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Hashable
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import ArgumentParseError, StreamDecodeWarning
from .types import FunctionCall

logger = logging.getLogger(__name__)

Framing = Literal["sse", "ndjson"]

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"


def parse_tool_arguments(provider: str, name: str, raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments.

    Absent or empty arguments mean "no arguments" and yield ``{}``. Arguments
    that are present but are not a JSON object raise ``ArgumentParseError``.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ArgumentParseError(provider, name, raw) from exc
        if not isinstance(parsed, dict):
            raise ArgumentParseError(provider, name, raw)
        return parsed
    raise ArgumentParseError(provider, name, repr(raw))


class FramedStreamDecoder:
    def __init__(self, framing: Framing) -> None:
        if framing not in ("sse", "ndjson"):
            raise ValueError(f"Unsupported stream framing '{framing}'.")
        self.framing = framing
        self.done = False
        self.warnings: list[StreamDecodeWarning] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._carry = ""

    def feed(self, data: bytes | str) -> list[dict[str, Any]]:
        if self.done:
            return []
        if isinstance(data, bytes):
            self._carry += self._decoder.decode(data)
        else:
            self._carry += data
        lines = self._carry.split("\n")
        self._carry = lines.pop()
        return self._process(lines)

    def finish(self) -> list[dict[str, Any]]:
        if self.done:
            return []
        tail = self._carry + self._decoder.decode(b"", final=True)
        self._carry = ""
        if not tail.strip():
            return []
        return self._process([tail])

    def _process(self, lines: list[str]) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if self.framing == "sse":
                payload = self._sse_payload(line)
                if payload is None:
                    continue
                if payload == SSE_DONE_SENTINEL:
                    self.done = True
                    break
            else:
                payload = line.strip()
                if not payload:
                    continue
            record = self._decode(payload)
            if record is not None:
                records.append(record)
        return records

    @staticmethod
    def _sse_payload(line: str) -> str | None:
        stripped = line.strip()
        if not stripped.startswith(SSE_DATA_PREFIX):
            return None
        payload = stripped[len(SSE_DATA_PREFIX):].strip()
        return payload or None

    def _decode(self, payload: str) -> dict[str, Any] | None:
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as exc:
            self._skip(payload, f"invalid JSON: {exc.msg}")
            return None
        if not isinstance(record, dict):
            self._skip(payload, "not a JSON object")
            return None
        return record

    def _skip(self, payload: str, reason: str) -> None:
        warning = StreamDecodeWarning(payload, reason)
        self.warnings.append(warning)
        logger.warning("%s", warning)


async def iter_json_records(
    chunks: AsyncIterable[bytes], framing: Framing
) -> AsyncIterator[dict[str, Any]]:
    decoder = FramedStreamDecoder(framing)
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
        if decoder.done:
            return
    for record in decoder.finish():
        yield record


@dataclass
class PendingToolCall:
    id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    arguments: dict[str, Any] | None = None

    def add_arguments(self, value: Any) -> None:
        if isinstance(value, str):
            self.fragments.append(value)
        elif isinstance(value, dict):
            self.arguments = value

    def to_function_call(self, provider: str) -> FunctionCall:
        if self.fragments:
            args = parse_tool_arguments(provider, self.name, "".join(self.fragments))
        else:
            args = parse_tool_arguments(provider, self.name, self.arguments)
        return FunctionCall(name=self.name, args=args, id=self.id)


@dataclass
class StreamAccumulator:
    provider: str
    text_parts: list[str] = field(default_factory=list)
    pending: dict[Hashable, PendingToolCall] = field(default_factory=dict)
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def has_pending_tool_calls(self) -> bool:
        return bool(self.pending)

    def add_text(self, text: str) -> None:
        self.text_parts.append(text)

    def tool_call(self, key: Hashable) -> PendingToolCall:
        pending = self.pending.get(key)
        if pending is None:
            pending = PendingToolCall()
            self.pending[key] = pending
        return pending

    def new_tool_call(self) -> PendingToolCall:
        return self.tool_call(len(self.pending))

    def drain_function_calls(self) -> list[FunctionCall]:
        calls = [pending.to_function_call(self.provider) for pending in self.pending.values()]
        self.pending.clear()
        return calls


__all__ = [
    "FramedStreamDecoder",
    "Framing",
    "PendingToolCall",
    "StreamAccumulator",
    "iter_json_records",
    "parse_tool_arguments",
]
