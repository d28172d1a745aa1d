from __future__ import annotations

from typing import Annotated, Any, Iterable, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_FINISH_REASON = "STOP"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FunctionCall(_WireModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class FunctionResponse(_WireModel):
    name: str
    response: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class TextPart(_WireModel):
    text: str


class FunctionCallPart(_WireModel):
    function_call: FunctionCall


class FunctionResponsePart(_WireModel):
    function_response: FunctionResponse


def _part_kind(value: Any) -> str | None:
    if isinstance(value, dict):
        if "functionCall" in value or "function_call" in value:
            return "function_call"
        if "functionResponse" in value or "function_response" in value:
            return "function_response"
        if "text" in value:
            return "text"
        return None
    if isinstance(value, FunctionCallPart):
        return "function_call"
    if isinstance(value, FunctionResponsePart):
        return "function_response"
    if isinstance(value, TextPart):
        return "text"
    return None


Part = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[FunctionCallPart, Tag("function_call")],
        Annotated[FunctionResponsePart, Tag("function_response")],
    ],
    Discriminator(_part_kind),
]


class Content(_WireModel):
    role: str | None = None
    parts: list[Part] = Field(default_factory=list)


class GenerationConfig(_WireModel):
    temperature: float | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None


class FunctionDeclaration(_WireModel):
    name: str
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


def _flatten_tool_groups(value: Any) -> Any:
    if value is None or not isinstance(value, list):
        return value
    flattened: list[Any] = []
    for entry in value:
        if isinstance(entry, dict):
            group = entry.get("functionDeclarations", entry.get("function_declarations"))
            if isinstance(group, list):
                flattened.extend(group)
                continue
        flattened.append(entry)
    return flattened


class GenerateContentRequest(_WireModel):
    contents: list[Content] = Field(default_factory=list)
    system_instruction: str | Content | None = None
    generation_config: GenerationConfig | None = None
    tools: list[FunctionDeclaration] | None = None

    @field_validator("tools", mode="before")
    @classmethod
    def _accept_declaration_groups(cls, value: Any) -> Any:
        return _flatten_tool_groups(value)


class CountTokensRequest(_WireModel):
    contents: list[Content] = Field(default_factory=list)
    system_instruction: str | Content | None = None


class EmbedContentRequest(_WireModel):
    contents: list[Content] = Field(default_factory=list)
    model: str | None = None


class Candidate(_WireModel):
    content: Content = Field(default_factory=lambda: Content(role="model"))
    finish_reason: str | None = None


class GenerateContentResponse(_WireModel):
    """Canonical response; ``text`` and ``function_calls`` are derived from the
    first candidate so they always agree with ``candidates``."""

    candidates: list[Candidate] = Field(default_factory=list)

    @property
    def text(self) -> str:
        if not self.candidates:
            return ""
        return "".join(
            part.text for part in self.candidates[0].content.parts if isinstance(part, TextPart)
        )

    @property
    def function_calls(self) -> list[FunctionCall]:
        if not self.candidates:
            return []
        return [
            part.function_call
            for part in self.candidates[0].content.parts
            if isinstance(part, FunctionCallPart)
        ]

    @classmethod
    def from_parts(
        cls, parts: Iterable[TextPart | FunctionCallPart], finish_reason: str | None
    ) -> "GenerateContentResponse":
        content = Content(role="model", parts=list(parts))
        return cls(candidates=[Candidate(content=content, finish_reason=finish_reason)])

    @classmethod
    def from_text(cls, text: str, finish_reason: str | None = None) -> "GenerateContentResponse":
        return cls.from_parts([TextPart(text=text)], finish_reason)

    @classmethod
    def from_function_calls(
        cls, calls: Iterable[FunctionCall], finish_reason: str | None = DEFAULT_FINISH_REASON
    ) -> "GenerateContentResponse":
        return cls.from_parts(
            [FunctionCallPart(function_call=call) for call in calls], finish_reason
        )


class CountTokensResponse(_WireModel):
    total_tokens: int


class ContentEmbedding(_WireModel):
    values: list[float] = Field(default_factory=list)


class EmbedContentResponse(_WireModel):
    embeddings: list[ContentEmbedding] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    """Resolved backend configuration; immutable for the life of a provider."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    provider: str
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    timeout: float | None = None

    def option(self, name: str, default: Any = None) -> Any:
        extra = self.model_extra or {}
        if name in extra:
            return extra[name]
        return extra.get(to_camel(name), default)


def flatten_text(content: Content) -> str:
    return "".join(part.text for part in content.parts if isinstance(part, TextPart))


def system_text(instruction: str | Content | None) -> str:
    if instruction is None:
        return ""
    if isinstance(instruction, str):
        return instruction
    return flatten_text(instruction)


def request_text(request: GenerateContentRequest | CountTokensRequest | EmbedContentRequest) -> str:
    texts: list[str] = []
    instruction = getattr(request, "system_instruction", None)
    if instruction is not None:
        texts.append(system_text(instruction))
    texts.extend(flatten_text(content) for content in request.contents)
    return "".join(texts)


__all__ = [
    "DEFAULT_FINISH_REASON",
    "Candidate",
    "Content",
    "ContentEmbedding",
    "CountTokensRequest",
    "CountTokensResponse",
    "EmbedContentRequest",
    "EmbedContentResponse",
    "FunctionCall",
    "FunctionCallPart",
    "FunctionDeclaration",
    "FunctionResponse",
    "FunctionResponsePart",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "Part",
    "ProviderConfig",
    "TextPart",
    "flatten_text",
    "request_text",
    "system_text",
]
