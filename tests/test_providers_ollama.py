from __future__ import annotations

import asyncio
from typing import Any

import pytest

from src.llmswitch.errors import ArgumentParseError
from src.llmswitch.types import FunctionCall
from tests.test_providers_common import (
    DummyStream,
    collect_stream,
    install_post,
    install_stream,
    make_provider,
    ndjson_body,
    split_bytes,
    user_request,
)
from tests.test_providers_openai import REPEATED_CALLS, TOOL_ROUND_TRIP


def run_generate(
    provider: Any,
    monkeypatch: pytest.MonkeyPatch,
    upstream: dict[str, Any] | None = None,
    request: dict[str, Any] | None = None,
) -> tuple[list[dict[str, Any]], Any]:
    calls: list[dict[str, Any]] = []
    body = upstream or {
        "message": {"role": "assistant", "content": "hello"},
        "done": True,
        "done_reason": "stop",
    }
    install_post(monkeypatch, lambda url, payload: (200, body), calls)
    response = asyncio.run(provider.generate_content(request or user_request("ping")))
    return calls, response


def test_ollama_request_translation(monkeypatch: pytest.MonkeyPatch) -> None:
    calls, response = run_generate(make_provider("ollama"), monkeypatch, request=TOOL_ROUND_TRIP)

    call = calls[0]
    payload = call["json"]
    assert call["url"] == "http://localhost:11434/api/chat"
    assert "Authorization" not in call["headers"]
    assert payload["model"] == "llama3.2:latest"
    assert payload["stream"] is False
    assert payload["options"] == {"temperature": 0.2, "top_p": 0.9, "num_predict": 64}
    assert payload["tools"][0]["function"]["name"] == "get_weather"
    assert payload["messages"] == [
        {"role": "system", "content": "You are terse."},
        {"role": "user", "content": "What is the weather?"},
        {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Paris"}}}],
        },
        {"role": "tool", "content": "sunny", "name": "get_weather"},
    ]
    assert response.text == "hello"
    assert response.candidates[0].finish_reason == "stop"


def test_ollama_function_response_without_output_is_serialized(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    request = {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"functionResponse": {"name": "stat", "response": {"size": 12, "ok": True}}}
                ],
            }
        ]
    }

    calls, _ = run_generate(make_provider("ollama"), monkeypatch, request=request)

    assert calls[0]["json"]["messages"] == [
        {"role": "tool", "content": '{"size": 12, "ok": true}', "name": "stat"}
    ]


def test_ollama_sends_bearer_token_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = make_provider("ollama", api_key="proxy-token", base_url="https://ollama.example/")

    calls, _ = run_generate(provider, monkeypatch)

    assert calls[0]["url"] == "https://ollama.example/api/chat"
    assert calls[0]["headers"]["Authorization"] == "Bearer proxy-token"


def test_ollama_response_with_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    upstream = {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"function": {"name": "get_weather", "arguments": {"city": "Lima"}}},
                {"function": {"name": "list_files", "arguments": '{"dir": "."}'}},
            ],
        },
        "done": True,
    }

    _, response = run_generate(make_provider("ollama"), monkeypatch, upstream)

    assert response.function_calls == [
        FunctionCall(name="get_weather", args={"city": "Lima"}),
        FunctionCall(name="list_files", args={"dir": "."}),
    ]
    assert response.candidates[0].finish_reason == "STOP"


def test_ollama_stream_emits_tool_calls_after_done(monkeypatch: pytest.MonkeyPatch) -> None:
    records = [
        {"message": {"role": "assistant", "content": "Looking"}, "done": False},
        {
            "message": {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Kyoto"}}}],
            },
            "done": False,
        },
        {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop"},
    ]
    install_stream(monkeypatch, DummyStream(split_bytes(ndjson_body(records), size=9)))

    chunks = collect_stream(make_provider("ollama"), user_request())

    assert [chunk.text for chunk in chunks] == ["Looking", ""]
    assert chunks[0].function_calls == []
    assert chunks[1].function_calls == [FunctionCall(name="get_weather", args={"city": "Kyoto"})]
    assert chunks[1].candidates[0].finish_reason == "stop"


def test_ollama_stream_flushes_tool_calls_without_done(monkeypatch: pytest.MonkeyPatch) -> None:
    records = [
        {
            "message": {
                "role": "assistant",
                "tool_calls": [{"function": {"name": "list_files", "arguments": {}}}],
            },
            "done": False,
        }
    ]
    install_stream(monkeypatch, DummyStream([ndjson_body(records)]))

    chunks = collect_stream(make_provider("ollama"), user_request())

    assert len(chunks) == 1
    assert chunks[0].function_calls == [FunctionCall(name="list_files", args={})]


def test_ollama_stream_last_line_without_newline(monkeypatch: pytest.MonkeyPatch) -> None:
    body = b'{"message":{"content":"a"},"done":false}\n{"message":{"content":"b"},"done":false}'
    install_stream(monkeypatch, DummyStream([body]))

    chunks = collect_stream(make_provider("ollama"), user_request())

    assert [chunk.text for chunk in chunks] == ["a", "b"]


def test_ollama_stream_string_arguments_must_be_json_object(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    records = [
        {
            "message": {"tool_calls": [{"function": {"name": "run", "arguments": "[1, 2]"}}]},
            "done": True,
        }
    ]
    install_stream(monkeypatch, DummyStream([ndjson_body(records)]))

    with pytest.raises(ArgumentParseError):
        collect_stream(make_provider("ollama"), user_request())


def test_ollama_embeddings(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []
    install_post(monkeypatch, lambda url, payload: (200, {"embedding": [0.5, 0.25]}), calls)
    provider = make_provider("ollama", embedding_model="nomic-embed-text")

    result = asyncio.run(provider.embed_content(user_request("vectorize")))

    assert calls[0]["url"] == "http://localhost:11434/api/embeddings"
    assert calls[0]["json"] == {"model": "nomic-embed-text", "prompt": "vectorize"}
    assert [embedding.values for embedding in result.embeddings] == [[0.5, 0.25]]


def test_ollama_keeps_text_beside_repeated_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    calls, _ = run_generate(make_provider("ollama"), monkeypatch, request=REPEATED_CALLS)

    assert calls[0]["json"]["messages"] == [
        {"role": "user", "content": "Compare a.txt and b.txt"},
        {
            "role": "assistant",
            "content": "Let me check both.",
            "tool_calls": [
                {"function": {"name": "read_file", "arguments": {"path": "a.txt"}}},
                {"function": {"name": "read_file", "arguments": {"path": "b.txt"}}},
            ],
        },
        {"role": "tool", "content": "alpha", "name": "read_file"},
        {"role": "tool", "content": "beta", "name": "read_file"},
    ]
