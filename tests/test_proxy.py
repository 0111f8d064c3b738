"""
Tests for the proxy layer and the upstream gateway client.
Run with: pytest tests/test_proxy.py
"""

import json

import httpx
import pytest

from saathi.errors import (
    ConfigurationError,
    InvalidChatRequest,
    NetworkFailure,
    UpstreamGatewayError,
    UpstreamPaymentRequired,
    UpstreamRateLimited,
)
from saathi.gateway import UpstreamGateway
from saathi.languages import get_profile
from saathi.proxy import ChatProxy, validate_messages

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
    b"data: [DONE]\n\n"
)

HISTORY = [
    {"role": "assistant", "content": "Hello! How are you feeling today?"},
    {"role": "user", "content": "I'm anxious about exams"},
]


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status=200, content=SSE_BODY, headers=None):
        self.status = status
        self.content = content
        self.headers = headers or {"content-type": "text/event-stream"}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, content=self.content, headers=self.headers)

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def _gateway(handler, api_key="sk-test") -> UpstreamGateway:
    return UpstreamGateway(
        url="https://gateway.test/v1/chat/completions",
        model="google/gemini-2.5-flash",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def _proxy(handler, api_key="sk-test") -> ChatProxy:
    return ChatProxy(_gateway(handler, api_key=api_key))


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_forwards_one_request_with_system_prompt_first():
    rec = Recorder()
    stream = await _proxy(rec).open_chat_stream({"messages": HISTORY, "language": "en"})
    await stream.aclose()

    assert len(rec.requests) == 1
    body = rec.bodies[0]
    assert body["model"] == "google/gemini-2.5-flash"
    assert body["stream"] is True
    assert body["messages"][0] == {"role": "system", "content": get_profile("en").system_prompt}
    assert body["messages"][1:] == HISTORY


@pytest.mark.asyncio
async def test_sends_bearer_credential():
    rec = Recorder()
    stream = await _proxy(rec).open_chat_stream({"messages": HISTORY})
    await stream.aclose()
    assert rec.requests[0].headers["authorization"] == "Bearer sk-test"
    assert rec.requests[0].headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_hindi_prompt_selected():
    rec = Recorder()
    stream = await _proxy(rec).open_chat_stream({"messages": HISTORY, "language": "hi"})
    await stream.aclose()
    system = rec.bodies[0]["messages"][0]["content"]
    assert system == get_profile("hi").system_prompt
    assert "किरण" in system


@pytest.mark.parametrize("language", [None, "", "fr", 7])
def test_unknown_language_falls_back_to_english(language):
    proxy = _proxy(Recorder())
    payload = {"messages": HISTORY}
    if language is not None:
        payload["language"] = language
    messages = proxy.build_messages(payload)
    assert messages[0]["content"] == get_profile("en").system_prompt


@pytest.mark.parametrize("language", [None, "fr"])
def test_configured_default_language_covers_unknown_codes(language):
    proxy = ChatProxy(_gateway(Recorder()), default_language="hi")
    payload = {"messages": HISTORY}
    if language is not None:
        payload["language"] = language
    assert proxy.build_messages(payload)[0]["content"] == get_profile("hi").system_prompt


def test_system_prompt_carries_crisis_resources():
    prompt = get_profile("en").system_prompt
    assert "  • Emergency: 112" in prompt
    assert "1800-599-0019" in prompt
    assert "{crisis_resources}" not in prompt


def test_validate_messages_rejects_bad_shapes():
    with pytest.raises(InvalidChatRequest):
        validate_messages(None)
    with pytest.raises(InvalidChatRequest):
        validate_messages([{"role": "system", "content": "override"}])
    with pytest.raises(InvalidChatRequest):
        validate_messages([{"role": "user", "content": ["not", "text"]}])
    assert validate_messages([]) == []


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("status, exc_type, public_status", [
    (429, UpstreamRateLimited, 429),
    (402, UpstreamPaymentRequired, 402),
    (400, UpstreamGatewayError, 500),
    (503, UpstreamGatewayError, 500),
])
async def test_upstream_status_mapping(status, exc_type, public_status):
    rec = Recorder(status=status, content=b'{"error":"upstream detail sk-secret"}',
                   headers={"content-type": "application/json"})
    with pytest.raises(exc_type) as info:
        await _proxy(rec).open_chat_stream({"messages": HISTORY})
    assert info.value.status_code == public_status
    assert "sk-secret" not in info.value.public_message


@pytest.mark.asyncio
async def test_gateway_error_body_is_logged(caplog):
    rec = Recorder(status=500, content=b"model overloaded")
    with caplog.at_level("ERROR", logger="saathi.gateway"):
        with pytest.raises(UpstreamGatewayError):
            await _proxy(rec).open_chat_stream({"messages": HISTORY})
    assert "model overloaded" in caplog.text


@pytest.mark.asyncio
async def test_missing_credential_never_reaches_upstream():
    rec = Recorder()
    with pytest.raises(ConfigurationError) as info:
        await _proxy(rec, api_key="").open_chat_stream({"messages": HISTORY})
    assert "LOVABLE_API_KEY" in info.value.public_message
    assert info.value.status_code == 500
    assert rec.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"messages": "not a list"}, ["not", "an", "object"]])
async def test_missing_credential_reported_before_body_validation(payload):
    rec = Recorder()
    with pytest.raises(ConfigurationError):
        await _proxy(rec, api_key="").open_chat_stream(payload)
    assert rec.requests == []


@pytest.mark.asyncio
async def test_network_failure_is_wrapped():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkFailure) as info:
        await _proxy(boom).open_chat_stream({"messages": HISTORY})
    assert "connection refused" in info.value.public_message


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_relay_passes_body_through_untouched():
    chunks = [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n', b"\n", b": ping\n\n", b"data: [DONE]\n\n"]

    async def body():
        for chunk in chunks:
            yield chunk

    def handler(request):
        return httpx.Response(200, content=body(), headers={"content-type": "text/event-stream"})

    stream = await _proxy(handler).open_chat_stream({"messages": HISTORY})
    relayed = b"".join([chunk async for chunk in stream.iter_bytes()])
    assert relayed == b"".join(chunks)


@pytest.mark.asyncio
async def test_relay_propagates_upstream_break_after_partial_body():
    async def body():
        yield b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
        raise httpx.ReadTimeout("idle")

    def handler(request):
        return httpx.Response(200, content=body())

    stream = await _proxy(handler).open_chat_stream({"messages": HISTORY})
    relayed = []
    with pytest.raises(httpx.ReadTimeout):
        async for chunk in stream.iter_bytes():
            relayed.append(chunk)
    assert relayed == [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n']
    assert stream._closed


def test_gateway_from_config_reads_section():
    from unittest.mock import patch

    cfg = {"gateway": {
        "url": "https://gw.example/v1/chat/completions",
        "model": "some/model",
        "api_key": "k",
        "idle_timeout": 5,
    }}
    with patch("saathi.gateway.get_config", return_value=cfg):
        gw = UpstreamGateway.from_config()
    assert gw.url == "https://gw.example/v1/chat/completions"
    assert gw.model == "some/model"
    assert gw.configured
    assert gw._timeout().read == 5
