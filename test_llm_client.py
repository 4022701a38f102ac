"""ChatClient end to end against httpx.MockTransport (no network)."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from multichat.cancellation import CancellationToken
from multichat.chat.models import AdvancedEndpoints, ChatOptions, ImageGenerationOptions, Message
from multichat.clients.llm_client import ChatClient, extract_error_detail
from multichat.errors import CancellationError, ConfigurationError, TransportError


def sse(*frames: dict) -> list[bytes]:
    return [f"data: {json.dumps(frame)}\n\n".encode() for frame in frames] + [b"data: [DONE]\n\n"]


def content_frame(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class Recorder:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.completed: list[str] = []
        self.errors: list[Exception] = []
        self.thinking: list[str] = []
        self.thinking_completed: list[str] = []

    def options(self, **kwargs) -> ChatOptions:
        kwargs.setdefault("model", "gpt-4o")
        kwargs.setdefault("messages", [Message(role="user", content="hi")])
        kwargs.setdefault("api_key", "sk-test")
        return ChatOptions(
            on_chunk=self.chunks.append,
            on_complete=self.completed.append,
            on_error=self.errors.append,
            on_thinking_chunk=self.thinking.append,
            on_thinking_complete=self.thinking_completed.append,
            **kwargs,
        )


class MockServer:
    """Records requests and answers each with the configured handler."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> ChatClient:
        return ChatClient(transport=httpx.MockTransport(self), http_config={"http2": False})


def streaming_response(chunks: list[bytes]) -> httpx.Response:
    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())


@pytest.mark.asyncio
async def test_openai_stream_request_and_callbacks():
    server = MockServer(lambda request: streaming_response(sse(content_frame("He"), content_frame("llo"))))
    recorder = Recorder()

    async with server.client() as client:
        await client.chat("openai", recorder.options(max_tokens=100))

    (request,) = server.requests
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o"
    assert body["stream"] is True
    assert body["max_tokens"] == 100

    assert recorder.chunks == ["He", "llo"]
    assert recorder.completed == ["Hello"]
    assert recorder.errors == []


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited_in_order():
    server = MockServer(lambda request: streaming_response(sse(content_frame("a"), content_frame("b"))))
    seen: list[str] = []

    async def on_chunk(text: str) -> None:
        await asyncio.sleep(0)
        seen.append(text)

    options = ChatOptions(model="gpt-4o", messages=[Message(role="user", content="hi")], on_chunk=on_chunk)
    async with server.client() as client:
        await client.chat("openai", options)

    assert seen == ["a", "b"]


@pytest.mark.asyncio
async def test_error_status_raises_with_server_detail():
    server = MockServer(lambda request: httpx.Response(429, json={"error": {"message": "rate limited"}}))
    recorder = Recorder()

    async with server.client() as client:
        with pytest.raises(TransportError) as exc_info:
            await client.chat("openai", recorder.options())

    error = exc_info.value
    assert "rate limited" in str(error)
    assert "429" in str(error)
    assert error.status_code == 429
    assert recorder.errors == [error]
    assert recorder.chunks == []
    assert recorder.completed == []


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    recorder = Recorder()
    async with MockServer(refuse).client() as client:
        with pytest.raises(TransportError, match="Unable to connect to AI service"):
            await client.chat("openai", recorder.options())
    assert len(recorder.errors) == 1


@pytest.mark.asyncio
async def test_read_failure_mid_stream_surfaces_once():
    def handler(request: httpx.Request) -> httpx.Response:
        async def body():
            yield sse(content_frame("partial"))[0]
            raise httpx.ReadError("connection reset", request=request)

        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

    recorder = Recorder()
    async with MockServer(handler).client() as client:
        with pytest.raises(TransportError, match="HTTP error during streaming") as exc_info:
            await client.chat("openai", recorder.options())

    assert recorder.chunks == ["partial"]
    assert recorder.errors == [exc_info.value]
    assert recorder.completed == []


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        (b'{"error": {"message": "bad key"}}', "bad key"),
        (b'{"message": "quota exceeded"}', "quota exceeded"),
        (b'{"error": "forbidden"}', "forbidden"),
        (b'[{"error": {"code": 400, "message": "invalid model"}}]', "invalid model"),
        (b'{"code": 7}', '{"code": 7}'),
        (b"upstream timeout", "upstream timeout"),
        (b"\xff\xfe", "\ufffd\ufffd"),
    ],
)
def test_extract_error_detail(body, expected):
    assert extract_error_detail(body) == expected


@pytest.mark.asyncio
async def test_custom_provider_without_url_fails_before_network():
    server = MockServer(lambda request: httpx.Response(200))
    async with server.client() as client:
        with pytest.raises(ConfigurationError):
            await client.chat("custom", Recorder().options())
    assert server.requests == []


@pytest.mark.asyncio
async def test_custom_and_advanced_urls():
    server = MockServer(lambda request: streaming_response(sse(content_frame("ok"))))
    async with server.client() as client:
        await client.chat("my-gateway", Recorder().options(), custom_api_url="https://gw.example.com/")
        await client.chat(
            "my-gateway",
            Recorder().options(),
            custom_api_url="https://gw.example.com/",
            advanced=AdvancedEndpoints(custom_chat_url="https://adv.example.com/chat#raw"),
        )

    assert str(server.requests[0].url) == "https://gw.example.com/chat/completions"
    assert server.requests[1].url.host == "adv.example.com"


# ==============================================================================
# CANCELLATION
# ==============================================================================


@pytest.mark.asyncio
async def test_cancellation_after_two_chunks_finalizes_partial_text():
    server = MockServer(
        lambda request: streaming_response(sse(content_frame("He"), content_frame("llo"), content_frame(" world")))
    )
    recorder = Recorder()
    token = CancellationToken()
    options = recorder.options(cancellation=token)

    def on_chunk(text: str) -> None:
        recorder.chunks.append(text)
        if "".join(recorder.chunks) == "Hello":
            token.cancel()

    options.on_chunk = on_chunk

    async with server.client() as client:
        await client.chat("openai", options)

    assert recorder.chunks == ["He", "llo"]
    assert recorder.completed == ["Hello"]
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], CancellationError)


@pytest.mark.asyncio
async def test_cancellation_while_waiting_for_next_chunk():
    first_chunk = asyncio.Event()
    recorder = Recorder()
    token = CancellationToken()

    async def slow_body():
        yield f"data: {json.dumps(content_frame('He'))}\n\n".encode()
        await asyncio.sleep(30)
        yield f"data: {json.dumps(content_frame('never'))}\n\n".encode()

    server = MockServer(lambda request: httpx.Response(200, content=slow_body()))
    options = recorder.options(cancellation=token)

    def on_chunk(text: str) -> None:
        recorder.chunks.append(text)
        first_chunk.set()

    options.on_chunk = on_chunk

    async with server.client() as client:
        task = asyncio.create_task(client.chat("openai", options))
        await asyncio.wait_for(first_chunk.wait(), 5)
        token.cancel()
        await asyncio.wait_for(task, 5)

    assert recorder.chunks == ["He"]
    assert recorder.completed == ["He"]
    assert [type(e) for e in recorder.errors] == [CancellationError]


@pytest.mark.asyncio
async def test_cancelled_before_send_makes_no_request():
    server = MockServer(lambda request: streaming_response(sse(content_frame("x"))))
    recorder = Recorder()
    token = CancellationToken()
    token.cancel()

    async with server.client() as client:
        await client.chat("openai", recorder.options(cancellation=token))

    assert server.requests == []
    assert recorder.completed == []
    assert [type(e) for e in recorder.errors] == [CancellationError]


@pytest.mark.asyncio
async def test_cancellation_during_reasoning_fires_reasoning_complete():
    recorder = Recorder()
    token = CancellationToken()
    options = recorder.options(cancellation=token, enable_thinking=True, model="deepseek-reasoner")

    def on_thinking_chunk(text: str) -> None:
        recorder.thinking.append(text)
        token.cancel()

    options.on_thinking_chunk = on_thinking_chunk
    frames = sse({"choices": [{"delta": {"reasoning_content": "step 1"}}]}, content_frame("late"))
    server = MockServer(lambda request: streaming_response(frames))

    async with server.client() as client:
        await client.chat("deepseek", options)

    assert recorder.thinking_completed == ["step 1"]
    assert recorder.chunks == []
    assert [type(e) for e in recorder.errors] == [CancellationError]


# ==============================================================================
# OTHER DIALECTS
# ==============================================================================


@pytest.mark.asyncio
async def test_gemini_request_and_thought_stream():
    frames = [
        {"candidates": [{"content": {"parts": [{"text": "pondering", "thought": True}]}}]},
        {"candidates": [{"content": {"parts": [{"text": "42"}]}, "finishReason": "STOP"}]},
    ]
    server = MockServer(lambda request: streaming_response(sse(*frames)))
    recorder = Recorder()

    options = recorder.options(
        model="gemini-2.5-flash",
        api_key="g-key",
        enable_thinking=True,
        messages=[Message(role="system", content="sys"), Message(role="user", content="q")],
    )
    async with server.client() as client:
        await client.chat("gemini", options)

    (request,) = server.requests
    assert request.url.path == "/v1beta/models/gemini-2.5-flash:streamGenerateContent"
    assert request.url.params["key"] == "g-key"
    assert request.url.params["alt"] == "sse"
    assert "authorization" not in request.headers
    body = json.loads(request.content)
    assert body["generationConfig"]["thinkingConfig"] == {"thinkingBudget": -1, "includeThoughts": True}
    assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}

    assert recorder.thinking == ["pondering"]
    assert recorder.thinking_completed == ["pondering"]
    assert recorder.completed == ["42"]


@pytest.mark.asyncio
async def test_claude_request_headers_and_stream():
    frames = [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Bonjour"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_stop"},
    ]
    server = MockServer(lambda request: streaming_response(sse(*frames)))
    recorder = Recorder()

    async with server.client() as client:
        await client.chat("anthropic", recorder.options(model="claude-sonnet-4-20250514", api_key="a-key"))

    (request,) = server.requests
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "a-key"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert recorder.completed == ["Bonjour"]


@pytest.mark.parametrize(
    ("custom_api_url", "advanced", "expected"),
    [
        ("https://proxy.example.com/", None, "https://proxy.example.com"),
        ("https://proxy.example.com/gemini#", None, "https://proxy.example.com/gemini"),
        ("https://proxy.example.com", None, "https://proxy.example.com"),
        (
            None,
            AdvancedEndpoints(custom_chat_url="https://adv.example.com/v1beta/models/any:streamGenerateContent"),
            "https://adv.example.com",
        ),
    ],
)
@pytest.mark.asyncio
async def test_gemini_custom_url_keeps_model_path(custom_api_url, advanced, expected):
    frames = [{"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}]
    server = MockServer(lambda request: streaming_response(sse(*frames)))
    recorder = Recorder()

    async with server.client() as client:
        await client.chat(
            "gemini",
            recorder.options(model="gemini-2.5-flash", api_key="g-key"),
            custom_api_url=custom_api_url,
            advanced=advanced,
        )

    (request,) = server.requests
    assert str(request.url) == (
        f"{expected}/v1beta/models/gemini-2.5-flash:streamGenerateContent?key=g-key&alt=sse"
    )
    assert recorder.completed == ["ok"]


@pytest.mark.asyncio
async def test_claude_custom_url_keeps_messages_path():
    frames = [{"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "hi"}}]
    server = MockServer(lambda request: streaming_response(sse(*frames)))

    async with server.client() as client:
        await client.chat(
            "anthropic",
            Recorder().options(model="claude-sonnet-4-20250514", api_key="a-key"),
            custom_api_url="https://claude.example.com/",
        )

    assert str(server.requests[0].url) == "https://claude.example.com/v1/messages"


@pytest.mark.asyncio
async def test_non_streaming_response():
    payload = {"choices": [{"message": {"role": "assistant", "content": "single shot"}, "finish_reason": "stop"}]}
    server = MockServer(lambda request: httpx.Response(200, json=payload))
    recorder = Recorder()

    async with server.client() as client:
        await client.chat("openai", recorder.options(stream=False))

    assert json.loads(server.requests[0].content)["stream"] is False
    assert recorder.chunks == ["single shot"]
    assert recorder.completed == ["single shot"]


# ==============================================================================
# MODELS / IMAGES
# ==============================================================================


@pytest.mark.asyncio
async def test_fetch_models():
    server = MockServer(lambda request: httpx.Response(200, json={"data": [{"id": "deepseek-chat"}, "deepseek-reasoner"]}))
    async with server.client() as client:
        models = await client.fetch_models("deepseek", "sk-test")

    assert str(server.requests[0].url) == "https://api.deepseek.com/v1/models"
    assert [m.id for m in models] == ["deepseek-chat", "deepseek-reasoner"]
    assert {m.provider for m in models} == {"DeepSeek"}


@pytest.mark.asyncio
async def test_fetch_models_error():
    server = MockServer(lambda request: httpx.Response(401, text="invalid api key"))
    async with server.client() as client:
        with pytest.raises(TransportError, match="invalid api key"):
            await client.fetch_models("openai", "bad")


@pytest.mark.asyncio
async def test_generate_image():
    payload = {"data": [{"url": "https://img.example.com/1.png", "revised_prompt": "a red cat"}, {"b64_json": "QUJD"}]}
    server = MockServer(lambda request: httpx.Response(200, json=payload))
    options = ImageGenerationOptions(model="dall-e-3", prompt="a cat", api_key="sk-test", quality="hd")

    async with server.client() as client:
        result = await client.generate_image("openai", options)

    request = server.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/image/generations"
    assert json.loads(request.content) == {
        "model": "dall-e-3",
        "prompt": "a cat",
        "n": 1,
        "size": "1024x1024",
        "quality": "hd",
    }
    assert result.total == 2
    assert result.images[0].revised_prompt == "a red cat"
    assert result.images[1].b64_json == "QUJD"


@pytest.mark.asyncio
async def test_fetch_models_invalid_json():
    server = MockServer(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    async with server.client() as client:
        with pytest.raises(TransportError, match="Invalid JSON response"):
            await client.fetch_models("openai", "sk-test")
