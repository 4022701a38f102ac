"""
Multi-provider LLM HTTP client.

One ``ChatClient`` owns a pooled ``httpx.AsyncClient`` and talks to any
registered provider. ``chat`` resolves the endpoint, builds the dialect's
request body, streams the response through the dialect's demultiplexer and
reports everything through the callbacks on ``ChatOptions``. It never returns
the answer directly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import httpx

from multichat.cancellation import CancellationToken, race
from multichat.chat.logging_utils import (
    log_error_with_context,
    log_http_request,
    log_llm_request_complete,
    log_llm_request_start,
)
from multichat.chat.models import (
    AdvancedEndpoints,
    ChatOptions,
    GeneratedImageRef,
    ImageGenerationOptions,
    ImageGenerationResult,
    ModelInfo,
)
from multichat.chat.streaming_handler import create_stream_handler, invoke_callback
from multichat.clients.providers import ProviderConfig, ProviderRegistry, normalize_model_list
from multichat.clients.request_builders import (
    ANTHROPIC_VERSION,
    build_claude_body,
    build_gemini_body,
    build_openai_body,
)
from multichat.errors import CancellationError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_CONFIG: dict[str, Any] = {
    "request_timeout_seconds": 120.0,
    "max_connections": 20,
    "max_keepalive_connections": 10,
    "keepalive_expiry_seconds": 30.0,
    "http2": True,
}


def extract_error_detail(content: bytes) -> str:
    """
    Best-effort human-readable message from an error body.

    Tries ``error.message``, ``message``, a string ``error``, then the JSON
    dump, and finally the raw text. Never raises.
    """
    text = content.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        return text

    # Gemini wraps errors in a one-element array
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
        if isinstance(error, str) and error:
            return error
    return json.dumps(data, ensure_ascii=False)


def _images_from_payload(payload: Any) -> list[GeneratedImageRef]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
    elif isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = [payload]
    else:
        items = []
    return [GeneratedImageRef.model_validate(item) for item in items if isinstance(item, dict)]


class ChatClient:
    """
    Pooled HTTP client speaking every registered provider's dialect.

    Independent concurrent ``chat`` calls are safe: all per-request state
    lives in the stream handler created for that call.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        *,
        http_config: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.registry = registry or ProviderRegistry()
        self._http_config = {**DEFAULT_HTTP_CONFIG, **(http_config or {})}
        self._owns_client = client is None
        self.client: httpx.AsyncClient = client or self._create_client(transport)

    def _create_client(self, transport: httpx.AsyncBaseTransport | None) -> httpx.AsyncClient:
        conf = self._http_config
        return httpx.AsyncClient(
            timeout=conf["request_timeout_seconds"],
            http2=conf["http2"],
            limits=httpx.Limits(
                max_connections=conf["max_connections"],
                max_keepalive_connections=conf["max_keepalive_connections"],
                keepalive_expiry=conf["keepalive_expiry_seconds"],
            ),
            transport=transport,
            trust_env=False,
        )

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    @staticmethod
    def _headers(config: ProviderConfig, api_key: str, *, streaming: bool = False) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if streaming:
            headers["Accept"] = "text/event-stream"
        # Gemini carries the key in the query string
        if config.dialect != "gemini" and api_key:
            headers.update(config.auth_headers(api_key))
        if config.dialect == "claude":
            headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    @staticmethod
    def _build_body(config: ProviderConfig, options: ChatOptions) -> dict[str, Any]:
        if config.dialect == "gemini":
            return build_gemini_body(options)
        if config.dialect == "claude":
            return build_claude_body(options)
        return build_openai_body(options)

    @staticmethod
    async def _transport_error(response: httpx.Response, token: CancellationToken | None) -> TransportError:
        try:
            content = await race(response.aread(), token)
        except httpx.HTTPError as e:
            logger.warning("Could not read error body: %s", e)
            content = b""
        detail = extract_error_detail(content)

        message = f"API request failed: {response.status_code} {response.reason_phrase}"
        if detail:
            message = f"{message}\n\n{detail}"
        return TransportError(message, status_code=response.status_code, detail=detail or None)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        provider: str,
        options: ChatOptions,
        custom_api_url: str | None = None,
        advanced: AdvancedEndpoints | None = None,
    ) -> None:
        """
        Run one chat request, delivering output through the option callbacks.

        Raises:
            ConfigurationError: Before any network I/O when no URL can be resolved.
            TransportError: Non-2xx response or connection failure, after
                ``on_error`` has received it.

        A cancellation is not raised: partial output is flushed, ``on_error``
        receives a ``CancellationError`` and the call returns normally.
        """
        endpoint = self.registry.resolve_chat(provider, custom_api_url, advanced)
        config = endpoint.provider
        token = options.cancellation

        # Gemini's endpoint is stream-only
        streaming = options.stream or config.dialect == "gemini"

        # Native dialects append their fixed path to the resolved base
        if config.dialect == "openai":
            url = endpoint.url
        else:
            url = endpoint.base_url + config.chat_path.replace("{model}", options.model)
        params = {"key": options.api_key, "alt": "sse"} if config.dialect == "gemini" else None

        handler = create_stream_handler(config.dialect, options, token)
        request_id = uuid.uuid4().hex[:8]
        start_time = log_llm_request_start(request_id, provider, options.model)

        try:
            body = self._build_body(config, options)
            request = self.client.build_request(
                "POST",
                url,
                json=body,
                params=params,
                headers=self._headers(config, options.api_key, streaming=streaming),
            )
            log_http_request("POST", url, body)

            response = await race(self.client.send(request, stream=True), token)
            try:
                if response.is_error:
                    raise await self._transport_error(response, token)

                if streaming:
                    await handler.consume(response.aiter_bytes())
                else:
                    content = await race(response.aread(), token)
                    try:
                        payload = json.loads(content)
                    except ValueError as e:
                        raise TransportError(f"Invalid JSON response from AI service: {e}") from e
                    if isinstance(payload, dict):
                        await handler.handle_message(payload)
            finally:
                await response.aclose()

            await handler.finish()
            log_llm_request_complete(request_id, start_time)

        except CancellationError as e:
            logger.info("← LLM: request %s cancelled", request_id)
            await handler.finish_cancelled(e)
            log_llm_request_complete(request_id, start_time, success=False)

        except asyncio.CancelledError:
            # Task cancellation: flush partial output, then keep propagating
            await handler.finish_cancelled(CancellationError())
            log_llm_request_complete(request_id, start_time, success=False)
            raise

        except TransportError as e:
            log_error_with_context(f"in LLM request {request_id}", e)
            log_llm_request_complete(request_id, start_time, success=False)
            await invoke_callback(options.on_error, e)
            raise

        except httpx.HTTPError as e:
            if isinstance(e, (httpx.ConnectError, httpx.TimeoutException)):
                error = TransportError(f"Unable to connect to AI service: {e}")
            else:
                error = TransportError(f"HTTP error during streaming: {e}")
            log_error_with_context(f"in LLM request {request_id}", e)
            log_llm_request_complete(request_id, start_time, success=False)
            await invoke_callback(options.on_error, error)
            raise error from e

    # ------------------------------------------------------------------
    # Model listing / image generation
    # ------------------------------------------------------------------

    async def fetch_models(
        self,
        provider: str,
        api_key: str,
        custom_api_url: str | None = None,
        advanced: AdvancedEndpoints | None = None,
        token: CancellationToken | None = None,
    ) -> list[ModelInfo]:
        """List the provider's models, normalized to ``{id, name, provider}``."""
        endpoint = self.registry.resolve_models(provider, custom_api_url, advanced)
        config = endpoint.provider
        params = {"key": api_key} if config.dialect == "gemini" else None

        logger.info("→ LLM: listing models for %s", provider)
        log_http_request("GET", endpoint.url)
        try:
            response = await race(
                self.client.get(endpoint.url, params=params, headers=self._headers(config, api_key)), token
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Unable to connect to AI service: {e}") from e

        if response.is_error:
            raise await self._transport_error(response, token)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from AI service: {e}") from e

        models = normalize_model_list(payload, config)
        logger.info("← LLM: %d model(s) from %s", len(models), provider)
        return models

    async def generate_image(
        self,
        provider: str,
        options: ImageGenerationOptions,
        custom_api_url: str | None = None,
    ) -> ImageGenerationResult:
        """POST to ``{base}/v1/image/generations`` and normalize the result."""
        url = self.registry.resolve_images(provider, custom_api_url)
        config = self.registry.get(provider)

        body: dict[str, Any] = {
            "model": options.model,
            "prompt": options.prompt,
            "n": options.n,
            "size": options.size,
        }
        for key in ("quality", "style", "negative_prompt"):
            value = getattr(options, key)
            if value:
                body[key] = value

        logger.info("→ LLM: image generation with %s", options.model)
        log_http_request("POST", url, body)
        try:
            response = await race(
                self.client.post(url, json=body, headers=self._headers(config, options.api_key)),
                options.cancellation,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Unable to connect to AI service: {e}") from e

        if response.is_error:
            raise await self._transport_error(response, options.cancellation)

        result = ImageGenerationResult(images=_images_from_payload(response.json()))
        logger.info("← LLM: %d image(s) generated", result.total)
        return result

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()


# ==============================================================================
# ONE-SHOT HELPERS
# ==============================================================================


async def chat(
    provider: str,
    options: ChatOptions,
    custom_api_url: str | None = None,
    advanced: AdvancedEndpoints | None = None,
) -> None:
    """Single chat request on a short-lived client."""
    async with ChatClient() as client:
        await client.chat(provider, options, custom_api_url, advanced)


async def fetch_models(
    provider: str,
    api_key: str,
    custom_api_url: str | None = None,
    advanced: AdvancedEndpoints | None = None,
) -> list[ModelInfo]:
    async with ChatClient() as client:
        return await client.fetch_models(provider, api_key, custom_api_url, advanced)


async def generate_image(
    provider: str,
    options: ImageGenerationOptions,
    custom_api_url: str | None = None,
) -> ImageGenerationResult:
    async with ChatClient() as client:
        return await client.generate_image(provider, options, custom_api_url)
