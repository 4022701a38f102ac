"""
Provider registry and endpoint resolution.

The registry is an immutable table built once at import time and injected into
the client; nothing mutates it afterwards. URL resolution turns a provider id,
an optional user-supplied API URL and optional "advanced" per-endpoint
overrides into the concrete URL a request goes to.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from multichat.chat.models import AdvancedEndpoints, ModelInfo
from multichat.errors import ConfigurationError

logger = logging.getLogger(__name__)

Dialect = Literal["openai", "gemini", "claude"]


class ProviderConfig(BaseModel):
    """Static per-vendor descriptor."""

    model_config = ConfigDict(frozen=True)

    name: str
    base_url: str
    models_path: str
    chat_path: str
    api_key_header: str
    dialect: Dialect = "openai"
    website_url: str | None = None

    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Bearer scheme for ``Authorization``; any other header carries the raw key."""
        if self.api_key_header.lower() == "authorization":
            return {self.api_key_header: f"Bearer {api_key}"}
        return {self.api_key_header: api_key}


PROVIDER_CONFIGS: Mapping[str, ProviderConfig] = MappingProxyType(
    {
        "gemini": ProviderConfig(
            name="Gemini",
            base_url="https://generativelanguage.googleapis.com",
            models_path="/v1beta/models",
            chat_path="/v1beta/models/{model}:streamGenerateContent",
            api_key_header="x-goog-api-key",
            dialect="gemini",
            website_url="https://aistudio.google.com/apikey",
        ),
        "deepseek": ProviderConfig(
            name="DeepSeek",
            base_url="https://api.deepseek.com",
            models_path="/v1/models",
            chat_path="/v1/chat/completions",
            api_key_header="Authorization",
            website_url="https://platform.deepseek.com/",
        ),
        "openai": ProviderConfig(
            name="OpenAI",
            base_url="https://api.openai.com",
            models_path="/v1/models",
            chat_path="/v1/chat/completions",
            api_key_header="Authorization",
            website_url="https://platform.openai.com/",
        ),
        "moonshot": ProviderConfig(
            name="Moonshot",
            base_url="https://api.moonshot.cn",
            models_path="/v1/models",
            chat_path="/v1/chat/completions",
            api_key_header="Authorization",
            website_url="https://platform.moonshot.cn/",
        ),
        "volcano": ProviderConfig(
            name="Volcano Engine",
            base_url="https://ark.cn-beijing.volces.com",
            models_path="/api/v3/models",
            chat_path="/api/v3/chat/completions",
            api_key_header="Authorization",
            website_url="https://console.volcengine.com/ark",
        ),
        "anthropic": ProviderConfig(
            name="Anthropic",
            base_url="https://api.anthropic.com",
            models_path="/v1/models",
            chat_path="/v1/messages",
            api_key_header="x-api-key",
            dialect="claude",
            website_url="https://console.anthropic.com/",
        ),
    }
)

CUSTOM_PROVIDER = ProviderConfig(
    name="Custom",
    base_url="",
    models_path="/v1/models",
    chat_path="/v1/chat/completions",
    api_key_header="Authorization",
)

_VERSION_SUFFIX_RE = re.compile(r"/v1.*$")


def split_custom_url(custom_url: str, default_path: str) -> tuple[str, str]:
    """
    Derive ``(base_url, path)`` from a user-supplied API URL.

    Rules, checked in order against the trimmed URL:
      1. ends with ``#``: the remainder is the full URL, no path appended
      2. ends with ``/``: slash stripped, and a leading ``/v1`` is dropped from
         the default path (``https://host/openai/`` + ``/v1/models`` gives
         ``https://host/openai/models``)
      3. otherwise: one trailing slash stripped, full default path appended
    """
    trimmed = (custom_url or "").strip()

    if trimmed.endswith("#"):
        return trimmed[:-1], ""

    if trimmed.endswith("/"):
        path = default_path[3:] if default_path.startswith("/v1") else default_path
        return trimmed[:-1], path

    return trimmed.removesuffix("/"), default_path


@dataclass(frozen=True)
class ResolvedEndpoint:
    """
    Where a request goes.

    ``url`` is the full OpenAI-compatible endpoint. The Gemini and Claude
    dialects ignore it and append their fixed path to ``base_url``.
    """

    provider: ProviderConfig
    url: str
    base_url: str


class ProviderRegistry:
    """Looks up provider descriptors and resolves endpoint URLs."""

    def __init__(self, configs: Mapping[str, ProviderConfig] = PROVIDER_CONFIGS) -> None:
        self._configs = configs

    def is_builtin(self, provider: str) -> bool:
        return provider in self._configs

    def get(self, provider: str) -> ProviderConfig:
        """Built-in descriptor, or the generic custom descriptor for unknown ids."""
        return self._configs.get(provider, CUSTOM_PROVIDER)

    def providers(self) -> list[str]:
        return list(self._configs)

    def resolve_chat(
        self,
        provider: str,
        custom_api_url: str | None = None,
        advanced: AdvancedEndpoints | None = None,
    ) -> ResolvedEndpoint:
        config = self.get(provider)

        # Advanced chat URL wins over the plain custom URL unconditionally
        if advanced and advanced.custom_chat_url:
            url = advanced.custom_chat_url
            return ResolvedEndpoint(config, url, _VERSION_SUFFIX_RE.sub("", url))

        if custom_api_url and custom_api_url.strip():
            base_url, path = split_custom_url(custom_api_url, config.chat_path)
            return ResolvedEndpoint(config, f"{base_url}{path}", base_url)

        if not self.is_builtin(provider):
            raise ConfigurationError(f"Provider '{provider}' requires an API URL")
        return ResolvedEndpoint(config, f"{config.base_url}{config.chat_path}", config.base_url)

    def resolve_models(
        self,
        provider: str,
        custom_api_url: str | None = None,
        advanced: AdvancedEndpoints | None = None,
    ) -> ResolvedEndpoint:
        config = self.get(provider)

        if advanced and advanced.custom_models_url:
            url = advanced.custom_models_url
            return ResolvedEndpoint(config, url, _VERSION_SUFFIX_RE.sub("", url))

        if custom_api_url and custom_api_url.strip():
            base_url, path = split_custom_url(custom_api_url, config.models_path)
            return ResolvedEndpoint(config, f"{base_url}{path}", base_url)

        if not self.is_builtin(provider):
            raise ConfigurationError(f"Provider '{provider}' requires an API URL")
        return ResolvedEndpoint(config, f"{config.base_url}{config.models_path}", config.base_url)

    def resolve_images(self, provider: str, custom_api_url: str | None = None) -> str:
        """Image generation always targets ``{base}/v1/image/generations``."""
        config = self.get(provider)
        if custom_api_url and custom_api_url.strip():
            base_url, _ = split_custom_url(custom_api_url, "/v1/image/generations")
        elif self.is_builtin(provider):
            base_url = config.base_url
        else:
            raise ConfigurationError(f"Provider '{provider}' requires an API URL")
        return f"{base_url}/v1/image/generations"


# ==============================================================================
# MODEL LIST NORMALIZATION
# ==============================================================================

ModelListShape = Literal["bare_list", "data_list", "models_list", "empty"]


@dataclass(frozen=True)
class ModelListing:
    """A models response classified into one of the known shapes."""

    shape: ModelListShape
    items: list[Any]


def classify_model_list(payload: Any) -> ModelListing:
    """Tag a models response as a bare array, ``{data: [...]}``, ``{models: [...]}`` or empty."""
    if isinstance(payload, list):
        return ModelListing("bare_list", payload)
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return ModelListing("data_list", data)
        models = payload.get("models")
        if isinstance(models, list):
            return ModelListing("models_list", models)
    return ModelListing("empty", [])


def normalize_model_list(payload: Any, provider: ProviderConfig) -> list[ModelInfo]:
    """Normalize any supported listing shape to ``ModelInfo`` records."""
    listing = classify_model_list(payload)
    if listing.shape == "empty":
        logger.warning("Unrecognized model list shape from %s, treating as empty", provider.name)

    models: list[ModelInfo] = []
    for item in listing.items:
        if isinstance(item, str):
            models.append(ModelInfo(id=item, name=item, provider=provider.name))
            continue
        if not isinstance(item, dict):
            continue

        if provider.dialect == "gemini":
            raw_name = str(item.get("name", ""))
            model_id = raw_name.removeprefix("models/")
            display = item.get("displayName") or raw_name
        else:
            model_id = str(item.get("id") or item.get("name") or "")
            display = item.get("name") or item.get("display_name") or model_id

        if not model_id:
            continue
        models.append(ModelInfo(id=model_id, name=str(display), provider=provider.name))
    return models
