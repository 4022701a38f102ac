"""Provider registry, custom URL rules and model-list normalization."""

from __future__ import annotations

import pytest

from multichat.chat.models import AdvancedEndpoints
from multichat.clients.providers import (
    PROVIDER_CONFIGS,
    ProviderRegistry,
    classify_model_list,
    normalize_model_list,
    split_custom_url,
)
from multichat.errors import ConfigurationError


@pytest.mark.parametrize(
    "custom_url",
    [
        "https://gateway.example.com/v1/chat/completions#",
        "https://gateway.example.com/custom/path#",
        "  http://localhost:8080/anything#  ",
    ],
)
def test_hash_suffix_uses_url_verbatim(custom_url):
    base, path = split_custom_url(custom_url, "/v1/chat/completions")
    assert base == custom_url.strip()[:-1]
    assert path == ""


@pytest.mark.parametrize(
    ("default_path", "expected_path"),
    [
        ("/v1/chat/completions", "/chat/completions"),
        ("/v1/models", "/models"),
        ("/api/v3/chat/completions", "/api/v3/chat/completions"),
    ],
)
def test_slash_suffix_absorbs_version_prefix(default_path, expected_path):
    base, path = split_custom_url("https://host.example.com/openai/", default_path)
    assert base == "https://host.example.com/openai"
    assert path == expected_path


def test_plain_url_gets_full_default_path():
    assert split_custom_url("https://host.example.com", "/v1/models") == ("https://host.example.com", "/v1/models")


def test_builtin_provider_without_custom_url():
    registry = ProviderRegistry()
    endpoint = registry.resolve_chat("deepseek")
    assert endpoint.url == "https://api.deepseek.com/v1/chat/completions"
    assert endpoint.base_url == "https://api.deepseek.com"

    models = registry.resolve_models("volcano")
    assert models.url == "https://ark.cn-beijing.volces.com/api/v3/models"


def test_custom_url_overrides_builtin_base():
    endpoint = ProviderRegistry().resolve_chat("openai", "https://proxy.example.com/")
    assert endpoint.url == "https://proxy.example.com/chat/completions"


def test_advanced_url_wins_over_custom_url():
    advanced = AdvancedEndpoints(custom_chat_url="https://adv.example.com/v1/chat/completions")
    endpoint = ProviderRegistry().resolve_chat("openai", "https://proxy.example.com#", advanced)
    assert endpoint.url == "https://adv.example.com/v1/chat/completions"
    assert endpoint.base_url == "https://adv.example.com"


def test_advanced_models_url_used_verbatim():
    advanced = AdvancedEndpoints(custom_models_url="https://adv.example.com/list?full=1")
    endpoint = ProviderRegistry().resolve_models("my-gateway", None, advanced)
    assert endpoint.url == "https://adv.example.com/list?full=1"


@pytest.mark.parametrize("provider", ["custom", "my-gateway"])
def test_unknown_provider_without_url_is_configuration_error(provider):
    registry = ProviderRegistry()
    with pytest.raises(ConfigurationError):
        registry.resolve_chat(provider)
    with pytest.raises(ConfigurationError):
        registry.resolve_chat(provider, "   ")
    with pytest.raises(ConfigurationError):
        registry.resolve_models(provider)


def test_image_endpoint():
    registry = ProviderRegistry()
    assert registry.resolve_images("openai") == "https://api.openai.com/v1/image/generations"
    assert registry.resolve_images("custom", "https://img.example.com/") == "https://img.example.com/v1/image/generations"


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        PROVIDER_CONFIGS["evil"] = PROVIDER_CONFIGS["openai"]  # type: ignore[index]


def test_auth_header_conventions():
    assert PROVIDER_CONFIGS["openai"].auth_headers("sk-1") == {"Authorization": "Bearer sk-1"}
    assert PROVIDER_CONFIGS["gemini"].auth_headers("g-1") == {"x-goog-api-key": "g-1"}
    assert PROVIDER_CONFIGS["anthropic"].auth_headers("a-1") == {"x-api-key": "a-1"}


@pytest.mark.parametrize(
    ("payload", "shape"),
    [
        (["a", "b"], "bare_list"),
        ({"data": [{"id": "a"}]}, "data_list"),
        ({"models": [{"name": "models/a"}]}, "models_list"),
        ({"object": "list"}, "empty"),
        (None, "empty"),
    ],
)
def test_classify_model_list(payload, shape):
    assert classify_model_list(payload).shape == shape


def test_normalize_openai_listing():
    payload = {"data": [{"id": "gpt-4o", "object": "model"}, {"id": "o3-mini"}, "bare-model", 42]}
    models = normalize_model_list(payload, PROVIDER_CONFIGS["openai"])
    assert [(m.id, m.name, m.provider) for m in models] == [
        ("gpt-4o", "gpt-4o", "OpenAI"),
        ("o3-mini", "o3-mini", "OpenAI"),
        ("bare-model", "bare-model", "OpenAI"),
    ]


def test_normalize_gemini_listing():
    payload = {"models": [{"name": "models/gemini-2.5-flash", "displayName": "Gemini 2.5 Flash"}]}
    models = normalize_model_list(payload, PROVIDER_CONFIGS["gemini"])
    assert models[0].id == "gemini-2.5-flash"
    assert models[0].name == "Gemini 2.5 Flash"
    assert models[0].provider == "Gemini"


def test_normalize_unrecognized_shape_is_empty():
    assert normalize_model_list({"unexpected": True}, PROVIDER_CONFIGS["openai"]) == []
