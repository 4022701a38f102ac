"""Configuration management for multichat."""

from __future__ import annotations

import os
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from multichat.chat.models import AdvancedEndpoints
from multichat.errors import ConfigurationError

CONFIG_ENV_VAR = "MULTICHAT_CONFIG"

EFFORT_LEVELS = ("low", "medium", "high", "auto")

# Built-in providers and the environment variable holding their key
PROVIDER_KEY_MAP = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "moonshot": "MOONSHOT_API_KEY",
    "volcano": "VOLCANO_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class Configuration:
    """Packaged YAML defaults, an optional user YAML override, and .env secrets."""

    def __init__(self, config_path: str | None = None, *, load_env: bool = True) -> None:
        """
        Args:
            config_path: User YAML merged over the defaults. Falls back to the
                ``MULTICHAT_CONFIG`` environment variable when omitted.
            load_env: Load ``.env`` into the process environment first.
        """
        if load_env:
            self.load_env()
        self._default_config = self._load_yaml_config(os.path.join(os.path.dirname(__file__), "config.yaml"))

        user_path = config_path or os.getenv(CONFIG_ENV_VAR)
        if user_path:
            if not os.path.exists(user_path):
                raise ConfigurationError(f"Configuration file not found: {user_path}")
            user_config = self._load_yaml_config(user_path)
            self._config = self._deep_merge(self._default_config, user_config)
        else:
            self._config = self._default_config

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(path: str) -> dict[str, Any]:
        try:
            with open(path) as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
        return cast(dict[str, Any], config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _get_config_value(self, path: list[str], default: Any = None) -> Any:
        """Get a configuration value by path."""
        current: Any = self._config
        for key in path:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def get_config_dict(self) -> dict[str, Any]:
        return self._config

    def get_logging_config(self) -> dict[str, Any]:
        return self._config.get("logging", {})

    def get_provider_config(self, provider: str) -> dict[str, Any]:
        """Per-provider section; empty for providers the YAML does not mention."""
        return self._get_config_value(["providers", provider], {}) or {}

    def get_custom_api_url(self, provider: str) -> str | None:
        return self.get_provider_config(provider).get("custom_api_url") or None

    def get_advanced_endpoints(self, provider: str) -> AdvancedEndpoints | None:
        advanced = self.get_provider_config(provider).get("advanced")
        if not advanced:
            return None
        if not isinstance(advanced, dict):
            raise ConfigurationError(f"providers.{provider}.advanced must be a mapping")
        return AdvancedEndpoints.model_validate(advanced)

    def get_api_key(self, provider: str) -> str:
        """
        API key for ``provider`` from the environment.

        Raises:
            ConfigurationError: If no variable is mapped or the variable is unset.
        """
        env_key = self.get_provider_config(provider).get("api_key_env") or PROVIDER_KEY_MAP.get(provider)
        if not env_key:
            raise ConfigurationError(f"Unknown provider '{provider}' - no api_key_env configured")

        api_key = os.getenv(env_key)
        if not api_key:
            raise ConfigurationError(
                f"API key '{env_key}' not found in environment variables for provider '{provider}'"
            )
        return api_key

    def get_chat_config(self) -> dict[str, Any]:
        """Chat defaults with validated values."""
        chat_config = dict(self._config.get("chat", {}))

        effort = chat_config.get("reasoning_effort") or "low"
        if effort not in EFFORT_LEVELS:
            raise ConfigurationError(f"reasoning_effort must be one of {', '.join(EFFORT_LEVELS)}")
        chat_config["reasoning_effort"] = effort

        temperature = chat_config.get("temperature", 0.7)
        if not isinstance(temperature, (int, float)) or temperature < 0:
            raise ConfigurationError("temperature must be a non-negative number")

        for key in ("max_tokens", "max_context_tokens"):
            value = chat_config.get(key)
            if value is not None and (not isinstance(value, int) or value < 1):
                raise ConfigurationError(f"{key} must be a positive integer")

        return chat_config

    def get_http_config(self) -> dict[str, Any]:
        """HTTP client settings with validated defaults."""
        http_config = self._config.get("http", {})

        timeout = http_config.get("request_timeout_seconds", 120.0)
        max_connections = http_config.get("max_connections", 20)
        max_keepalive = http_config.get("max_keepalive_connections", 10)
        keepalive_expiry = http_config.get("keepalive_expiry_seconds", 30.0)

        if timeout <= 0:
            raise ConfigurationError("request_timeout_seconds must be positive")
        if max_connections < 1:
            raise ConfigurationError("max_connections must be at least 1")
        if max_keepalive < 0 or max_keepalive > max_connections:
            raise ConfigurationError("max_keepalive_connections must be between 0 and max_connections")
        if keepalive_expiry <= 0:
            raise ConfigurationError("keepalive_expiry_seconds must be positive")

        return {
            "request_timeout_seconds": timeout,
            "max_connections": max_connections,
            "max_keepalive_connections": max_keepalive,
            "keepalive_expiry_seconds": keepalive_expiry,
            "http2": bool(http_config.get("http2", True)),
        }
