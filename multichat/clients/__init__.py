"""Clients package: provider registry, request builders and the HTTP chat client."""

from __future__ import annotations

from .llm_client import ChatClient
from .providers import ProviderRegistry

__all__ = ["ChatClient", "ProviderRegistry"]
