"""Embedding providers and the provider-selecting embedding adapter.

The adapter is credential-agnostic: callers resolve an ``EmbeddingConfig``
once (for example from the book owner's stored OpenRouter preferences) and
pass it in. The adapter tries that alternate provider first and falls back
to the default provider at most once, emitting a structured
``embedding_provider_fallback`` event so degraded mode is visible.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from openai import AsyncOpenAI

from storyloom.core.config import Settings, get_settings
from storyloom.core.errors import EmbeddingError, ProviderNotConfiguredError
from storyloom.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("openai", "openrouter", "ollama")


@dataclass(frozen=True)
class EmbeddingConfig:
    """Resolved provider choice for one caller."""

    provider: str
    model: str
    api_key: str = ""
    base_url: str | None = None

    @property
    def is_complete(self) -> bool:
        """Whether this config names a provider, a model and (if needed) a credential."""
        if not self.provider or not self.model:
            return False
        # Ollama is served locally without a credential
        return self.provider == "ollama" or bool(self.api_key)

    def __repr__(self) -> str:  # pragma: no cover - never print raw secrets
        return f"EmbeddingConfig(provider={self.provider!r}, model={self.model!r})"


@dataclass(frozen=True)
class EmbeddingFallbackEvent:
    """Emitted when the alternate provider failed and the default took over."""

    failed_provider: str
    failed_model: str
    fallback_provider: str
    fallback_model: str
    error: str
    book_id: str | None = None


class EmbeddingProvider(ABC):
    """A backend that turns one text into one vector."""

    name: str = "provider"

    @abstractmethod
    async def embed(self, text: str, model: str) -> list[float]:
        """Embed ``text`` with ``model``.

        Raises:
            Exception: Any provider/transport failure
        """


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings via the official async SDK."""

    name = "openai"

    def __init__(self, api_key: str, timeout: float = 30.0, base_url: str | None = None):
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def embed(self, text: str, model: str) -> list[float]:
        response = await self._client.embeddings.create(model=model, input=text)
        if not response.data:
            raise ValueError("OpenAI returned no embedding data")
        return list(response.data[0].embedding)


class OpenRouterEmbeddingProvider(EmbeddingProvider):
    """OpenRouter embeddings over its OpenAI-compatible REST endpoint."""

    name = "openrouter"

    def __init__(self, api_key: str, base_url: str, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def embed(self, text: str, model: str) -> list[float]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Title": "Storyloom",
                },
                json={"model": model, "input": text},
            )
            response.raise_for_status()
            data = response.json()

        items = data.get("data") or []
        if not items or not items[0].get("embedding"):
            raise ValueError("OpenRouter returned no embedding data")
        return list(items[0]["embedding"])


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Local Ollama embeddings."""

    name = "ollama"

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def embed(self, text: str, model: str) -> list[float]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": model, "prompt": text},
            )
            response.raise_for_status()
            data = response.json()

        embedding = data.get("embedding")
        if not embedding:
            raise ValueError("Ollama returned no embedding")
        return list(embedding)


def build_provider(config: EmbeddingConfig, settings: Settings | None = None) -> EmbeddingProvider:
    """
    Instantiate the provider named by ``config``.

    Args:
        config: Resolved embedding configuration
        settings: Optional settings override (base URLs, timeout)

    Returns:
        EmbeddingProvider ready to call

    Raises:
        ValueError: If the provider name is unknown
    """
    settings = settings or get_settings()
    timeout = settings.EMBEDDING_TIMEOUT_SECONDS

    if config.provider == "openai":
        return OpenAIEmbeddingProvider(config.api_key, timeout=timeout, base_url=config.base_url)
    if config.provider == "openrouter":
        return OpenRouterEmbeddingProvider(
            config.api_key,
            base_url=config.base_url or settings.OPENROUTER_BASE_URL,
            timeout=timeout,
        )
    if config.provider == "ollama":
        return OllamaEmbeddingProvider(
            base_url=config.base_url or settings.OLLAMA_BASE_URL,
            timeout=timeout,
        )
    raise ValueError(
        f"Unknown embedding provider: {config.provider}. Must be one of {list(SUPPORTED_PROVIDERS)}"
    )


class EmbeddingAdapter:
    """Embeds text with an optional per-caller provider and a default fallback."""

    def __init__(
        self,
        default_provider: EmbeddingProvider | None = None,
        default_model: str = "text-embedding-ada-002",
        max_input_chars: int = 8000,
        expected_dim: int | None = None,
        timeout: float | None = 30.0,
        provider_factory: Callable[[EmbeddingConfig], EmbeddingProvider] = build_provider,
        on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
    ):
        self.default_provider = default_provider
        self.default_model = default_model
        self.max_input_chars = max_input_chars
        self.expected_dim = expected_dim or None
        self.timeout = timeout
        self.provider_factory = provider_factory
        self.on_fallback = on_fallback

    @property
    def has_default(self) -> bool:
        return self.default_provider is not None

    def can_embed(self, config: EmbeddingConfig | None = None) -> bool:
        """Whether some provider would be tried for ``config``."""
        return self.has_default or (config is not None and config.is_complete)

    async def embed(
        self,
        text: str,
        config: EmbeddingConfig | None = None,
        *,
        book_id: str | None = None,
        on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
    ) -> list[float]:
        """
        Embed one text.

        Args:
            text: Text to embed (silently truncated to ``max_input_chars``)
            config: Caller's alternate provider config, tried first when complete
            book_id: Optional book id for log/event context
            on_fallback: Per-call hook, invoked after the adapter-wide one

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the text is empty, no provider is configured,
                or every configured provider failed
        """
        clean_text = (text or "")[: self.max_input_chars].strip()
        if not clean_text:
            raise EmbeddingError("Text is empty or too short for embedding generation")

        alternate: EmbeddingProvider | None = None
        alternate_error: Exception | None = None
        if config is not None and config.is_complete:
            try:
                alternate = self.provider_factory(config)
            except Exception as e:
                alternate_error = e

        if alternate is None and alternate_error is None and self.default_provider is None:
            raise ProviderNotConfiguredError()

        if alternate is not None:
            try:
                return await self._call(alternate, clean_text, config.model)
            except Exception as e:
                alternate_error = e

        if alternate_error is not None:
            if self.default_provider is None:
                raise EmbeddingError(
                    f"Embedding provider '{config.provider}' failed and no default provider "
                    f"is configured: {alternate_error}",
                    provider=config.provider,
                ) from alternate_error
            self._emit_fallback(config, alternate_error, book_id, on_fallback)

        try:
            return await self._call(self.default_provider, clean_text, self.default_model)
        except Exception as e:
            logger.error(
                f"Failed to generate embedding with {self.default_provider.name}: {e}",
                extra={"book_id": book_id},
            )
            raise EmbeddingError(
                f"Failed to generate embedding: {e}", provider=self.default_provider.name
            ) from e

    async def _call(self, provider: EmbeddingProvider, text: str, model: str) -> list[float]:
        if self.timeout:
            embedding = await asyncio.wait_for(provider.embed(text, model), timeout=self.timeout)
        else:
            embedding = await provider.embed(text, model)

        if not embedding:
            raise ValueError(f"{provider.name} returned an empty embedding")

        # Validate dimension
        if self.expected_dim and len(embedding) != self.expected_dim:
            raise ValueError(
                f"Embedding dimension mismatch from {provider.name}: "
                f"expected {self.expected_dim}, got {len(embedding)}"
            )
        return embedding

    def _emit_fallback(
        self,
        config: EmbeddingConfig,
        error: Exception,
        book_id: str | None,
        on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
    ) -> None:
        event = EmbeddingFallbackEvent(
            failed_provider=config.provider,
            failed_model=config.model,
            fallback_provider=self.default_provider.name,
            fallback_model=self.default_model,
            error=str(error),
            book_id=book_id,
        )
        log_with_context(
            logger,
            logging.WARNING,
            f"Embedding provider {config.provider} failed, falling back to "
            f"{self.default_provider.name}",
            event="embedding_provider_fallback",
            book_id=book_id,
            failed_provider=event.failed_provider,
            failed_model=event.failed_model,
            fallback_provider=event.fallback_provider,
            error=event.error,
        )
        if self.on_fallback is not None:
            self.on_fallback(event)
        if on_fallback is not None:
            on_fallback(event)


def get_default_adapter(
    settings: Settings | None = None,
    on_fallback: Callable[[EmbeddingFallbackEvent], None] | None = None,
) -> EmbeddingAdapter:
    """
    Build an adapter whose default provider is OpenAI, when a key is set.

    Args:
        settings: Optional settings override
        on_fallback: Optional hook for provider fallback events

    Returns:
        EmbeddingAdapter (without a default provider if OPENAI_API_KEY is empty)
    """
    settings = settings or get_settings()

    default_provider = None
    if settings.OPENAI_API_KEY:
        default_provider = OpenAIEmbeddingProvider(
            settings.OPENAI_API_KEY, timeout=settings.EMBEDDING_TIMEOUT_SECONDS
        )
    else:
        logger.warning("No OPENAI_API_KEY set; embeddings require a per-book provider config")

    return EmbeddingAdapter(
        default_provider=default_provider,
        default_model=settings.EMBEDDING_MODEL,
        max_input_chars=settings.EMBEDDING_MAX_INPUT_CHARS,
        expected_dim=settings.EMBEDDING_DIM,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        provider_factory=lambda config: build_provider(config, settings),
        on_fallback=on_fallback,
    )


def resolve_embedding_config(
    preferences: dict[str, Any] | None,
    settings: Settings | None = None,
) -> EmbeddingConfig | None:
    """
    Turn a book owner's stored embedding preferences into an EmbeddingConfig.

    Args:
        preferences: Row with ``openrouter_api_key`` and ``openrouter_embedding_model``
            (the key already decrypted by the caller)
        settings: Optional settings override

    Returns:
        EmbeddingConfig, or None if the owner has no complete alternate setup
    """
    if not preferences:
        return None

    api_key = preferences.get("openrouter_api_key")
    model = preferences.get("openrouter_embedding_model")
    if not api_key or not model:
        logger.debug("No OpenRouter embedding preferences; using default provider")
        return None

    settings = settings or get_settings()
    return EmbeddingConfig(
        provider="openrouter",
        model=model,
        api_key=api_key,
        base_url=settings.OPENROUTER_BASE_URL,
    )
