"""Model catalog: list the models a provider offers.

Listings are cached per provider through an injected ModelCache so that
settings screens and validation do not hit provider APIs on every call.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx

from .providers import (
    GoogleProvider,
    MistralProvider,
    OllamaProvider,
    OpenAIProvider,
    create_http_client,
)

if TYPE_CHECKING:
    from ..config import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600


class ModelCache(Protocol):
    """Key/value cache with per-entry expiry."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...


class InMemoryModelCache:
    """Process-local ModelCache.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)


@dataclass
class ModelInfo:
    """One model offered by a provider."""

    id: str
    name: str
    supports_vision: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"id": self.id, "name": self.name, "supports_vision": self.supports_vision}


@dataclass
class ModelListResult:
    """Models for a provider, or the reason they could not be listed."""

    models: list[ModelInfo] = field(default_factory=list)
    error: str | None = None
    from_cache: bool = False


@dataclass
class ModelValidation:
    """Whether a configured model exists, with alternatives if not."""

    valid: bool
    error: str | None = None
    suggestions: list[str] = field(default_factory=list)


def _version_key(model: ModelInfo) -> str:
    match = re.search(r"(\d+\.\d+)", model.id)
    return match.group(1) if match else "0"


class ModelCatalog:
    """Fetch and cache model listings per provider."""

    def __init__(
        self,
        cache: ModelCache | None = None,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        timeout_seconds: float = 30,
        client: httpx.Client | None = None,
    ) -> None:
        self.cache = cache or InMemoryModelCache()
        self.ttl_seconds = ttl_seconds
        self._owns_client = client is None
        self._client = client or create_http_client(timeout_seconds)

    def list_models(self, config: ProviderConfig) -> ModelListResult:
        """List the models available for a provider entry.

        Successful non-empty listings are cached for ttl_seconds.
        """
        if config.provider == "ollama":
            if not config.base_url:
                return ModelListResult(error="No Ollama URL provided")
        elif not config.api_key:
            return ModelListResult(error="No API key provided")

        cache_key = f"models:{config.provider}:{config.base_url or ''}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return ModelListResult(models=cached, from_cache=True)

        fetchers = {
            "openai": self._fetch_openai,
            "google": self._fetch_google,
            "mistral": self._fetch_mistral,
            "ollama": self._fetch_ollama,
        }
        fetcher = fetchers.get(config.provider)
        if fetcher is None:
            return ModelListResult(error=f"Unknown provider: {config.provider}")

        try:
            models = fetcher(config)
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Model listing for %s failed with HTTP %s", config.provider, e.response.status_code
            )
            return ModelListResult(
                error=f"{config.provider} API error: {e.response.status_code} - "
                f"{e.response.text[:200]}"
            )
        except httpx.RequestError as e:
            logger.warning("Model listing for %s failed: %s", config.provider, e)
            return ModelListResult(error=f"Failed to fetch {config.provider} models: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Unexpected model listing from %s: %s", config.provider, e)
            return ModelListResult(error=f"Unexpected response from {config.provider}: {e}")

        if models:
            self.cache.set(cache_key, models, self.ttl_seconds)
        return ModelListResult(models=models)

    def validate_model(self, config: ProviderConfig) -> ModelValidation:
        """Check that the configured model is offered by the provider."""
        result = self.list_models(config)
        if result.error:
            return ModelValidation(valid=False, error=result.error)

        model = config.model
        if any(m.id == model or m.id == f"models/{model}" for m in result.models):
            return ModelValidation(valid=True)

        return ModelValidation(
            valid=False,
            error=f'Model "{model}" not found',
            suggestions=[m.id for m in result.models[:5]],
        )

    def _get_json(self, url: str, headers: dict | None = None, params: dict | None = None) -> Any:
        response = self._client.get(url, headers=headers or {}, params=params)
        response.raise_for_status()
        return response.json()

    def _fetch_openai(self, config: ProviderConfig) -> list[ModelInfo]:
        base_url = (config.base_url or OpenAIProvider.default_base_url).rstrip("/")
        data = self._get_json(
            f"{base_url}/v1/models", headers={"Authorization": f"Bearer {config.api_key}"}
        )
        models = [
            ModelInfo(id=m["id"], name=m["id"], supports_vision="gpt-4" in m["id"])
            for m in data["data"]
            if m["id"].startswith("gpt-") and "instruct" not in m["id"]
        ]
        # Newest first
        return sorted(models, key=lambda m: m.id, reverse=True)

    def _fetch_google(self, config: ProviderConfig) -> list[ModelInfo]:
        base_url = (config.base_url or GoogleProvider.default_base_url).rstrip("/")
        data = self._get_json(
            f"{base_url}/v1beta/models",
            headers={"x-goog-api-key": config.api_key or ""},
            params={"pageSize": 100},
        )
        models = []
        for m in data.get("models", []):
            methods = m.get("supportedGenerationMethods") or []
            if "generateContent" not in methods or "gemini" not in m["name"]:
                continue
            model_id = m["name"].replace("models/", "")
            models.append(
                ModelInfo(id=model_id, name=m.get("displayName") or model_id, supports_vision=True)
            )
        return sorted(models, key=_version_key, reverse=True)

    def _fetch_mistral(self, config: ProviderConfig) -> list[ModelInfo]:
        base_url = (config.base_url or MistralProvider.default_base_url).rstrip("/")
        data = self._get_json(
            f"{base_url}/v1/models", headers={"Authorization": f"Bearer {config.api_key}"}
        )
        models = []
        for m in data["data"]:
            capabilities = m.get("capabilities") or {}
            model_id = m["id"]
            if not (
                capabilities.get("completion_chat")
                or "mistral" in model_id
                or "codestral" in model_id
                or "pixtral" in model_id
            ):
                continue
            models.append(
                ModelInfo(
                    id=model_id,
                    name=model_id,
                    supports_vision=bool(capabilities.get("vision")) or "pixtral" in model_id,
                )
            )
        return sorted(models, key=lambda m: m.id)

    def _fetch_ollama(self, config: ProviderConfig) -> list[ModelInfo]:
        base_url = (config.base_url or OllamaProvider.default_base_url).rstrip("/")
        data = self._get_json(f"{base_url}/api/tags")
        models = []
        for m in data.get("models", []):
            details = m.get("details") or {}
            families = details.get("families") or []
            model_id = m["name"]
            supports_vision = "clip" in families or "mllama" in families or "llava" in model_id
            models.append(ModelInfo(id=model_id, name=model_id, supports_vision=supports_vision))
        return sorted(models, key=lambda m: m.id)

    def close(self) -> None:
        """Close the HTTP client if the catalog created it."""
        if self._owns_client:
            self._client.close()
