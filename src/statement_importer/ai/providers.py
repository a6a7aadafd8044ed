"""Structured-extraction providers for vision models.

Every provider accepts the same request (prompt, JSON schema, page images)
and returns the parsed JSON object. Providers are selected through an
explicit registry and tried in configured order by ProviderChain.

Privacy constraints:
- Never log prompts, images or raw model output at INFO level
- API keys are never logged
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import httpx

from ..errors import ProviderError, ProviderErrorCategory, ProviderFailure

if TYPE_CHECKING:
    from ..config import ProviderConfig
    from ..extractors.rendering import PageImage

logger = logging.getLogger(__name__)

# Known valid model names per provider (for error messages)
VALID_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"],
    "google": [
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
        "gemini-1.5-flash",
        "gemini-1.5-pro",
        "gemini-2.5-flash",
    ],
    "mistral": [
        "mistral-large-latest",
        "mistral-medium-latest",
        "mistral-small-latest",
        "open-mistral-nemo",
    ],
    "ollama": ["llava", "llava:13b", "llama3.2-vision", "bakllava", "moondream"],
}

_MODEL_NOT_FOUND_MARKERS = (
    "does not support images",
    "not found",
    "model not found",
    "invalid model",
)
_AUTH_MARKERS = ("api key", "api_key", "authentication", "unauthorized")
_QUOTA_MARKERS = ("quota", "insufficient")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests")


def create_http_client(timeout_seconds: float) -> httpx.Client:
    """Create an HTTP client with explicit per-phase timeouts.

    - connect: 10 seconds for initial connection
    - read: full timeout for waiting on the model
    - write: 30 seconds for uploading page images
    - pool: 10 seconds for getting a connection from the pool
    """
    return httpx.Client(
        timeout=httpx.Timeout(
            connect=10.0,
            read=float(timeout_seconds),
            write=30.0,
            pool=10.0,
        )
    )


def classify_provider_error(
    provider: str,
    model: str,
    message: str,
    status_code: int | None = None,
) -> tuple[ProviderErrorCategory, str]:
    """Classify a provider failure and build an actionable message.

    Args:
        provider: Provider name
        model: Model that was requested
        message: Original error text (response body or exception message)
        status_code: HTTP status code, if the failure came from a response

    Returns:
        Tuple of (category, user-facing message)
    """
    lowered = message.lower()
    valid = ", ".join(VALID_MODELS.get(provider, []))

    model_error = (
        ProviderErrorCategory.MODEL_NOT_FOUND,
        f'Model "{model}" for {provider} is invalid or does not exist. '
        f"Valid models include: {valid}. Please check your settings.",
    )
    auth_error = (
        ProviderErrorCategory.AUTHENTICATION,
        f"Invalid API key for {provider}. Please verify your API key in settings.",
    )

    if status_code in (401, 403):
        return auth_error
    if status_code == 404:
        return model_error

    # Quota before rate limit: some providers answer 429 for exhausted credit
    if any(m in lowered for m in _QUOTA_MARKERS):
        return (
            ProviderErrorCategory.QUOTA,
            f"Quota exceeded for {provider}. Please check your billing/quota settings.",
        )
    if status_code == 429 or any(m in lowered for m in _RATE_LIMIT_MARKERS):
        return (
            ProviderErrorCategory.RATE_LIMIT,
            f"Rate limit exceeded for {provider}. Please try again later.",
        )

    if any(m in lowered for m in _MODEL_NOT_FOUND_MARKERS):
        return model_error
    if any(m in lowered for m in _AUTH_MARKERS):
        return auth_error

    return ProviderErrorCategory.UNKNOWN, f"{provider} (model: {model}) error: {message}"


def parse_json_response(content: str) -> dict:
    """Parse the JSON object returned by a model.

    Handles markdown code fences and leading/trailing prose around a
    single JSON object.

    Raises:
        json.JSONDecodeError: If no JSON object can be read
    """
    if not content:
        raise json.JSONDecodeError("Empty response", "", 0)

    content = content.strip()

    # Remove markdown code blocks
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        # Outermost {...} block inside mixed text
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            raise
        data = json.loads(match.group())

    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", content, 0)
    return data


class ExtractionProvider(ABC):
    """A structured-extraction provider (one model on one service)."""

    name: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        timeout_seconds: float = 120,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Provider entry (model, credentials, optional base URL).
            timeout_seconds: Read timeout for model requests.
            client: Shared HTTP client; one is created (and owned) if omitted.
        """
        self.config = config
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or create_http_client(timeout_seconds)

    @property
    def model(self) -> str:
        return self.config.model

    @abstractmethod
    def extract(
        self,
        prompt: str,
        schema: dict,
        images: list[PageImage],
        schema_name: str = "bank_statement",
    ) -> dict:
        """Run one schema-constrained request.

        Returns:
            The parsed JSON object

        Raises:
            ProviderError: On any failure, with a classified category
        """

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ExtractionProvider:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class HTTPExtractionProvider(ExtractionProvider):
    """Provider reached with a single JSON POST.

    Subclasses describe the request and where the answer sits in the
    response; transport errors and classification live here.
    """

    default_base_url: str = ""

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/")

    @abstractmethod
    def _build_request(
        self,
        prompt: str,
        schema: dict,
        images: list[PageImage],
        schema_name: str,
    ) -> tuple[str, dict, dict]:
        """Return (url, json payload, headers)."""

    @abstractmethod
    def _response_content(self, data: dict) -> str:
        """Return the model's text answer from the response JSON."""

    def _error(self, message: str, status_code: int | None = None) -> ProviderError:
        category, formatted = classify_provider_error(
            self.name, self.model, message, status_code
        )
        return ProviderError(formatted, category=category, provider=self.name)

    def extract(
        self,
        prompt: str,
        schema: dict,
        images: list[PageImage],
        schema_name: str = "bank_statement",
    ) -> dict:
        url, payload, headers = self._build_request(prompt, schema, images, schema_name)
        logger.debug("Calling %s model %s with %d page(s)", self.name, self.model, len(images))

        try:
            response = self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException:
            raise ProviderError(
                f"{self.name} (model: {self.model}) error: request timed out "
                f"after {self.timeout_seconds}s",
                category=ProviderErrorCategory.CONNECTION,
                provider=self.name,
            ) from None
        except httpx.HTTPStatusError as e:
            logger.debug("%s returned HTTP %s", self.name, e.response.status_code)
            raise self._error(
                f"{e.response.status_code} {e.response.text[:300]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"{self.name} (model: {self.model}) error: connection failed: {e}",
                category=ProviderErrorCategory.CONNECTION,
                provider=self.name,
            ) from e

        try:
            content = self._response_content(response.json())
            output = parse_json_response(content)
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(
                f"{self.name} (model: {self.model}) returned an invalid response: {e}",
                category=ProviderErrorCategory.INVALID_RESPONSE,
                provider=self.name,
            ) from e

        logger.debug("%s %s returned %d top-level keys", self.name, self.model, len(output))
        return output


def _chat_message(prompt: str, images: list[PageImage]) -> list[dict]:
    content: list[dict] = [{"type": "text", "text": prompt}]
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return [{"role": "user", "content": content}]


class OpenAIProvider(HTTPExtractionProvider):
    """OpenAI chat completions with a JSON-schema response format."""

    name = "openai"
    default_base_url = "https://api.openai.com"

    def _build_request(self, prompt, schema, images, schema_name):
        payload = {
            "model": self.model,
            "temperature": 0,
            "messages": _chat_message(prompt, images),
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": False},
            },
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        return f"{self.base_url}/v1/chat/completions", payload, headers

    def _response_content(self, data: dict) -> str:
        return data["choices"][0]["message"]["content"]


class MistralProvider(OpenAIProvider):
    """Mistral chat completions (OpenAI-compatible request shape)."""

    name = "mistral"
    default_base_url = "https://api.mistral.ai"


def to_gemini_schema(schema: dict) -> dict:
    """Convert a JSON schema to Gemini's OpenAPI subset (upper-case types)."""
    converted: dict = {}
    for key, value in schema.items():
        if key == "type":
            converted["type"] = str(value).upper()
        elif key == "properties":
            converted["properties"] = {
                name: to_gemini_schema(prop) for name, prop in value.items()
            }
        elif key == "items":
            converted["items"] = to_gemini_schema(value)
        elif key in ("description", "enum", "required"):
            converted[key] = value
    return converted


class GoogleProvider(HTTPExtractionProvider):
    """Google Gemini generateContent with a response schema."""

    name = "google"
    default_base_url = "https://generativelanguage.googleapis.com"

    def _build_request(self, prompt, schema, images, schema_name):
        parts: list[dict] = [{"text": prompt}]
        for image in images:
            parts.append({"inline_data": {"mime_type": image.mimetype, "data": image.base64}})

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 0,
                "responseMimeType": "application/json",
                "responseSchema": to_gemini_schema(schema),
            },
        }
        headers = {"x-goog-api-key": self.config.api_key or ""}
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        return url, payload, headers

    def _response_content(self, data: dict) -> str:
        return data["candidates"][0]["content"]["parts"][0]["text"]


class OllamaProvider(HTTPExtractionProvider):
    """Local or LAN Ollama server (no API key, addressed by base URL)."""

    name = "ollama"
    default_base_url = "http://localhost:11434"

    def _build_request(self, prompt, schema, images, schema_name):
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": prompt,
                    "images": [image.base64 for image in images],
                }
            ],
            "stream": False,
            "format": schema,
            "options": {"temperature": 0},
        }
        return f"{self.base_url}/api/chat", payload, {}

    def _response_content(self, data: dict) -> str:
        return data["message"]["content"]


# Provider registry: config name -> implementation
PROVIDER_REGISTRY: dict[str, type[ExtractionProvider]] = {
    "openai": OpenAIProvider,
    "google": GoogleProvider,
    "mistral": MistralProvider,
    "ollama": OllamaProvider,
}


def create_provider(
    config: ProviderConfig,
    timeout_seconds: float = 120,
    client: httpx.Client | None = None,
) -> ExtractionProvider:
    """Instantiate the provider registered for a config entry.

    Raises:
        ProviderError: If the provider name is not registered
    """
    provider_cls = PROVIDER_REGISTRY.get(config.provider)
    if provider_cls is None:
        raise ProviderError(
            f"Unknown provider: {config.provider}",
            category=ProviderErrorCategory.NOT_CONFIGURED,
            provider=config.provider,
        )
    return provider_cls(config, timeout_seconds=timeout_seconds, client=client)


@dataclass
class ProviderResponse:
    """Successful answer from a provider chain."""

    output: dict
    provider: str
    model: str


ProviderFactory = Callable[["ProviderConfig", float], ExtractionProvider]


class ProviderChain:
    """Ordered provider fallback.

    Providers are tried in configured order; entries without credentials
    or model are skipped; the first success wins. When all fail, the
    raised ProviderError lists every attempt.
    """

    def __init__(
        self,
        providers: list[ProviderConfig],
        timeout_seconds: float = 120,
        factory: ProviderFactory | None = None,
    ) -> None:
        self.providers = providers
        self.timeout_seconds = timeout_seconds
        self._factory = factory or (lambda config, timeout: create_provider(config, timeout))

    @property
    def configured(self) -> list[ProviderConfig]:
        return [p for p in self.providers if p.is_configured]

    def extract(
        self,
        prompt: str,
        schema: dict,
        images: list[PageImage],
        schema_name: str = "bank_statement",
    ) -> ProviderResponse:
        """Run the request against each configured provider until one succeeds.

        Raises:
            ProviderError: NOT_CONFIGURED when no provider is usable, otherwise
                the shared category of all failures (UNKNOWN if they differ)
        """
        failures: list[ProviderFailure] = []

        for config in self.providers:
            if not config.is_configured:
                logger.info(
                    "Skipping provider %s (no API key or model configured)", config.provider
                )
                continue

            logger.info("Using provider %s with model %s", config.provider, config.model)
            try:
                provider = self._factory(config, self.timeout_seconds)
            except ProviderError as e:
                logger.warning("Provider %s unavailable: %s", config.provider, e)
                failures.append(
                    ProviderFailure(config.provider, config.model, e.category, str(e))
                )
                continue

            try:
                output = provider.extract(prompt, schema, images, schema_name)
                return ProviderResponse(output=output, provider=config.provider, model=config.model)
            except ProviderError as e:
                logger.warning("Provider %s failed (%s): %s", config.provider, e.category.value, e)
                failures.append(
                    ProviderFailure(config.provider, config.model, e.category, str(e))
                )
            finally:
                provider.close()

        if not failures:
            raise ProviderError(
                "No LLM providers configured. Please add an API key and model name "
                "to the extraction providers in your configuration.",
                category=ProviderErrorCategory.NOT_CONFIGURED,
            )

        categories = {f.category for f in failures}
        category = categories.pop() if len(categories) == 1 else ProviderErrorCategory.UNKNOWN
        details = " | ".join(f.message for f in failures)
        raise ProviderError(
            f"All LLM providers failed. Errors: {details}",
            category=category,
            failures=failures,
        )
