"""Vision-model extraction providers and model catalog.

Privacy: prompts, page images and raw model output are never logged at
INFO level.
"""

from .models import (
    InMemoryModelCache,
    ModelCache,
    ModelCatalog,
    ModelInfo,
    ModelListResult,
    ModelValidation,
)
from .prompts import PROMPT_VERSION, BankStatementPrompt
from .providers import (
    PROVIDER_REGISTRY,
    ExtractionProvider,
    GoogleProvider,
    MistralProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderChain,
    ProviderResponse,
    classify_provider_error,
    create_provider,
    parse_json_response,
)

__all__ = [
    "BankStatementPrompt",
    "ExtractionProvider",
    "GoogleProvider",
    "InMemoryModelCache",
    "MistralProvider",
    "ModelCache",
    "ModelCatalog",
    "ModelInfo",
    "ModelListResult",
    "ModelValidation",
    "OllamaProvider",
    "OpenAIProvider",
    "PROMPT_VERSION",
    "PROVIDER_REGISTRY",
    "ProviderChain",
    "ProviderResponse",
    "classify_provider_error",
    "create_provider",
    "parse_json_response",
]
