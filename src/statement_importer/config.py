"""
Configuration management (SSOT).

This module defines ALL configuration for the statement importer.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Provider order in extraction.providers is the fallback priority
- API keys come from YAML or environment, never from the statement store
- The day-first date preference is configuration, not a hidden constant
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

# Known extraction providers (registry keys in statement_importer.ai.providers)
KNOWN_PROVIDERS = ("openai", "google", "mistral", "ollama")

# Environment variables per provider: (api key / base URL variable, model variable)
PROVIDER_ENV = {
    "openai": ("OPENAI_API_KEY", "OPENAI_MODEL"),
    "google": ("GOOGLE_API_KEY", "GOOGLE_MODEL"),
    "mistral": ("MISTRAL_API_KEY", "MISTRAL_MODEL"),
    "ollama": ("OLLAMA_URL", "OLLAMA_MODEL"),
}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "google": "gemini-2.0-flash",
    "mistral": "mistral-medium-latest",
    "ollama": "llava",
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ParsingConfig:
    """Field normalization settings."""

    default_currency: str = "EUR"
    # Day-first when neither date component exceeds 12
    prefer_european_dates: bool = True
    # Type assigned to amounts without a minus sign or type column
    positive_amount_type: str = "debit"


@dataclass
class ProviderConfig:
    """One structured-extraction provider entry.

    Ollama is addressed by base_url and needs no api_key; the hosted providers
    need api_key. base_url may override the hosted endpoint (proxies).
    """

    provider: str
    model: str = ""
    api_key: str | None = None
    base_url: str | None = None

    @property
    def is_configured(self) -> bool:
        """Check whether the entry has enough settings to be attempted."""
        if not self.model:
            return False
        if self.provider == "ollama":
            return bool(self.base_url)
        return bool(self.api_key)


@dataclass
class ExtractionConfig:
    """AI (PDF) extraction settings."""

    # Page cap for rendering (bank statements can be long)
    max_pages: int = 10
    # Render scale factor (2.0 = 144 dpi)
    render_zoom: float = 2.0
    # Provider request timeout (seconds)
    timeout_seconds: int = 120
    # Ordered provider list (fallback priority)
    providers: list[ProviderConfig] = field(default_factory=list)
    # Model list cache TTL (seconds)
    model_cache_ttl_seconds: int = 3600

    @property
    def configured_providers(self) -> list[ProviderConfig]:
        """Providers with credentials and a model, in priority order."""
        return [p for p in self.providers if p.is_configured]


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Candidate window around the bank date (days, both directions)
    date_window_days: int = 7
    # Maximum suggestions per extracted transaction
    max_suggestions: int = 3


@dataclass
class ProcessingConfig:
    """Background processing and client polling settings."""

    max_workers: int = 2
    poll_attempts: int = 60
    poll_interval_seconds: float = 2.0


@dataclass
class UploadConfig:
    """Upload validation and storage settings."""

    storage_dir: Path = field(default_factory=lambda: Path("data/uploads"))
    max_file_size: int = 10 * 1024 * 1024


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    parsing: ParsingConfig = field(default_factory=ParsingConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/statements.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if len(self.parsing.default_currency) != 3:
            errors.append("parsing.default_currency must be a 3-letter code")
        if self.parsing.positive_amount_type not in ("debit", "credit"):
            errors.append("parsing.positive_amount_type must be 'debit' or 'credit'")

        for entry in self.extraction.providers:
            if entry.provider not in KNOWN_PROVIDERS:
                errors.append(f"extraction.providers: unknown provider '{entry.provider}'")

        if self.extraction.max_pages < 1:
            errors.append("extraction.max_pages must be >= 1")
        if self.reconciliation.date_window_days < 1:
            errors.append("reconciliation.date_window_days must be >= 1")
        if self.reconciliation.max_suggestions < 1:
            errors.append("reconciliation.max_suggestions must be >= 1")
        if self.processing.max_workers < 1:
            errors.append("processing.max_workers must be >= 1")
        if self.uploads.max_file_size <= 0:
            errors.append("uploads.max_file_size must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def _load_providers(entries: list[dict]) -> list[ProviderConfig]:
    """Build provider entries from YAML and apply environment overrides.

    An environment key for a provider that is not listed in YAML appends it
    to the end of the priority list.
    """
    providers = [
        ProviderConfig(
            provider=str(entry.get("provider", "")).lower(),
            model=entry.get("model") or "",
            api_key=entry.get("api_key"),
            base_url=entry.get("base_url"),
        )
        for entry in entries
    ]

    for name, (key_env, model_env) in PROVIDER_ENV.items():
        key_value = os.environ.get(key_env)
        model_value = os.environ.get(model_env)
        if not key_value and not model_value:
            continue

        existing = next((p for p in providers if p.provider == name), None)
        if existing is None:
            existing = ProviderConfig(provider=name, model=DEFAULT_MODELS[name])
            providers.append(existing)

        if key_value:
            if name == "ollama":
                existing.base_url = key_value
            else:
                existing.api_key = key_value
        if model_value:
            existing.model = model_value

    return providers


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - STATEMENT_DB_PATH
    - STATEMENT_UPLOAD_DIR
    - STATEMENT_DEFAULT_CURRENCY
    - STATEMENT_PREFER_EUROPEAN_DATES (true/false)
    - OPENAI_API_KEY / OPENAI_MODEL
    - GOOGLE_API_KEY / GOOGLE_MODEL
    - MISTRAL_API_KEY / MISTRAL_MODEL
    - OLLAMA_URL / OLLAMA_MODEL
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Parsing config
    parsing_data = data.get("parsing", {})
    parsing = ParsingConfig(
        default_currency=os.environ.get(
            "STATEMENT_DEFAULT_CURRENCY", parsing_data.get("default_currency", "EUR")
        ).upper(),
        prefer_european_dates=_env_bool(
            "STATEMENT_PREFER_EUROPEAN_DATES",
            parsing_data.get("prefer_european_dates", True),
        ),
        positive_amount_type=parsing_data.get("positive_amount_type", "debit"),
    )

    # Extraction config
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        max_pages=extraction_data.get("max_pages", 10),
        render_zoom=float(extraction_data.get("render_zoom", 2.0)),
        timeout_seconds=int(extraction_data.get("timeout_seconds", 120)),
        providers=_load_providers(extraction_data.get("providers") or []),
        model_cache_ttl_seconds=extraction_data.get("model_cache_ttl_seconds", 3600),
    )

    # Reconciliation config
    recon_data = data.get("reconciliation", {})
    reconciliation = ReconciliationConfig(
        date_window_days=recon_data.get("date_window_days", 7),
        max_suggestions=recon_data.get("max_suggestions", 3),
    )

    # Processing config
    processing_data = data.get("processing", {})
    processing = ProcessingConfig(
        max_workers=processing_data.get("max_workers", 2),
        poll_attempts=processing_data.get("poll_attempts", 60),
        poll_interval_seconds=float(processing_data.get("poll_interval_seconds", 2.0)),
    )

    # Upload config
    upload_data = data.get("uploads", {})
    uploads = UploadConfig(
        storage_dir=Path(
            os.environ.get("STATEMENT_UPLOAD_DIR", upload_data.get("storage_dir", "data/uploads"))
        ),
        max_file_size=int(upload_data.get("max_file_size", 10 * 1024 * 1024)),
    )

    # State DB
    state_db = os.environ.get(
        "STATEMENT_DB_PATH", data.get("state_db_path", "data/statements.db")
    )

    return Config(
        parsing=parsing,
        extraction=extraction,
        reconciliation=reconciliation,
        processing=processing,
        uploads=uploads,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank Statement Importer Configuration
#
# Provider order is the fallback priority for PDF extraction.
# API keys can also be supplied through OPENAI_API_KEY, GOOGLE_API_KEY,
# MISTRAL_API_KEY and OLLAMA_URL.

parsing:
  default_currency: "EUR"
  prefer_european_dates: true              # 03/04/2024 -> 3 April when ambiguous
  positive_amount_type: "debit"            # Type for unsigned amounts without a type column

extraction:
  max_pages: 10                            # Pages rendered per PDF statement
  render_zoom: 2.0                         # Render scale factor
  timeout_seconds: 120
  model_cache_ttl_seconds: 3600            # Cache model listings for this long
  providers:
    - provider: "openai"
      api_key: null
      model: "gpt-4o-mini"
    - provider: "ollama"
      base_url: "http://localhost:11434"   # Local Ollama server (no API key)
      model: "llava"

reconciliation:
  date_window_days: 7                      # Match invoices within this window
  max_suggestions: 3                       # Suggestions per bank transaction

processing:
  max_workers: 2                           # Concurrent background statements
  poll_attempts: 60
  poll_interval_seconds: 2.0

uploads:
  storage_dir: "data/uploads"
  max_file_size: 10485760                  # 10 MB

# State database path
state_db_path: "data/statements.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
