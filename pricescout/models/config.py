"""Configuration management for the price aggregation engine."""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from pricescout.models.data_models import SourceCategory


QUERY_PLACEHOLDER = "{query}"


class SelectorConfig(BaseModel):
    """CSS selectors used to pull listing fields out of a search page."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    product_container: Optional[str] = Field(default=None, description="Element wrapping one listing")
    product_name: str = Field(description="Listing title element")
    product_price: str = Field(description="Listing price element")
    product_url: Optional[str] = Field(default=None, description="Link to the listing page")
    product_image: Optional[str] = Field(default=None, description="Listing image element")
    product_rating: Optional[str] = Field(default=None, description="Rating text element")
    product_reviews: Optional[str] = Field(default=None, description="Review count element")
    product_availability: Optional[str] = Field(default=None, description="Stock text element")

    @field_validator('product_name', 'product_price')
    @classmethod
    def validate_required(cls, v: str) -> str:
        """Required selectors must be non-empty."""
        if not v or not v.strip():
            raise ValueError("selector must not be empty")
        return v.strip()

    @property
    def wait_selector(self) -> str:
        """Selector whose appearance signals that listings have rendered."""
        return self.product_container or self.product_name


class SourceConfiguration(BaseModel):
    """Scraping configuration for a single source."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    base_url: str = Field(description="Site root used to resolve relative links")
    search_url_template: str = Field(description="Search URL containing the {query} placeholder")
    selectors: SelectorConfig
    rate_limit_ms: int = Field(default=1000, description="Minimum interval between requests")
    currency: Optional[str] = Field(default=None, description="Currency used when the page shows none")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v.rstrip('/')

    @field_validator('search_url_template')
    @classmethod
    def validate_search_url(cls, v: str) -> str:
        """The template must be an http(s) URL with a query placeholder."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        if QUERY_PLACEHOLDER not in v:
            raise ValueError(f"search URL template must contain {QUERY_PLACEHOLDER}, got: {v}")
        return v

    @field_validator('rate_limit_ms')
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        """Validate rate limit is positive."""
        if v <= 0:
            raise ValueError(f"rate_limit_ms must be positive, got: {v}")
        return v

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) != 3:
            raise ValueError(f"currency must be a 3-letter code, got: {v}")
        return v.upper() if v else v


class SourceProfile(BaseModel):
    """A source the orchestrator can query.

    ``configuration`` is validated once, when the profile is loaded. A record
    whose configuration is malformed keeps its identity and carries the
    validation message in ``configuration_error`` instead, so only the scrape
    of that source fails.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    category: SourceCategory = SourceCategory.ALTERNATIVE
    is_active: bool = True
    configuration: Optional[SourceConfiguration] = None
    configuration_error: Optional[str] = None

    @model_validator(mode='after')
    def check_configuration_present(self) -> "SourceProfile":
        if self.configuration is None and self.configuration_error is None:
            raise ValueError(f"source {self.id} has neither a configuration nor a configuration error")
        return self

    @property
    def is_configured(self) -> bool:
        return self.configuration is not None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SourceProfile":
        """
        Build a profile from a raw store record.

        Identity fields (id, name) are mandatory and raise ``ValidationError``.
        Configuration problems are captured on the profile.

        Args:
            record: Mapping in snake_case or camelCase form

        Returns:
            SourceProfile, possibly carrying a configuration error
        """
        data = dict(record)
        raw_configuration = data.pop('configuration', None)
        data.pop('configuration_error', None)
        data.pop('configurationError', None)

        try:
            configuration = SourceConfiguration.model_validate(raw_configuration or {})
            error = None
        except ValidationError as e:
            configuration = None
            error = _summarize_validation_error(e)

        return cls.model_validate(
            {**data, 'configuration': configuration, 'configuration_error': error}
        )


def _summarize_validation_error(error: ValidationError) -> str:
    """Condense a pydantic error into one line naming the offending fields."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get('loc', ()))
        parts.append(f"{location or 'configuration'}: {item.get('msg')}")
    return "invalid configuration: " + "; ".join(parts)


class EngineConfig(BaseModel):
    """Main engine configuration."""

    # Browser automation
    navigation_timeout: float = Field(default=30.0, description="Page navigation timeout in seconds")
    selector_timeout: float = Field(default=10.0, description="Wait for listing selector in seconds")
    settle_delay: float = Field(default=1.0, description="Pause after scrolling for lazy content")
    headless: bool = Field(default=True, description="Run the browser without a window")
    validation_timeout: float = Field(default=10.0, description="Timeout when probing a source base URL")

    # Retry configuration
    max_attempts: int = Field(default=3, description="Navigation attempts per scrape")
    retry_base_delay: float = Field(default=1.0, description="Backoff base in seconds (doubled per attempt)")
    retry_jitter_ms: int = Field(default=1000, description="Maximum +/- jitter added to each backoff")

    # Extraction
    max_listings_per_page: int = Field(default=10, description="Candidate elements examined per page")
    default_currency: str = Field(default="USD", description="Currency when the price text has no symbol")

    # Rate limiting
    rate_limit_window: int = Field(default=60, description="Fixed rate-limit window in seconds")
    rate_limit_max_requests: Optional[int] = Field(
        default=None,
        description="Requests allowed per window; derived from the source interval when unset",
    )
    sequential_dispatch: bool = Field(
        default=False,
        description="Run sources one after another, pausing for each source's interval",
    )

    # Cache
    redis_url: Optional[str] = Field(default=None, description="Redis URL; in-memory cache when unset")
    search_cache_ttl: int = Field(default=900, description="Search result cache TTL in seconds")

    # Health monitoring
    success_rate_threshold: float = Field(default=80.0, description="Below this percentage is a warning")
    response_time_threshold: float = Field(default=10000.0, description="Above this many ms is a warning")
    error_count_threshold: int = Field(default=5, description="Above this error count is a warning")
    stale_after: int = Field(default=1800, description="Seconds without events before status is unknown")
    health_check_interval: float = Field(default=300.0, description="Periodic health sweep interval")
    metrics_ttl: int = Field(default=3600, description="Health record cache TTL in seconds")
    alert_ttl: int = Field(default=86400, description="Alert cache TTL in seconds")
    max_alerts: int = Field(default=100, description="Alerts retained in memory")

    # Search request bounds
    default_max_results: int = Field(default=50, description="Results returned when unspecified")
    hard_max_results: int = Field(default=100, description="Upper bound on requested results")
    min_query_length: int = Field(default=3, description="Shortest accepted query")
    max_query_length: int = Field(default=500, description="Longest accepted query")

    # Environment
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    allow_synthetic_fallback: bool = Field(
        default=False,
        description="Return synthetic listings when a scrape fails (never in production)",
    )

    # Sources and logging
    sources_file: str = Field(default="config/sources.yaml", description="Source profile YAML file")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator('navigation_timeout', 'selector_timeout', 'validation_timeout', 'health_check_interval')
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError(f"timeout must be positive, got: {v}")
        return v

    @field_validator('max_attempts', 'max_listings_per_page', 'rate_limit_window', 'max_alerts')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @field_validator('rate_limit_max_requests')
    @classmethod
    def validate_max_requests(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError(f"rate_limit_max_requests must be positive, got: {v}")
        return v

    @field_validator('success_rate_threshold')
    @classmethod
    def validate_success_rate(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError(f"success_rate_threshold must be within 0-100, got: {v}")
        return v

    @field_validator('default_currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if len(v) != 3:
            raise ValueError(f"default_currency must be a 3-letter code, got: {v}")
        return v.upper()

    @model_validator(mode='after')
    def check_fallback_environment(self) -> "EngineConfig":
        """Synthetic data must never be served in production."""
        if self.allow_synthetic_fallback and self.environment == "production":
            raise ValueError("allow_synthetic_fallback cannot be enabled in production")
        if not 1 <= self.default_max_results <= self.hard_max_results:
            raise ValueError(
                f"default_max_results must be within 1-{self.hard_max_results}, "
                f"got: {self.default_max_results}"
            )
        return self

    @property
    def synthetic_fallback_enabled(self) -> bool:
        return self.allow_synthetic_fallback and self.environment != "production"

    @property
    def sources_path(self) -> Path:
        return Path(self.sources_file)

    # Environment variable overrides
    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create configuration with environment variable overrides."""
        config = cls()

        env_mappings = {
            "PRICESCOUT_ENVIRONMENT": "environment",
            "PRICESCOUT_ALLOW_SYNTHETIC_FALLBACK": "allow_synthetic_fallback",
            "PRICESCOUT_REDIS_URL": "redis_url",
            "PRICESCOUT_HEADLESS": "headless",
            "PRICESCOUT_NAVIGATION_TIMEOUT": "navigation_timeout",
            "PRICESCOUT_SELECTOR_TIMEOUT": "selector_timeout",
            "PRICESCOUT_MAX_ATTEMPTS": "max_attempts",
            "PRICESCOUT_CACHE_TTL": "search_cache_ttl",
            "PRICESCOUT_SOURCES_FILE": "sources_file",
            "PRICESCOUT_LOG_LEVEL": "log_level",
        }

        values = {}
        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                values[field_name] = _coerce_env_value(
                    os.environ[env_var], cls.model_fields[field_name].annotation
                )

        if values:
            config = cls(**{**config.model_dump(), **values})
        return config


def _coerce_env_value(value: str, annotation: Any) -> Any:
    """Convert an environment string to the field's declared type."""
    if annotation is bool:
        return value.strip().lower() in ("1", "true", "yes", "on")
    if annotation is int:
        return int(value)
    if annotation is float:
        return float(value)
    return value


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[EngineConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> EngineConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Each tier can override values from lower tiers, with CLI flags
        having the highest precedence.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged EngineConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        base_config = EngineConfig(**config_dict)

        # Only override with env values that differ from defaults
        merged_dict = base_config.model_dump()
        env_dict = EngineConfig.from_env().model_dump()
        default_dict = EngineConfig().model_dump()
        for key, value in env_dict.items():
            if value != default_dict[key]:
                merged_dict[key] = value

        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = EngineConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> EngineConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
