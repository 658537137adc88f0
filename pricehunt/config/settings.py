"""PriceHunt configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _float_env(var_name: str, default: float) -> float:
    raw = os.getenv(var_name, "").strip()
    return float(raw) if raw else default


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name, "").strip()
    return int(raw) if raw else default


class VertexConfig(BaseModel):
    """Vertex AI configuration for last-resort escalation."""

    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    flash_model: str = "gemini-2.5-flash"
    max_markup_chars: int = 100_000
    min_markup_chars: int = 1_000


class HealthConfig(BaseModel):
    """Circuit breaker thresholds and backoff schedule."""

    consecutive_failure_threshold: int = 3
    min_samples_for_decision: int = 3
    success_rate_threshold: float = 0.2
    max_samples: int = 20
    initial_backoff_s: float = 60.0
    backoff_multiplier: float = 2.0
    max_backoff_s: float = 3600.0
    empty_result_is_failure: bool = True

    @field_validator("max_samples")
    @classmethod
    def _validate_max_samples(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_samples must be >= 1")
        return value


class ExtractionConfig(BaseModel):
    """Tier chain limits, validation bounds and confidence weights."""

    max_candidates: int = 15
    min_confidence: float = 0.5
    enough_candidates: int = 5
    min_name_length: int = 3
    max_name_length: int = 150
    min_price: float = 1.0
    max_price: float = 50_000.0
    max_original_price_ratio: float = 3.0
    structured_confidence: float = 0.95
    embedded_state_confidence: float = 0.85
    name_bonus: float = 0.3
    price_bonus: float = 0.3
    image_bonus: float = 0.2
    url_bonus: float = 0.2
    learn_threshold: float = 0.8
    selector_eviction_misses: int = 3
    fingerprint_depth: int = 10

    @field_validator("min_confidence", "learn_threshold")
    @classmethod
    def _validate_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("confidence thresholds must lie within [0, 1]")
        return value


class TimeoutConfig(BaseModel):
    """Per-tier timeouts, in seconds."""

    native_api_s: float = Field(default_factory=lambda: _float_env("PRICEHUNT_API_TIMEOUT_S", 4.0))
    static_fetch_s: float = Field(
        default_factory=lambda: _float_env("PRICEHUNT_STATIC_TIMEOUT_S", 4.0)
    )
    primary_render_s: float = Field(
        default_factory=lambda: _float_env("PRICEHUNT_RENDER_TIMEOUT_S", 12.0)
    )
    alternate_render_s: float = Field(
        default_factory=lambda: _float_env("PRICEHUNT_ALT_RENDER_TIMEOUT_S", 8.0)
    )
    escalation_s: float = Field(
        default_factory=lambda: _float_env("PRICEHUNT_ESCALATION_TIMEOUT_S", 15.0)
    )


class BrowserConfig(BaseModel):
    """Rendering engine configuration."""

    headless: bool = True
    viewport_width: int = 412
    viewport_height: int = 915
    user_agent: str | None = (
        "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
    )
    max_concurrent_renders: int = Field(
        default_factory=lambda: _int_env("PRICEHUNT_MAX_CONCURRENT_RENDERS", 4),
        validate_default=True,
    )
    settle_ms: int = 1500

    @field_validator("max_concurrent_renders")
    @classmethod
    def _validate_max_concurrent_renders(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PRICEHUNT_MAX_CONCURRENT_RENDERS must be >= 1")
        return value


class OrchestratorConfig(BaseModel):
    """Batching and minimum-body rules for the retrieval chain."""

    batch_size: int = Field(
        default_factory=lambda: _int_env("PRICEHUNT_BATCH_SIZE", 4), validate_default=True
    )
    min_static_body_chars: int = 5_000
    native_api_confidence: float = 0.95
    cache_confidence: float = 0.5
    ai_default_confidence: float = 0.75
    # A reader that leaves events unread this long at a batch boundary is detached.
    reader_idle_s: float = 30.0

    @field_validator("batch_size")
    @classmethod
    def _validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PRICEHUNT_BATCH_SIZE must be >= 1")
        return value


class CacheConfig(BaseModel):
    """TTL and stale-while-revalidate windows for the default result cache."""

    quick_commerce_ttl_s: float = 5 * 60
    ecommerce_ttl_s: float = 15 * 60
    stale_grace_s: float = 2 * 60
    cleanup_interval_s: float = 60.0


class StorageConfig(BaseModel):
    """Durable state locations."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PRICEHUNT_DATA_DIR", "./data"))
    )
    sources_file: Path | None = Field(
        default_factory=lambda: (
            Path(os.environ["PRICEHUNT_SOURCES_FILE"])
            if os.getenv("PRICEHUNT_SOURCES_FILE")
            else None
        )
    )
    event_ledger: bool = False

    @property
    def health_dir(self) -> Path:
        return self.data_dir / "health"

    @property
    def selectors_path(self) -> Path:
        return self.data_dir / "learned_selectors.json"

    @property
    def events_dir(self) -> Path:
        return self.data_dir / "events"


class APIConfig(BaseModel):
    """API/security controls from environment."""

    api_token: str = Field(default_factory=lambda: os.getenv("PRICEHUNT_API_TOKEN", ""))
    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("PRICEHUNT_ALLOWED_ORIGINS", "")
        ),
        validate_default=True,
    )

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("PRICEHUNT_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value


class PriceHuntConfig(BaseModel):
    """Root configuration for the extraction core."""

    default_locale: str = Field(default_factory=lambda: os.getenv("PRICEHUNT_LOCALE", "560001"))
    vertex: VertexConfig = Field(default_factory=VertexConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("PRICEHUNT_LOG_LEVEL", "INFO"))
