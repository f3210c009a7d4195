"""Settings for the reliability pipeline.

Automatically reads from environment variables (or a .env file); just
instantiate ReliabilitySettings().

Environment variables:
  CACHE_MEMORY_CAPACITY     — Tier-1 entries before LRU eviction (default: 100)
  CACHE_MEMORY_TTL          — Tier-1 TTL in seconds (default: 900)
  CACHE_TTL_CURATED         — Tier-2 TTL for curated results (default: 7 days)
  CACHE_TTL_COMMUNITY       — Tier-2 TTL for community results (default: 24 h)
  CACHE_TTL_GENERATED       — Tier-2 TTL for generated results (default: 15 min)
  MIN_CONFIDENCE            — Discovery acceptance threshold (default: 0.3)
  SUCCESS_RATE_ALPHA        — EMA smoothing factor for success_rate (default: 0.1)
  REPAIR_CONFIDENCE_PENALTY — Confidence deducted from repaired results (default: 0.1)
  CATALOGUE_URL             — Community catalogue base URL; unset disables it
  CATALOGUE_TIMEOUT         — Seconds per catalogue query (default: 3.0)
  CATALOGUE_MIN_INTERVAL    — Minimum seconds between catalogue queries (default: 1.0)
  CATALOGUE_LIMIT           — Templates requested per query (default: 5)
  POSTGRES_DSN              — Tier-2 Postgres store; takes precedence over CACHE_DB_PATH
  CACHE_DB_PATH             — Tier-2 SQLite file; unset (and no DSN) means memory only
  STATS_DB_PATH             — SQLite file for template statistics; unset keeps them in memory
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_reliability.knowledge.templates import TemplateSource


class ReliabilitySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    cache_capacity: int = Field(default=100, ge=1, validation_alias="CACHE_MEMORY_CAPACITY")
    memory_ttl: int = Field(default=15 * 60, gt=0, validation_alias="CACHE_MEMORY_TTL")
    ttl_curated: int = Field(default=7 * 24 * 3600, gt=0, validation_alias="CACHE_TTL_CURATED")
    ttl_community: int = Field(default=24 * 3600, gt=0, validation_alias="CACHE_TTL_COMMUNITY")
    ttl_generated: int = Field(default=15 * 60, gt=0, validation_alias="CACHE_TTL_GENERATED")

    min_confidence: float = Field(default=0.3, validation_alias="MIN_CONFIDENCE")
    success_rate_alpha: float = Field(default=0.1, validation_alias="SUCCESS_RATE_ALPHA")
    repair_penalty: float = Field(default=0.1, validation_alias="REPAIR_CONFIDENCE_PENALTY")

    catalogue_url: str | None = Field(default=None, validation_alias="CATALOGUE_URL")
    catalogue_timeout: float = Field(default=3.0, gt=0, validation_alias="CATALOGUE_TIMEOUT")
    catalogue_min_interval: float = Field(default=1.0, ge=0, validation_alias="CATALOGUE_MIN_INTERVAL")
    catalogue_limit: int = Field(default=5, ge=1, validation_alias="CATALOGUE_LIMIT")

    postgres_dsn: str | None = Field(default=None, validation_alias="POSTGRES_DSN", repr=False)
    cache_db_path: str | None = Field(default=None, validation_alias="CACHE_DB_PATH")
    stats_db_path: str | None = Field(default=None, validation_alias="STATS_DB_PATH")

    @field_validator("catalogue_url", "postgres_dsn", "cache_db_path", "stats_db_path", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        if not v:
            return None
        return str(v)

    @field_validator("min_confidence", "success_rate_alpha", "repair_penalty")
    @classmethod
    def clamp_unit_interval(cls, v: float) -> float:
        return max(0.0, min(1.0, v))

    @model_validator(mode="after")
    def ttls_ordered_by_volatility(self) -> ReliabilitySettings:
        if not self.ttl_curated > self.ttl_community > self.ttl_generated:
            raise ValueError(
                "cache TTLs must satisfy CACHE_TTL_CURATED > CACHE_TTL_COMMUNITY > CACHE_TTL_GENERATED, got "
                f"{self.ttl_curated} / {self.ttl_community} / {self.ttl_generated}"
            )
        return self

    @property
    def source_ttls(self) -> dict[TemplateSource, int]:
        return {
            TemplateSource.CURATED: self.ttl_curated,
            TemplateSource.COMMUNITY: self.ttl_community,
            TemplateSource.GENERATED: self.ttl_generated,
        }

    @classmethod
    def from_env(cls) -> ReliabilitySettings:
        return cls()
