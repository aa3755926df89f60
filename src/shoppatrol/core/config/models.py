"""
Pydantic configuration models for ShopPatrol.

These models provide type-safe configuration with validation for:
- Patrol session settings (credentials, concurrency, retry policy)
- Database and logging settings
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


ICHIBA_SEARCH_URL = "https://app.rakuten.co.jp/services/api/IchibaItem/Search/20170706"

# Product-name keywords that mark merchandise as a prohibited category
# (food, supplements, cosmetics, medicine, contact lenses, accounts, vouchers)
DEFAULT_RESTRICTED_KEYWORDS = [
    "食品", "飲料", "お菓子", "スイーツ", "肉", "魚", "米",
    "サプリ", "酵素", "ダイエット",
    "化粧品", "コスメ", "美容液", "ローション", "クリーム", "スキンケア", "メイク",
    "医薬品", "薬", "コンタクト", "レンズ", "治療", "メディカル",
    "アカウント", "コード", "電子マネー", "チケット",
]

_CREDENTIAL_NOISE = re.compile(r"[\s\x00-\x1f\x7f]")


def clean_credential(value: str) -> str:
    """Strip whitespace and control characters pasted along with a key."""
    return _CREDENTIAL_NOISE.sub("", value)


# =============================================================================
# Session Configuration
# =============================================================================


class SessionConfig(BaseModel):
    """Everything the orchestration core needs to run a patrol."""

    credentials: list[str] = Field(
        default_factory=list,
        description="Classification API credentials, used round-robin with jitter",
    )
    catalog_auth_token: str = Field(
        default="",
        description="Catalog API application id",
    )
    batch_size_cap: int = Field(
        default=30,
        ge=1,
        le=200,
        description="Upper bound on concurrent classification calls",
    )
    batch_multiplier: int = Field(
        default=4,
        ge=1,
        le=20,
        description="Concurrent calls per credential",
    )
    retry_limit: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first classification attempt",
    )
    request_timeout_ms: int = Field(
        default=60000,
        ge=1000,
        le=300000,
        description="Hard timeout per classification call",
    )
    backoff_base_ms: int = Field(default=500, ge=0)
    backoff_jitter_ms: int = Field(default=500, ge=0)

    classifier_url: str = Field(
        default="http://localhost:3000/api/analyze",
        description="Risk classification endpoint",
    )
    catalog_url: str = Field(
        default=ICHIBA_SEARCH_URL,
        description="Catalog search endpoint",
    )
    page_size: int = Field(default=30, ge=1, le=30)
    catalog_timeout_ms: int = Field(default=30000, ge=1000)
    catalog_retry_limit: int = Field(default=2, ge=0, le=10)
    catalog_min_interval_ms: int = Field(
        default=1000,
        ge=0,
        description="Minimum spacing between catalog requests",
    )

    max_pages: int = Field(
        default=20,
        ge=1,
        description="Page ceiling for single-target runs",
    )
    fleet_max_pages: int = Field(
        default=50,
        ge=1,
        description="Page ceiling per target in fleet runs",
    )
    checkpoint_every_pages: int = Field(default=5, ge=1)
    max_consecutive_page_failures: int = Field(
        default=3,
        ge=1,
        description="Skipped pages in a row before a target counts as failed",
    )
    batch_pause_ms: int = Field(default=10, ge=0)
    target_pause_ms: int = Field(default=500, ge=0)

    restricted_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RESTRICTED_KEYWORDS),
    )
    store_all_items: bool = Field(
        default=False,
        description="Persist every fleet item instead of risk-bearing ones only",
    )

    @field_validator("credentials", mode="before")
    @classmethod
    def split_credentials(cls, v: object) -> object:
        """Accept a comma/newline separated string as well as a list."""
        if isinstance(v, str):
            v = re.split(r"[,\n]", v)
        return v

    @field_validator("credentials")
    @classmethod
    def clean_credentials(cls, v: list[str]) -> list[str]:
        cleaned = [clean_credential(c) for c in v]
        return [c for c in cleaned if c]

    @field_validator("catalog_auth_token")
    @classmethod
    def clean_token(cls, v: str) -> str:
        return clean_credential(v)

    @property
    def batch_size(self) -> int:
        """Fan-out per batch: scales with the pool, capped."""
        return min(max(len(self.credentials), 1) * self.batch_multiplier, self.batch_size_cap)

    def require_runnable(self) -> None:
        """Fail fast when a run could not possibly succeed."""
        from .loader import ConfigError

        if not self.credentials:
            raise ConfigError("No classification credentials configured")
        if not self.catalog_auth_token:
            raise ConfigError("No catalog auth token configured")


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite:///data/shoppatrol.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=Path("logs/shoppatrol.log"),
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    data_dir: Path = Field(
        default=Path("data"),
        description="Data storage directory",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)
