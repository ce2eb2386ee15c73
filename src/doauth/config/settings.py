"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``DOAUTH_``, nested via ``__``)
2. YAML config file (``config_path`` / ``DOAUTH_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported ledger store engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class CacheEngine(enum.StrEnum):
    """Supported cache backends."""

    MEMORY = "memory"
    REDIS = "redis"
    DISABLED = "disabled"


class BlobStoreEngine(enum.StrEnum):
    """Supported blob store backends."""

    MEMORY = "memory"
    WALRUS = "walrus"


class KeyServerEngine(enum.StrEnum):
    """Supported decrypt oracle backends."""

    LOCAL = "local"
    HTTP = "http"


class IdentityScheme(enum.StrEnum):
    """How an item's encryption identity is derived.

    ``policy`` shares one fixed identity across the deployment, ``per_item``
    derives it from the vault id and the item nonce. A deployment must use
    exactly one scheme; items written under one cannot be read under the other.
    """

    POLICY = "policy"
    PER_ITEM = "per_item"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ServerConfig(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_SERVER__",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    request_timeout: int = 300
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Browser origins allowed to call the API",
    )


class DatabaseConfig(BaseSettings):
    """Ledger store settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Ledger store backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./doauth.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class CacheConfig(BaseSettings):
    """Ciphertext cache settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_CACHE__",
        case_sensitive=False,
    )

    engine: CacheEngine = Field(
        default=CacheEngine.MEMORY,
        description="Cache backend: memory, redis or disabled",
    )
    url: str = "redis://localhost:6379/0"
    max_connections: int = 10
    ttl_seconds: int = 300


class BlobStoreConfig(BaseSettings):
    """Blob store (Walrus publisher / aggregator) settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_BLOB__",
        case_sensitive=False,
    )

    engine: BlobStoreEngine = BlobStoreEngine.MEMORY
    publisher_url: str = "https://publisher.walrus-testnet.walrus.space"
    aggregator_url: str = "https://aggregator.walrus-testnet.walrus.space"
    epochs: int = Field(default=1, ge=1)
    deletable: bool = True
    timeout_seconds: float = 300.0
    read_after_write_attempts: int = Field(default=5, ge=1)
    read_after_write_delay_seconds: float = 2.0


class KeyServerConfig(BaseSettings):
    """Decrypt oracle settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_KEYSERVER__",
        case_sensitive=False,
    )

    engine: KeyServerEngine = KeyServerEngine.LOCAL
    url: str = "http://localhost:2024"
    token: str = ""
    master_key: str = Field(
        default="",
        description="Hex master secret for the local development key server",
    )
    threshold: int = Field(default=2, ge=1)
    timeout_seconds: float = 300.0


class IdentityConfig(BaseSettings):
    """Encryption identity derivation settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_IDENTITY__",
        case_sensitive=False,
    )

    scheme: IdentityScheme = IdentityScheme.POLICY
    package_id: str = "0x01154b902550f24ae090153ae6fbae05600cf5ee7c8a16cff95ab3e064bf13e3"
    policy_id: str = "BOWHEADWHALE-D-OAUTH_ACCESS-DATA-POLICY"


class SessionConfig(BaseSettings):
    """Session credential settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_SESSION__",
        case_sensitive=False,
    )

    default_ttl_minutes: int = Field(default=30, ge=1)
    max_ttl_minutes: int = Field(default=30 * 24 * 60, ge=1)
    package_id: str = "0x01154b902550f24ae090153ae6fbae05600cf5ee7c8a16cff95ab3e064bf13e3"


class GrantConfig(BaseSettings):
    """OAuth grant issuance settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_GRANT__",
        case_sensitive=False,
    )

    default_ttl_ms: int = Field(default=30 * 60 * 1000, ge=1)
    max_ttl_ms: int = Field(default=30 * 24 * 60 * 60 * 1000, ge=1)


class DecryptConfig(BaseSettings):
    """Caller-side retry and fan-out policy for the decrypt path."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_DECRYPT__",
        case_sensitive=False,
    )

    max_attempts: int = Field(default=2, ge=1)
    backoff_seconds: float = 1.0
    concurrency: int = Field(default=4, ge=1)


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``DOAUTH_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOAUTH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    config_path: str = ""

    server: ServerConfig = Field(default_factory=ServerConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    blob: BlobStoreConfig = Field(default_factory=BlobStoreConfig)
    keyserver: KeyServerConfig = Field(default_factory=KeyServerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    grant: GrantConfig = Field(default_factory=GrantConfig)
    decrypt: DecryptConfig = Field(default_factory=DecryptConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
