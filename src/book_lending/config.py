"""Configuration management for the book lending service.

Settings are loaded from environment variables (``BOOK_LENDING_`` prefix) or a
``.env`` file and validated with Pydantic v2. The same configuration object is
shared by the HTTP app, the MCP server and the transaction engine.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LendingConfig(BaseSettings):
    """Service configuration.

    Groups:
    - Server metadata (name/version reported by /health and the MCP handshake)
    - Database location and concurrency tuning
    - Transport and HTTP settings
    - Logging and tracing
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOK_LENDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="book-lending",
        description="Service name reported to clients",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Service version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/book_lending.db"),
        description="SQLite database file path (ignored when database_url is set)",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL, e.g. postgresql+psycopg://user:pw@host/db",
    )

    max_conflict_retries: int = Field(
        default=3,
        description="How many times a create/resolve is retried after a concurrent write",
        ge=0,
        le=10,
    )

    lock_timeout_seconds: float = Field(
        default=5.0,
        description="How long a writer waits for a competing transaction (SQLite busy timeout)",
        gt=0,
        le=120,
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="stdio",
        description="MCP transport: stdio or http (Streamable HTTP)",
        pattern=r"^(stdio|http)$",
    )

    http_host: str = Field(default="127.0.0.1", description="Bind host for the MCP HTTP transport")

    http_port: int = Field(
        default=8080,
        description="Bind port for the MCP HTTP transport",
        ge=1024,
        le=65535,
    )

    api_prefix: str = Field(
        default="/api/v1",
        description="Path prefix for all HTTP routes except /health",
        pattern=r"^(/[a-z0-9_-]+)*$",
    )

    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        description="Origins allowed by the CORS middleware",
    )

    # The authenticator in front of the service verifies the session cookie and
    # forwards the member id in this header.
    identity_header: str = Field(
        default="X-Member-Id",
        description="Header carrying the verified member id",
    )

    # Profile headers let the mirror row be created the first time a member is seen
    identity_name_header: str = Field(
        default="X-Member-Name",
        description="Header carrying the verified member's display name",
    )

    identity_email_header: str = Field(
        default="X-Member-Email",
        description="Header carrying the verified member's email",
    )

    # === Logging / Tracing ===

    debug: bool = Field(default=False, description="Enable debug logging")

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    enable_tracing: bool = Field(
        default=True,
        description="Emit logfire spans for lending operations",
    )

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the path; the directory is created by the DatabaseManager."""
        return v.absolute()

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """SQLAlchemy URL, preferring an explicit database_url."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: LendingConfig | None = None


def get_config() -> LendingConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LendingConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
