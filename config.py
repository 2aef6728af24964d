"""
Operix - Configuration

Environment-driven configuration for the application core and HTTP
layer. A Config is built once at process start with load_config() and
handed to the components that need it; there is no module-level instance.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from observability.logging import LoggingConfig
from observability.tracing import TracingConfig


class Environment(Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")))
    max_body_bytes: int = field(default_factory=lambda: int(os.getenv("MAX_BODY_BYTES", str(1024 * 1024))))
    max_header_bytes: int = field(default_factory=lambda: int(os.getenv("MAX_HEADER_BYTES", str(64 * 1024))))
    shutdown_grace: float = field(default_factory=lambda: float(os.getenv("SHUTDOWN_GRACE_SECONDS", "5")))


@dataclass
class CorsConfig:
    """CORS response header configuration."""
    origins: List[str] = field(default_factory=lambda: _split_csv(os.getenv("CORS_ORIGIN", "*")))
    credentials: bool = field(default_factory=lambda: os.getenv("CORS_CREDENTIALS", "false").lower() == "true")
    allow_methods: List[str] = field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
    )
    allow_headers: List[str] = field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-Requested-With"]
    )

    def allow_origin_for(self, request_origin: Optional[str]) -> str:
        """
        Value for Access-Control-Allow-Origin.

        A single configured origin is sent as-is. With several configured
        origins the request's Origin is echoed when it is listed, otherwise
        the first configured origin is sent.
        """
        if not self.origins or "*" in self.origins:
            return "*"
        if len(self.origins) == 1:
            return self.origins[0]
        if request_origin and request_origin in self.origins:
            return request_origin
        return self.origins[0]


@dataclass
class RateLimitConfig:
    """Fixed-window rate limiting."""
    enabled: bool = field(default_factory=lambda: os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true")
    window_ms: int = field(default_factory=lambda: int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000")))
    max_requests: int = field(default_factory=lambda: int(os.getenv("RATE_LIMIT_MAX", "100")))


@dataclass
class DatabaseConfig:
    """Relational store connection settings; validated here, used by collaborators."""
    type: str = field(default_factory=lambda: os.getenv("DB_TYPE", "postgres"))
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("DB_PORT", "5432")))
    name: str = field(default_factory=lambda: os.getenv("DB_NAME", ""))
    user: str = field(default_factory=lambda: os.getenv("DB_USER", ""))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))


@dataclass
class OAuthConfig:
    """Session settings shared with the identity provider collaborator."""
    session_secret: str = field(default_factory=lambda: os.getenv("OAUTH_SESSION_SECRET", ""))
    redirect_uri: str = field(default_factory=lambda: os.getenv("OAUTH_REDIRECT_URI", ""))


def _optional_database() -> Optional[DatabaseConfig]:
    return DatabaseConfig() if os.getenv("DB_TYPE") else None


def _optional_oauth() -> Optional[OAuthConfig]:
    return OAuthConfig() if os.getenv("OAUTH_SESSION_SECRET") is not None else None


@dataclass
class Config:
    """Main configuration class combining all sub-configs."""
    env: Environment = field(default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development")))
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "operix"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    required_env_vars: List[str] = field(default_factory=lambda: _split_csv(os.getenv("REQUIRED_ENV_VARS", "")))
    startup_timeout: float = field(default_factory=lambda: float(os.getenv("STARTUP_TIMEOUT_SECONDS", "60")))
    shutdown_timeout: float = field(default_factory=lambda: float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30")))

    server: ServerConfig = field(default_factory=ServerConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    database: Optional[DatabaseConfig] = field(default_factory=_optional_database)
    oauth: Optional[OAuthConfig] = field(default_factory=_optional_oauth)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.env == Environment.DEVELOPMENT

    @classmethod
    def from_environment(cls) -> "Config":
        """Build a configuration from the current process environment."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding sensitive values)."""
        return {
            "env": self.env.value,
            "app_name": self.app_name,
            "app_version": self.app_version,
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "request_timeout": self.server.request_timeout,
                "max_body_bytes": self.server.max_body_bytes,
            },
            "cors": {
                "origins": self.cors.origins,
                "credentials": self.cors.credentials,
            },
            "rate_limit": {
                "enabled": self.rate_limit.enabled,
                "window_ms": self.rate_limit.window_ms,
                "max_requests": self.rate_limit.max_requests,
            },
            "logging": {
                "level": self.logging.level,
                "json_format": self.logging.json_format,
            },
            "database": (
                {"type": self.database.type, "host": self.database.host, "port": self.database.port}
                if self.database else None
            ),
            "oauth_configured": self.oauth is not None,
        }


def load_config(dotenv_path: Optional[str] = None, override: bool = False) -> Config:
    """Load ``.env`` (if present) into the environment and build a Config."""
    load_dotenv(dotenv_path, override=override)
    return Config.from_environment()
