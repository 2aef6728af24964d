"""
Operix - Configuration Validation

Validates the assembled Config before the application starts:
- Field-level rules (required, type, range, length, allowed values)
- Environment variable checking
- Cross-field warnings (e.g. wildcard CORS with credentials)

Every problem is collected into one ValidationResult so startup can
report them all at once.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Type,
)

from core.errors import ErrorContext, OperixConfigError

if TYPE_CHECKING:
    from config import Config


class ValidationLevel(Enum):
    """Validation result severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ValidationIssue:
    """Single validation issue."""

    level: ValidationLevel
    message: str
    field: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    valid: bool = True
    issues: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    config_name: Optional[str] = None

    def add_issue(
        self,
        level: ValidationLevel,
        message: str,
        **kwargs: Any,
    ) -> None:
        """Add a validation issue."""
        issue = ValidationIssue(level=level, message=message, **kwargs)
        if level in (ValidationLevel.ERROR, ValidationLevel.CRITICAL):
            self.issues.append(issue)
            self.valid = False
        else:
            self.warnings.append(issue)

    def add_error(self, message: str, **kwargs: Any) -> None:
        """Add an error issue."""
        self.add_issue(ValidationLevel.ERROR, message, **kwargs)

    def add_warning(self, message: str, **kwargs: Any) -> None:
        """Add a warning issue."""
        self.add_issue(ValidationLevel.WARNING, message, **kwargs)

    def merge(self, other: "ValidationResult") -> None:
        """Merge another validation result."""
        self.issues.extend(other.issues)
        self.warnings.extend(other.warnings)
        if not other.valid:
            self.valid = False

    @property
    def error_messages(self) -> List[str]:
        return [issue.message for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "config_name": self.config_name,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
        }

    def raise_if_invalid(self) -> None:
        """Raise OperixConfigError listing every issue if validation failed."""
        if not self.valid:
            raise OperixConfigError(
                message=f"Configuration validation failed: {'; '.join(self.error_messages)}",
                issues=self.error_messages,
                context=ErrorContext.from_current_span(
                    operation="config_validation",
                    component=self.config_name or "config",
                ),
            )


@dataclass
class FieldValidator:
    """Validator for a single configuration field."""

    name: str
    required: bool = True
    field_type: Optional[Type] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = None
    default: Any = None
    env_var: Optional[str] = None

    def validate(self, value: Any, result: ValidationResult) -> Any:
        """Validate a field value and return the validated/coerced value."""
        if value is None or value == "":
            if self.env_var:
                value = os.environ.get(self.env_var) or None

            if value is None and self.default is not None:
                return self.default

            if value is None and self.required:
                result.add_error(
                    f"Required field '{self.name}' is missing",
                    field=self.name,
                    suggestion=f"Set the {self.env_var} environment variable" if self.env_var else None,
                )
                return None

            if value is None:
                return None

        if self.field_type:
            try:
                if self.field_type == bool and isinstance(value, str):
                    value = value.lower() in ("true", "1", "yes", "on")
                elif not isinstance(value, self.field_type):
                    value = self.field_type(value)
            except (ValueError, TypeError):
                result.add_error(
                    f"Field '{self.name}' has invalid type",
                    field=self.name,
                    expected=self.field_type.__name__,
                    actual=type(value).__name__,
                )
                return value

        if self.min_value is not None and value < self.min_value:
            result.add_error(
                f"Field '{self.name}' is below minimum value",
                field=self.name,
                expected=f">= {self.min_value}",
                actual=str(value),
            )

        if self.max_value is not None and value > self.max_value:
            result.add_error(
                f"Field '{self.name}' exceeds maximum value",
                field=self.name,
                expected=f"<= {self.max_value}",
                actual=str(value),
            )

        if self.min_length is not None and len(value) < self.min_length:
            result.add_error(
                f"Field '{self.name}' must be at least {self.min_length} characters long",
                field=self.name,
                expected=f"length >= {self.min_length}",
                actual=f"length {len(value)}",
            )

        return value


class ConfigValidator:
    """
    Field-by-field configuration validator.

    Usage:
        validator = ConfigValidator("ServerConfig")
        validator.add_field("host", required=True, field_type=str)
        validator.add_field("port", field_type=int, min_value=1, max_value=65535)

        result = validator.validate_object(config.server)
        result.raise_if_invalid()
    """

    def __init__(self, name: str):
        self.name = name
        self._fields: Dict[str, FieldValidator] = {}

    def add_field(self, name: str, **options: Any) -> "ConfigValidator":
        """Add a field validator."""
        self._fields[name] = FieldValidator(name=name, **options)
        return self

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        """Validate a configuration dictionary."""
        result = ValidationResult(valid=True, config_name=self.name)
        for field_name, validator in self._fields.items():
            validator.validate(config.get(field_name), result)
        return result

    def validate_object(self, obj: Any) -> ValidationResult:
        """Validate a dataclass or object with attributes."""
        return self.validate({name: getattr(obj, name, None) for name in self._fields})


# =============================================================================
# Pre-built validators
# =============================================================================


def create_server_validator() -> ConfigValidator:
    """Create validator for the HTTP server configuration."""
    return (
        ConfigValidator("ServerConfig")
        .add_field("host", field_type=str)
        .add_field("port", field_type=int, min_value=0, max_value=65535)
        .add_field("request_timeout", field_type=float, min_value=0.001)
        .add_field("max_body_bytes", field_type=int, min_value=0)
        .add_field("max_header_bytes", field_type=int, min_value=1024)
    )


def create_database_validator() -> ConfigValidator:
    """Create validator for database configuration."""
    return (
        ConfigValidator("DatabaseConfig")
        .add_field("host", field_type=str, default="localhost")
        .add_field("port", field_type=int, min_value=1, max_value=65535, default=5432)
        .add_field("name", field_type=str, env_var="DB_NAME")
        .add_field("user", field_type=str, env_var="DB_USER")
        .add_field("password", field_type=str, env_var="DB_PASSWORD")
    )


def create_oauth_validator() -> ConfigValidator:
    """Create validator for the OAuth session settings."""
    return (
        ConfigValidator("OAuthConfig")
        .add_field("session_secret", field_type=str, min_length=32, env_var="OAUTH_SESSION_SECRET")
    )


def validate_environment(required: Iterable[str]) -> ValidationResult:
    """Check that every named environment variable is set and non-empty."""
    result = ValidationResult(valid=True, config_name="environment")
    for var_name in required:
        if not os.environ.get(var_name):
            result.add_error(
                f"Required environment variable '{var_name}' is not set",
                field=var_name,
            )
    return result


def validate_app_config(config: "Config") -> ValidationResult:
    """
    Validate the full application configuration.

    Errors block startup; warnings are reported but tolerated.
    """
    result = ValidationResult(valid=True, config_name="Config")

    result.merge(create_server_validator().validate_object(config.server))

    if config.database is not None:
        result.merge(create_database_validator().validate_object(config.database))

    if config.oauth is not None:
        result.merge(create_oauth_validator().validate_object(config.oauth))

    result.merge(validate_environment(config.required_env_vars))

    if not config.cors.origins:
        result.add_error("At least one CORS origin must be configured", field="cors.origins")
    elif "*" in config.cors.origins and config.cors.credentials:
        result.add_warning(
            "Wildcard CORS origin combined with credentials is rejected by browsers",
            field="cors",
            suggestion="List explicit origins in CORS_ORIGIN",
        )

    if config.rate_limit.enabled and (
        config.rate_limit.max_requests <= 0 or config.rate_limit.window_ms <= 0
    ):
        result.add_warning(
            "Rate limiting is enabled with a non-positive limit or window; it will reject every request",
            field="rate_limit",
        )

    return result
