"""
Tests for core/config_validator.py.
"""
import pytest

from config import CorsConfig, DatabaseConfig, OAuthConfig, RateLimitConfig, ServerConfig
from core.config_validator import (
    ConfigValidator,
    ValidationLevel,
    ValidationResult,
    create_server_validator,
    validate_app_config,
    validate_environment,
)
from core.errors import OperixConfigError


class TestValidationResult:

    def test_errors_invalidate_warnings_do_not(self):
        result = ValidationResult()
        result.add_warning("heads up")
        assert result.valid

        result.add_error("broken", field="port")
        assert not result.valid
        assert result.error_messages == ["broken"]
        assert result.warnings[0].level == ValidationLevel.WARNING

    def test_merge(self):
        first = ValidationResult()
        second = ValidationResult()
        second.add_error("bad")

        first.merge(second)
        assert not first.valid
        assert first.error_messages == ["bad"]

    def test_raise_if_invalid_lists_every_issue(self):
        result = ValidationResult(config_name="Test")
        result.add_error("first")
        result.add_error("second")

        with pytest.raises(OperixConfigError) as exc_info:
            result.raise_if_invalid()

        assert exc_info.value.issues == ["first", "second"]

    def test_raise_if_invalid_passes_when_valid(self):
        ValidationResult().raise_if_invalid()


class TestConfigValidator:

    def test_required_and_empty(self):
        validator = ConfigValidator("X").add_field("name", field_type=str)

        assert not validator.validate({}).valid
        assert not validator.validate({"name": ""}).valid
        assert validator.validate({"name": "ok"}).valid

    def test_range_and_length(self):
        validator = (
            ConfigValidator("X")
            .add_field("port", field_type=int, min_value=1, max_value=65535)
            .add_field("secret", field_type=str, min_length=4)
        )

        result = validator.validate({"port": 70000, "secret": "abc"})
        assert len(result.issues) == 2

    def test_type_coercion_failure(self):
        validator = ConfigValidator("X").add_field("port", field_type=int)
        result = validator.validate({"port": "eighty"})

        assert not result.valid
        assert result.issues[0].expected == "int"

    def test_bounds_and_min_length(self):
        validator = (
            ConfigValidator("X")
            .add_field("port", field_type=int, min_value=1, max_value=65535)
            .add_field("secret", field_type=str, min_length=8)
        )
        result = validator.validate({"port": 70000, "secret": "short"})

        assert [issue.field for issue in result.issues] == ["port", "secret"]

    def test_env_var_fallback(self, monkeypatch):
        monkeypatch.setenv("OPERIX_TEST_VALUE", "from-env")
        validator = ConfigValidator("X").add_field("value", env_var="OPERIX_TEST_VALUE")

        assert validator.validate({}).valid

    def test_server_validator_on_object(self):
        ok = ServerConfig(host="127.0.0.1", port=8080)
        bad = ServerConfig(host="127.0.0.1", port=70000)

        assert create_server_validator().validate_object(ok).valid
        assert not create_server_validator().validate_object(bad).valid


class TestEnvironmentValidation:

    def test_missing_variables_reported(self, monkeypatch):
        monkeypatch.setenv("OPERIX_PRESENT", "1")
        monkeypatch.delenv("OPERIX_ABSENT", raising=False)

        result = validate_environment(["OPERIX_PRESENT", "OPERIX_ABSENT"])

        assert not result.valid
        assert [issue.field for issue in result.issues] == ["OPERIX_ABSENT"]

    def test_empty_value_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("OPERIX_EMPTY", "")
        assert not validate_environment(["OPERIX_EMPTY"]).valid


class TestAppConfigValidation:

    def test_default_test_config_is_valid(self, app_config):
        assert validate_app_config(app_config).valid

    def test_required_env_vars_checked(self, app_config, monkeypatch):
        monkeypatch.delenv("OPERIX_MUST_EXIST", raising=False)
        app_config.required_env_vars = ["OPERIX_MUST_EXIST"]

        result = validate_app_config(app_config)
        assert not result.valid

    def test_wildcard_with_credentials_warns(self, app_config):
        app_config.cors = CorsConfig(origins=["*"], credentials=True)

        result = validate_app_config(app_config)
        assert result.valid
        assert any(w.field == "cors" for w in result.warnings)

    def test_no_origins_is_an_error(self, app_config):
        app_config.cors = CorsConfig(origins=[])

        assert not validate_app_config(app_config).valid

    def test_zero_rate_limit_warns(self, app_config):
        app_config.rate_limit = RateLimitConfig(enabled=True, window_ms=1000, max_requests=0)

        result = validate_app_config(app_config)
        assert any(w.field == "rate_limit" for w in result.warnings)

    def test_short_oauth_secret_rejected(self, app_config):
        app_config.oauth = OAuthConfig(session_secret="too-short", redirect_uri="")

        result = validate_app_config(app_config)
        assert any(issue.field == "session_secret" for issue in result.issues)

    def test_database_requires_credentials(self, app_config, monkeypatch):
        for var in ("DB_NAME", "DB_USER", "DB_PASSWORD"):
            monkeypatch.delenv(var, raising=False)
        app_config.database = DatabaseConfig(type="postgres", host="db", port=5432, name="", user="", password="")

        result = validate_app_config(app_config)
        assert {issue.field for issue in result.issues} == {"name", "user", "password"}
