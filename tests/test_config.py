"""
Tests for config.py.
"""
import pytest

from config import Config, CorsConfig, Environment, load_config


@pytest.fixture
def clean_env(monkeypatch):
    for var in (
        "ENVIRONMENT", "HOST", "PORT", "CORS_ORIGIN", "CORS_CREDENTIALS",
        "RATE_LIMIT_ENABLED", "RATE_LIMIT_MAX", "DB_TYPE", "OAUTH_SESSION_SECRET",
        "REQUIRED_ENV_VARS", "LOG_LEVEL", "LOG_FORMAT",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestConfigFromEnvironment:

    def test_defaults(self, clean_env):
        config = Config.from_environment()

        assert config.env == Environment.DEVELOPMENT
        assert config.is_development
        assert config.server.host == "0.0.0.0"
        assert config.server.port == 3000
        assert config.cors.origins == ["*"]
        assert config.cors.credentials is False
        assert config.rate_limit.enabled is True
        assert config.rate_limit.window_ms == 900000
        assert config.rate_limit.max_requests == 100
        assert config.database is None
        assert config.oauth is None
        assert config.required_env_vars == []

    def test_overrides(self, clean_env):
        clean_env.setenv("ENVIRONMENT", "production")
        clean_env.setenv("PORT", "8080")
        clean_env.setenv("CORS_ORIGIN", "https://a.example, https://b.example")
        clean_env.setenv("RATE_LIMIT_ENABLED", "false")
        clean_env.setenv("DB_TYPE", "postgres")
        clean_env.setenv("REQUIRED_ENV_VARS", "DB_PASSWORD,API_KEY")

        config = Config.from_environment()

        assert config.is_production
        assert config.server.port == 8080
        assert config.cors.origins == ["https://a.example", "https://b.example"]
        assert config.rate_limit.enabled is False
        assert config.database is not None and config.database.type == "postgres"
        assert config.required_env_vars == ["DB_PASSWORD", "API_KEY"]

    def test_to_dict_hides_secrets(self, clean_env):
        clean_env.setenv("OAUTH_SESSION_SECRET", "x" * 40)

        data = Config.from_environment().to_dict()

        assert data["oauth_configured"] is True
        assert "x" * 40 not in str(data)

    def test_load_config_reads_dotenv(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("PORT=4321\n")

        config = load_config(str(env_file))
        clean_env.delenv("PORT", raising=False)

        assert config.server.port == 4321


class TestCorsOrigin:

    @pytest.mark.parametrize("origins,request_origin,expected", [
        (["*"], "https://x.example", "*"),
        ([], None, "*"),
        (["https://a.example"], "https://x.example", "https://a.example"),
        (["https://a.example", "https://b.example"], "https://b.example", "https://b.example"),
        (["https://a.example", "https://b.example"], "https://x.example", "https://a.example"),
        (["https://a.example", "https://b.example"], None, "https://a.example"),
    ])
    def test_allow_origin_for(self, origins, request_origin, expected):
        assert CorsConfig(origins=origins).allow_origin_for(request_origin) == expected
