"""
Tests for cli/main.py.
"""
import json

import pytest
from typer.testing import CliRunner

from cli.main import app, build_application

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Run every command from an empty directory with no app-specific variables."""
    monkeypatch.chdir(tmp_path)
    for var in ("REQUIRED_ENV_VARS", "CORS_ORIGIN", "DB_TYPE", "OAUTH_SESSION_SECRET", "PORT"):
        monkeypatch.delenv(var, raising=False)


class TestCommands:

    def test_routes(self):
        result = runner.invoke(app, ["routes"])

        assert result.exit_code == 0
        assert "/health" in result.output
        assert "3 route(s)" in result.output

    def test_modules(self):
        result = runner.invoke(app, ["modules"])

        assert result.exit_code == 0
        assert "api" in result.output

    def test_check_config_ok(self):
        result = runner.invoke(app, ["check-config"])

        assert result.exit_code == 0
        assert "Configuration OK" in result.output

    def test_check_config_missing_required_variable(self, monkeypatch):
        monkeypatch.setenv("REQUIRED_ENV_VARS", "OPERIX_CLI_MISSING")
        monkeypatch.delenv("OPERIX_CLI_MISSING", raising=False)

        result = runner.invoke(app, ["check-config"])

        assert result.exit_code == 1
        assert "Configuration invalid" in result.output

    def test_check_config_reads_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OPERIX_FROM_FILE", raising=False)
        env_file = tmp_path / "test.env"
        env_file.write_text("REQUIRED_ENV_VARS=OPERIX_FROM_FILE\nOPERIX_FROM_FILE=present\n")

        result = runner.invoke(app, ["check-config", "--env-file", str(env_file)])

        monkeypatch.delenv("OPERIX_FROM_FILE", raising=False)
        monkeypatch.delenv("REQUIRED_ENV_VARS", raising=False)
        assert result.exit_code == 0

    def test_missing_env_file(self, tmp_path):
        result = runner.invoke(app, ["routes", "--env-file", str(tmp_path / "nope.env")])
        assert result.exit_code == 1

    def test_openapi_to_file(self, tmp_path):
        output = tmp_path / "openapi.json"

        result = runner.invoke(app, ["openapi", "--output", str(output)])

        assert result.exit_code == 0
        document = json.loads(output.read_text())
        assert "/api/info" in document["paths"]


class TestBuildApplication:

    def test_default_composition(self, app_config):
        application = build_application(app_config, configure_logging=False)

        assert [m.name for m in application.middleware.get_all()] == [
            "security-headers",
            "rate-limit",
            "request-logging",
        ]
        assert application.modules.initialization_order() == ["api"]
        assert len(application.router) == 3
