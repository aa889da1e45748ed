"""Unit tests — CLI main app."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
from typer.testing import CliRunner

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.cli.main import app
from deletion_guard.config import Settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def logging_setup(monkeypatch) -> MagicMock:
    setup = MagicMock()
    monkeypatch.setattr("deletion_guard.cli.main._setup_logging", setup)
    return setup


@pytest.fixture
def fake_client(engine, monkeypatch):
    def _build(settings) -> CascadeDeletionClient:
        return CascadeDeletionClient.from_config(
            settings.api, lambda: "test-token", transport=engine.transport()
        )

    monkeypatch.setattr("deletion_guard.cli.main._build_client", _build)
    return engine


@pytest.mark.unit
class TestMainCLI:
    def test_help_exits_zero(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_main_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert result.output is not None

    @pytest.mark.parametrize("command", ["config", "limits", "preview", "status", "active", "history"])
    def test_subcommand_help(self, command: str) -> None:
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0

    def test_config_redacts_token(self, monkeypatch) -> None:
        monkeypatch.setenv("DELETION_GUARD_API__TOKEN", "super-secret")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "super-secret" not in result.output
        assert "***" in result.output


@pytest.mark.unit
class TestEngineCommands:
    def test_limits(self, fake_client, logging_setup) -> None:
        result = runner.invoke(app, ["limits", "--token", "t"])
        assert result.exit_code == 0
        logging_setup.assert_called_once()
        assert "max_batch_size" in result.output
        assert "50" in result.output

    def test_preview(self, fake_client) -> None:
        result = runner.invoke(app, ["preview", "student", "stu-1", "--token", "t"])
        assert result.exit_code == 0
        assert "op-stu-1" in result.output
        assert "True" in result.output

    def test_preview_blocked(self, fake_client) -> None:
        fake_client.blocked.add("stu-2")
        result = runner.invoke(app, ["preview", "student", "stu-2", "--token", "t"])
        assert result.exit_code == 0
        assert "has active dependencies" in result.output

    def test_preview_json(self, fake_client) -> None:
        result = runner.invoke(app, ["preview", "student", "stu-1", "--json", "--token", "t"])
        assert result.exit_code == 0
        assert "operationId" in result.output
        assert "canProceed" in result.output

    def test_status(self, fake_client) -> None:
        fake_client.operations["op-1"] = {
            "id": "op-1",
            "entityType": "student",
            "entityId": "stu-1",
            "status": "running",
        }
        fake_client.progress["op-1"] = {
            "operationId": "op-1",
            "current": 2,
            "total": 4,
            "stage": "lessons",
            "percentage": 50,
        }
        result = runner.invoke(app, ["status", "op-1", "--token", "t"])
        assert result.exit_code == 0
        assert "running" in result.output
        assert "2/4" in result.output

    def test_status_not_found(self, fake_client) -> None:
        result = runner.invoke(app, ["status", "op-missing", "--token", "t"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_engine_error_exits_one(self, fake_client) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"code": "ENGINE_DOWN", "message": "down"})

        fake_client.handle = broken
        result = runner.invoke(app, ["limits", "--token", "t"])
        assert result.exit_code == 1
        assert "ENGINE_DOWN" in result.output

    def test_active(self, fake_client) -> None:
        fake_client.operations["op-1"] = {
            "id": "op-1",
            "entityType": "student",
            "entityId": "stu-1",
            "status": "pending",
        }
        result = runner.invoke(app, ["active", "--token", "t"])
        assert result.exit_code == 0
        assert "op-1" in result.output

    def test_history_with_filters(self, fake_client) -> None:
        fake_client.operations["op-9"] = {
            "id": "op-9",
            "entityType": "student",
            "entityId": "stu-9",
            "status": "failed",
        }
        result = runner.invoke(
            app, ["history", "--limit", "5", "--status", "failed", "--token", "t"]
        )
        assert result.exit_code == 0
        assert "op-9" in result.output
        params = fake_client.requests[-1].url.params
        assert params["limit"] == "5"
        assert params["status"] == "failed"
        assert "entityType" not in params

    def test_overrides_do_not_mutate_loaded_settings(self, fake_client, monkeypatch) -> None:
        loaded = Settings(api={"base_url": "http://engine.test/api", "retry_delay_seconds": 0})
        monkeypatch.setattr(Settings, "load", classmethod(lambda cls, config_file=None: loaded))
        seen: list[Settings] = []

        def _build(settings) -> CascadeDeletionClient:
            seen.append(settings)
            return CascadeDeletionClient.from_config(
                settings.api, lambda: settings.api.token, transport=fake_client.transport()
            )

        monkeypatch.setattr("deletion_guard.cli.main._build_client", _build)
        result = runner.invoke(
            app, ["limits", "--token", "cli-token", "--base-url", "http://other.test/api"]
        )
        assert result.exit_code == 0
        assert seen[0].api.token == "cli-token"
        assert seen[0].api.base_url == "http://other.test/api"
        assert loaded.api.token is None
        assert fake_client.requests[-1].headers["Authorization"] == "Bearer cli-token"
