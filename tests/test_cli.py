"""
Tests for the typer CLI surface: input validation and exit codes.
"""
import json

import pytest
from typer.testing import CliRunner

from cli import main as cli_main
from cli.main import app
from conftest import FakeRunner
from core.services import runtime

cli = CliRunner()


@pytest.fixture
def scripted_gcloud(monkeypatch, tmp_path):
    """Routes every CLI session to a FakeRunner with an authenticated account."""

    monkeypatch.chdir(tmp_path)
    for name, value in {
        "KEYSMITH_KEY_DIR": str(tmp_path / "keys"),
        "KEYSMITH_OUTPUT_DIR": str(tmp_path / "out"),
        "KEYSMITH_LOG_DIR": str(tmp_path / "logs"),
        "KEYSMITH_RETRY_BASE_DELAY_SECONDS": "0",
        "KEYSMITH_RETRY_JITTER_SECONDS": "0",
    }.items():
        monkeypatch.setenv(name, value)

    fake = FakeRunner()
    fake.on("auth list", stdout="ops@example.com\n")
    real_build_client = runtime.build_client
    monkeypatch.setattr(runtime, "build_client", lambda settings: real_build_client(settings, fake))
    return fake


def test_plan_workflows_lists_every_workflow():
    result = cli.invoke(app, ["plan", "workflows"])

    assert result.exit_code == 0
    for name in ("gemini-create", "gemini-keys", "gemini-delete", "vertex-provision", "vertex-create"):
        assert name in result.output


def test_invalid_plan_exits_with_code_2(tmp_path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps({"steps": [{"workflow": "gemini-explode"}]}), encoding="utf-8")

    result = cli.invoke(app, ["--non-interactive", "plan", "run", str(plan)])

    assert result.exit_code == 2
    assert "Invalid plan" in result.output


def test_plan_with_bad_params_exits_with_code_2(tmp_path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([{"workflow": "gemini-create", "params": {"count": -1}}]), encoding="utf-8")

    result = cli.invoke(app, ["--non-interactive", "plan", "run", str(plan)])

    assert result.exit_code == 2


def test_non_interactive_delete_requires_a_selection():
    result = cli.invoke(app, ["--non-interactive", "gemini", "delete"])

    assert result.exit_code == 2


def test_config_set_rejects_unknown_field():
    result = cli.invoke(app, ["config", "set", "no_such_field", "x"])

    assert result.exit_code == 2


def test_missing_gcloud_exits_with_code_1(scripted_gcloud):
    scripted_gcloud.binary_present = False

    result = cli.invoke(app, ["--non-interactive", "gemini", "keys", "--project", "p1"])

    assert result.exit_code == 1
    assert "Fatal:" in result.output
    assert scripted_gcloud.calls == []


def test_unauthenticated_gcloud_exits_with_code_1(scripted_gcloud):
    scripted_gcloud.on("auth list", stdout="")

    result = cli.invoke(app, ["--non-interactive", "gemini", "keys", "--project", "p1"])

    assert result.exit_code == 1
    assert "gcloud auth login" in result.output


def test_interrupt_exits_with_code_130(scripted_gcloud, monkeypatch):
    async def interrupted(client):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli_main, "check_environment", interrupted)

    result = cli.invoke(app, ["--non-interactive", "gemini", "keys", "--project", "p1"])

    assert result.exit_code == 130
    assert "Interrupted" in result.output


def test_failed_project_listing_exits_with_code_1(scripted_gcloud):
    scripted_gcloud.on("projectId!~^sys-", exit_code=1, stderr="ERROR: (gcloud.projects.list) Internal error")

    result = cli.invoke(app, ["--non-interactive", "gemini", "keys", "--all"])

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Internal" in result.output


def test_non_interactive_keys_run_exits_with_code_0(scripted_gcloud):
    result = cli.invoke(app, ["--non-interactive", "gemini", "keys", "--project", "p1"])

    assert result.exit_code == 0
    assert scripted_gcloud.calls_matching("api-keys create") == []
