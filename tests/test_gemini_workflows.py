"""
Tests for the Gemini workflows against a scripted gcloud.
"""
import json

import pytest

from conftest import StubGate
from core.domain.models import ItemState, ItemStatus, QuotaSource
from core.services.gemini_workflows import (
    DELETE_PHRASE,
    EXISTING_KEYS_FILE,
    NEW_KEYS_COMMA_FILE,
    NEW_KEYS_FILE,
    GeminiCreateRequest,
    GeminiDeleteRequest,
    GeminiKeysRequest,
    gemini_create,
    gemini_delete,
    gemini_keys,
)


def _flag(args, name):
    prefix = f"--{name}="
    return next(a.split("=", 1)[1] for a in args if a.startswith(prefix))


def _key_for_project(args):
    return json.dumps({"done": True, "response": {"keyString": f"AIza-{_flag(args, 'project')}"}})


def _existing_projects(*names):
    def stdout(args):
        project_id = _flag(args, "filter").split("=", 1)[1]
        return project_id if project_id in names else ""

    return stdout


class TestGeminiCreate:
    @pytest.mark.asyncio
    async def test_one_failed_creation_does_not_stop_the_others(self, make_context, runner, settings):
        runner.on("api-keys create", stdout=_key_for_project)
        runner.on(
            lambda a: a[:2] == ["projects", "create"] and a[2].endswith("-2"),
            exit_code=1,
            stderr="ERROR: (gcloud.projects.create) PERMISSION_DENIED: caller lacks permission",
        )

        result = await gemini_create(make_context(), GeminiCreateRequest(count=3))

        assert result.succeeded == 2
        assert result.failed == 1
        failed = next(i for i in result.items if i.status is ItemStatus.FAILED)
        assert failed.target.endswith("-2")
        assert "PERMISSION_DENIED" in failed.error
        assert len(runner.calls_matching("projects create", failed.target)) == settings.max_retry_attempts

        lines = (settings.output_dir / NEW_KEYS_FILE).read_text(encoding="utf-8").splitlines()
        comma = (settings.output_dir / NEW_KEYS_COMMA_FILE).read_text(encoding="utf-8")
        assert len(lines) == 2
        assert comma.count(",") == 1

    @pytest.mark.asyncio
    async def test_quota_limit_adjusts_the_request(self, make_context, runner):
        runner.on("config get-value project", stdout="home-project\n")
        runner.on(
            "services quota list",
            stdout=json.dumps([{"consumerQuotaLimits": [{"quotaBuckets": [{"effectiveLimit": "50"}]}]}]),
        )
        runner.on("api-keys create", stdout=_key_for_project)

        ctx = make_context(gate=StubGate(choice="adjust"))
        result = await gemini_create(ctx, GeminiCreateRequest(count=175))

        assert result.metadata["planned"] == 50
        assert result.metadata["quota"]["source"] == QuotaSource.GA.value
        assert len(result.items) == 50
        assert len(runner.calls_matching("projects create")) == 50

    @pytest.mark.asyncio
    async def test_unavailable_quota_and_decline_cancels(self, make_context, runner):
        runner.on("config get-value project", stdout="home-project\n")
        runner.on("services quota list", exit_code=1, stderr="ERROR: quota command failed")

        result = await gemini_create(make_context(gate=StubGate(confirm=False)), GeminiCreateRequest(count=2))

        assert result.cancelled is True
        assert result.items == []
        assert runner.calls_matching("projects create") == []

    @pytest.mark.asyncio
    async def test_declined_confirmation_creates_nothing(self, make_context, runner):
        result = await gemini_create(make_context(gate=StubGate(confirm=None)), GeminiCreateRequest(count=2))

        assert result.cancelled is True
        assert runner.calls_matching("projects create") == []

    @pytest.mark.asyncio
    async def test_existing_project_and_service_are_not_touched(self, make_context, runner):
        runner.on("projects list", "--filter=projectId=", stdout=lambda a: _flag(a, "filter").split("=", 1)[1])
        runner.on("services list --enabled", stdout="generativelanguage.googleapis.com")
        runner.on("api-keys create", stdout=_key_for_project)

        result = await gemini_create(make_context(), GeminiCreateRequest(count=1))

        assert result.succeeded == 1
        assert runner.calls_matching("projects create") == []
        assert runner.calls_matching("services enable") == []
        assert "project already existed" in result.items[0].notes

    @pytest.mark.asyncio
    async def test_invalid_prefix_falls_back_to_default(self, make_context, runner, settings):
        runner.on("api-keys create", stdout=_key_for_project)
        warnings = []
        ctx = make_context()
        ctx.hooks.warning = warnings.append

        result = await gemini_create(ctx, GeminiCreateRequest(count=1, prefix="Bad_Prefix"))

        assert result.items[0].target.startswith(settings.gemini_project_prefix + "-")
        assert any("invalid project prefix" in w for w in warnings)


class TestGeminiKeys:
    @pytest.mark.asyncio
    async def test_existing_key_is_reused(self, make_context, runner, settings):
        runner.on("projects list", "--filter=projectId=", stdout=_existing_projects("p1"))
        runner.on("services list --enabled", stdout="generativelanguage.googleapis.com")
        runner.on("api-keys list", stdout=json.dumps([{"name": "projects/1/locations/global/keys/k1"}]))
        runner.on("api-keys get-key-string", stdout=json.dumps({"keyString": "AIza-old"}))

        result = await gemini_keys(make_context(), GeminiKeysRequest(projects=["p1", "p1"]))

        assert result.requested == 1
        assert result.items[0].record == "AIza-old"
        assert runner.calls_matching("api-keys create") == []
        assert (settings.output_dir / EXISTING_KEYS_FILE).read_text(encoding="utf-8") == "AIza-old\n"

    @pytest.mark.asyncio
    async def test_missing_project_is_skipped(self, make_context, runner):
        runner.on("projects list", "--filter=projectId=", stdout=_existing_projects("p1"))
        runner.on("api-keys create", stdout=_key_for_project)

        result = await gemini_keys(make_context(), GeminiKeysRequest(projects=["p1", "ghost"]))

        assert result.succeeded == 1
        assert result.skipped == 1
        assert result.items[1].state is ItemState.SKIPPED

    @pytest.mark.asyncio
    async def test_all_projects_are_listed_when_none_given(self, make_context, runner):
        runner.on("projectId!~^sys-", stdout="a1\na2\n")
        runner.on("projects list", "--filter=projectId=", stdout=_existing_projects("a1", "a2"))
        runner.on("api-keys create", stdout=_key_for_project)

        result = await gemini_keys(make_context(), GeminiKeysRequest())

        assert [i.target for i in result.items] == ["a1", "a2"]
        assert sorted(result.records) == ["AIza-a1", "AIza-a2"]


class TestGeminiDelete:
    @pytest.mark.asyncio
    async def test_wrong_phrase_deletes_nothing(self, make_context, runner):
        ctx = make_context(gate=StubGate(phrase="delete-all"))

        result = await gemini_delete(ctx, GeminiDeleteRequest(projects=["p1", "p2"]))

        assert result.cancelled is True
        assert runner.calls_matching("projects delete") == []

    @pytest.mark.asyncio
    async def test_deletions_are_written_to_the_run_log(self, make_context, runner, settings):
        runner.on("projects list", "--filter=projectId=", stdout=_existing_projects("p1", "p2"))
        ctx = make_context(gate=StubGate(phrase=DELETE_PHRASE))

        result = await gemini_delete(ctx, GeminiDeleteRequest(projects=["p1", "p2", "ghost"]))

        assert result.succeeded == 2
        assert result.skipped == 1
        assert len(runner.calls_matching("projects delete")) == 2
        log_files = list(settings.log_dir.glob("project_deletion_*.log"))
        assert len(log_files) == 1
        content = log_files[0].read_text(encoding="utf-8")
        assert "DELETED p1" in content
        assert "DELETED p2" in content
        assert "SKIPPED ghost" in content

    @pytest.mark.asyncio
    async def test_failed_deletion_is_logged_and_reported(self, make_context, runner, settings):
        runner.on("projects list", "--filter=projectId=", stdout=_existing_projects("p1"))
        runner.on("projects delete p1", exit_code=1, stderr="ERROR: NOT_FOUND: project p1 not found")
        ctx = make_context(gate=StubGate(phrase=DELETE_PHRASE))

        result = await gemini_delete(ctx, GeminiDeleteRequest(projects=["p1"]))

        assert result.failed == 1
        content = next(settings.log_dir.glob("project_deletion_*.log")).read_text(encoding="utf-8")
        assert "FAILED p1" in content

    @pytest.mark.asyncio
    async def test_empty_selection_deletes_nothing(self, make_context, runner):
        runner.on("projectId!~^sys-", stdout="prod-a\nprod-b\nprod-c\n")
        ctx = make_context(gate=StubGate(phrase=DELETE_PHRASE))

        result = await gemini_delete(ctx, GeminiDeleteRequest(projects=[]))

        assert result.requested == 0
        assert result.items == []
        assert runner.calls_matching("projects list") == []
        assert runner.calls_matching("projects delete") == []
