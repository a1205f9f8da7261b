"""
Tests for the gcloud runner and client: failure classification, command
construction and the quota fallback chain.
"""
import json

import pytest

from adapters.gcloud_runner import TIMEOUT_EXIT_CODE, GcloudRunner, classify_stderr
from adapters.gcloud_client import policy_has_binding
from core.config import AppSettings
from core.domain.errors import RemoteCommandError, ResponseParseError
from core.domain.models import FailureKind, QuotaSource


@pytest.mark.parametrize(
    "stderr, kind",
    [
        ("ERROR: (gcloud.projects.create) RESOURCE_EXHAUSTED: Quota exceeded", FailureKind.RATE_LIMITED),
        ("ERROR: PERMISSION_DENIED: The caller does not have permission", FailureKind.PERMISSION_DENIED),
        ("ERROR: ALREADY_EXISTS: Requested entity already exists", FailureKind.ALREADY_EXISTS),
        ("ERROR: NOT_FOUND: project not found", FailureKind.NOT_FOUND),
        ("ERROR: (gcloud) Invalid choice: 'foo'", FailureKind.INVALID_ARGUMENT),
        ("ERROR: connection reset by peer", FailureKind.UNKNOWN),
        ("ERROR: HTTPError 403: The caller does not own this project", FailureKind.PERMISSION_DENIED),
        ("ERROR: (gcloud.services.enable) code=409, already enabling", FailureKind.ALREADY_EXISTS),
        ("ERROR: status: 404", FailureKind.NOT_FOUND),
        ("ERROR: Internal error for gemini-api-1760404011-1, try again", FailureKind.UNKNOWN),
        ("ERROR: backend unavailable for vertex-a4031f", FailureKind.UNKNOWN),
        ("ERROR: deadline exceeded on vertex-40912c-403", FailureKind.UNKNOWN),
        ("", FailureKind.UNKNOWN),
    ],
)
def test_classify_stderr(stderr, kind):
    assert classify_stderr(stderr) is kind


def test_policy_has_binding():
    policy = json.dumps(
        {"bindings": [{"role": "roles/aiplatform.user", "members": ["serviceAccount:sa@p.iam.gserviceaccount.com"]}]}
    )

    assert policy_has_binding(policy, "serviceAccount:sa@p.iam.gserviceaccount.com", "roles/aiplatform.user")
    assert not policy_has_binding(policy, "serviceAccount:sa@p.iam.gserviceaccount.com", "roles/aiplatform.admin")
    assert not policy_has_binding("not json", "user:x", "roles/owner")


class TestGcloudClient:
    @pytest.mark.asyncio
    async def test_create_api_key_without_key_string_is_a_parse_error(self, make_context, runner):
        runner.on("api-keys create", stdout=json.dumps({"done": True, "response": {}}))

        with pytest.raises(ResponseParseError):
            await make_context().client.create_api_key("p1")

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_up_to_the_limit(self, make_context, runner, settings):
        runner.on("projects create", exit_code=1, stderr="ERROR: 429 Too Many Requests")

        with pytest.raises(RemoteCommandError) as excinfo:
            await make_context().client.create_project("p1")

        assert excinfo.value.kind is FailureKind.RATE_LIMITED
        assert len(runner.calls_matching("projects create p1")) == settings.max_retry_attempts

    @pytest.mark.asyncio
    async def test_numeric_project_id_does_not_hide_a_transient_failure(self, make_context, runner, settings):
        project_id = "gemini-api-1760404011-1"
        runner.on("projects create", exit_code=1, stderr=f"ERROR: Internal error creating {project_id}")

        with pytest.raises(RemoteCommandError) as excinfo:
            await make_context().client.create_project(project_id)

        assert excinfo.value.kind is FailureKind.UNKNOWN
        assert len(runner.calls_matching("projects create", project_id)) == settings.max_retry_attempts

    @pytest.mark.asyncio
    async def test_unset_current_project_is_none(self, make_context, runner):
        runner.on("config get-value project", stdout="(unset)\n")

        assert await make_context().client.current_project() is None

    @pytest.mark.asyncio
    async def test_billing_accounts_skip_malformed_entries(self, make_context, runner):
        runner.on(
            "billing accounts list",
            stdout=json.dumps(
                [
                    {"name": "billingAccounts/AAA-111", "displayName": "Main", "open": True},
                    {"displayName": "no name"},
                ]
            ),
        )

        accounts = await make_context().client.billing_accounts()

        assert [a.account_id for a in accounts] == ["AAA-111"]
        assert accounts[0].display_name == "Main"

    @pytest.mark.asyncio
    async def test_quota_falls_back_to_alpha(self, make_context, runner):
        runner.on("services quota list", exit_code=2, stderr="ERROR: Invalid choice: 'quota'")
        runner.on(
            "alpha services quota list",
            stdout=json.dumps([{"quotaBuckets": [{"effectiveLimit": {"INT64": "30"}}]}]),
        )

        check = await make_context().client.project_create_quota("home")

        assert check.source is QuotaSource.ALPHA
        assert check.limit == 30

    @pytest.mark.asyncio
    async def test_quota_unavailable_keeps_last_error_line(self, make_context, runner):
        runner.on("services quota list", exit_code=1, stderr="WARNING: x\nERROR: quota API disabled")

        check = await make_context().client.project_create_quota("home")

        assert check.source is QuotaSource.UNAVAILABLE
        assert check.limit is None
        assert check.detail == "ERROR: quota API disabled"


class TestGcloudRunner:
    @pytest.mark.asyncio
    async def test_captures_output_and_exit_code(self):
        runner = GcloudRunner(AppSettings(_env_file=None, gcloud_binary="sh"))

        result = await runner.invoke(["-c", "echo out; echo 'PERMISSION_DENIED' >&2; exit 3"])

        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.failure_kind is FailureKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_prompts_are_disabled_for_every_call(self):
        runner = GcloudRunner(AppSettings(_env_file=None, gcloud_binary="sh"))

        result = await runner.invoke(["-c", "echo $CLOUDSDK_CORE_DISABLE_PROMPTS"])

        assert result.ok
        assert result.stdout.strip() == "1"

    @pytest.mark.asyncio
    async def test_timeout_is_reported_as_a_result(self):
        runner = GcloudRunner(AppSettings(_env_file=None, gcloud_binary="sh", command_timeout_seconds=0.2))

        result = await runner.invoke(["-c", "sleep 5"])

        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.failure_kind is FailureKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_missing_binary_is_reported_as_a_result(self):
        runner = GcloudRunner(AppSettings(_env_file=None, gcloud_binary="definitely-not-gcloud-xyz"))

        assert runner.available() is False
        result = await runner.invoke(["version"])
        assert result.exit_code == 127
