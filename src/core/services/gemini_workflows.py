"""Gemini workflows: create projects with keys, extract keys, delete projects.

Each workflow resolves its targets, passes the operator gates, then runs
one coroutine per project through `run_items`. API keys are appended to
the line/comma files via `KeyFileWriter`; deletions are written to a
timestamped run log.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from adapters.gcloud_client import GEMINI_SERVICE
from adapters.key_writer import KeyFileWriter
from adapters.run_log import RunLog
from core.domain.errors import OperationCancelled, RemoteCommandError
from core.domain.models import ItemOutcome, ItemState, WorkflowResult
from core.log import get_logger
from core.services.quota import negotiate_quota
from core.services.runtime import ExecutionContext
from core.services.workflow_common import (
    ItemTracker,
    cancel_result,
    close_result,
    effective_prefix,
    ensure_service,
    run_items,
    sequential_project_id,
)

logger = get_logger(__name__)

NEW_KEYS_FILE = "gemini_keys.txt"
NEW_KEYS_COMMA_FILE = "gemini_keys_comma.txt"
EXISTING_KEYS_FILE = "gemini_keys_existing.txt"
EXISTING_KEYS_COMMA_FILE = "gemini_keys_existing_comma.txt"
DELETE_PHRASE = "DELETE-ALL"


class GeminiCreateRequest(BaseModel):
    count: int | None = Field(default=None, ge=1, description="Proyectos a crear (por defecto, la configuración).")
    prefix: str | None = Field(default=None, description="Prefijo de los ids de proyecto.")


class GeminiKeysRequest(BaseModel):
    projects: list[str] | None = Field(
        default=None,
        description="Proyectos existentes; None = todos los proyectos visibles (excepto sys-*).",
    )


class GeminiDeleteRequest(BaseModel):
    projects: list[str] | None = Field(
        default=None,
        description="Proyectos a borrar; None = todos los proyectos visibles (excepto sys-*).",
    )


def _writer(ctx: ExecutionContext, line_name: str, comma_name: str) -> KeyFileWriter:
    output_dir = ctx.settings.output_dir
    return KeyFileWriter(output_dir / line_name, output_dir / comma_name)


async def _obtain_api_key(ctx: ExecutionContext, tracker: ItemTracker, *, display_name: str) -> str:
    existing = await ctx.client.existing_key_string(tracker.target)
    if existing:
        tracker.note("reused existing api key")
        logger.info("reusing existing api key", project=tracker.target)
        return existing
    return await ctx.client.create_api_key(tracker.target, display_name=display_name)


def _record_key(writer: KeyFileWriter, tracker: ItemTracker, value: str) -> None:
    record = writer.append_record(value)
    tracker.outcome.record = record.value
    tracker.advance(ItemState.KEY_ISSUED)


async def _resolve_projects(ctx: ExecutionContext, explicit: list[str] | None) -> list[str]:
    # Una lista vacía es una selección vacía; solo None significa "todos".
    if explicit is not None:
        return list(dict.fromkeys(p.strip() for p in explicit if p.strip()))
    return await ctx.client.list_projects()


async def gemini_create(ctx: ExecutionContext, request: GeminiCreateRequest) -> WorkflowResult:
    settings = ctx.settings
    prefix = effective_prefix(request.prefix, settings.gemini_project_prefix, ctx.hooks)
    requested = request.count or settings.gemini_default_projects
    result = WorkflowResult(workflow="gemini-create", requested=requested)

    try:
        count, quota = await negotiate_quota(ctx, requested)
    except OperationCancelled as exc:
        return cancel_result(result, str(exc))
    result.metadata["quota"] = quota.model_dump(mode="json")
    result.metadata["planned"] = count
    if count <= 0:
        ctx.hooks.warn("nothing to create after quota negotiation")
        return close_result(result)

    if not ctx.gate.confirm(
        f"Create {count} projects with prefix '{prefix}' and issue Gemini API keys? "
        "This may incur costs on your Google Cloud account.",
        default=False,
    ):
        return cancel_result(result, "operator declined project creation")

    writer = _writer(ctx, NEW_KEYS_FILE, NEW_KEYS_COMMA_FILE)
    result.outputs = writer.targets
    timestamp = int(time.time())
    targets = [sequential_project_id(prefix, i, timestamp=timestamp) for i in range(1, count + 1)]

    async def worker(tracker: ItemTracker) -> ItemOutcome:
        project_id = tracker.target
        if await ctx.client.project_exists(project_id) is True:
            tracker.advance(ItemState.CREATED, "project already existed")
        else:
            await ctx.client.create_project(project_id)
            tracker.advance(ItemState.CREATED)

        await ensure_service(ctx.client, project_id, GEMINI_SERVICE)
        tracker.advance(ItemState.APIS_ENABLED)

        key = await _obtain_api_key(ctx, tracker, display_name="Gemini API Key")
        _record_key(writer, tracker, key)
        return tracker.succeed()

    items = await run_items(
        targets,
        worker,
        concurrency=settings.concurrency,
        hooks=ctx.hooks,
        workflow=result.workflow,
    )
    return close_result(result, items)


async def gemini_keys(ctx: ExecutionContext, request: GeminiKeysRequest) -> WorkflowResult:
    result = WorkflowResult(workflow="gemini-keys")
    projects = await _resolve_projects(ctx, request.projects)
    result.requested = len(projects)
    if not projects:
        ctx.hooks.warn("no projects found to extract Gemini keys from")
        return close_result(result)

    if not ctx.gate.confirm(
        f"Enable the Gemini API and extract keys for {len(projects)} existing projects?",
        default=False,
    ):
        return cancel_result(result, "operator declined key extraction")

    writer = _writer(ctx, EXISTING_KEYS_FILE, EXISTING_KEYS_COMMA_FILE)
    result.outputs = writer.targets

    async def worker(tracker: ItemTracker) -> ItemOutcome:
        project_id = tracker.target
        if await ctx.client.project_exists(project_id) is False:
            return tracker.skip("project not found or not accessible")

        await ensure_service(ctx.client, project_id, GEMINI_SERVICE)
        tracker.advance(ItemState.APIS_ENABLED)

        key = await _obtain_api_key(ctx, tracker, display_name="Gemini API Key (New)")
        _record_key(writer, tracker, key)
        return tracker.succeed()

    items = await run_items(
        projects,
        worker,
        concurrency=ctx.settings.concurrency,
        hooks=ctx.hooks,
        workflow=result.workflow,
    )
    return close_result(result, items)


async def gemini_delete(ctx: ExecutionContext, request: GeminiDeleteRequest) -> WorkflowResult:
    result = WorkflowResult(workflow="gemini-delete")
    projects = await _resolve_projects(ctx, request.projects)
    result.requested = len(projects)
    if not projects:
        ctx.hooks.warn("no projects selected for deletion")
        return close_result(result)

    preview = ", ".join(projects[:10]) + (" ..." if len(projects) > 10 else "")
    if not ctx.gate.confirm_phrase(
        f"This will permanently delete {len(projects)} projects ({preview}). "
        f"Type '{DELETE_PHRASE}' to confirm",
        DELETE_PHRASE,
    ):
        return cancel_result(result, "confirmation phrase not given")

    run_log = RunLog.create(ctx.settings.log_dir, "project_deletion")
    result.outputs = [run_log.path]

    async def worker(tracker: ItemTracker) -> ItemOutcome:
        project_id = tracker.target
        if await ctx.client.project_exists(project_id) is False:
            run_log.record("skipped", project_id, "not found")
            return tracker.skip("project not found")
        try:
            await ctx.client.delete_project(project_id)
        except RemoteCommandError as exc:
            run_log.record("failed", project_id, str(exc))
            raise
        run_log.record("deleted", project_id)
        tracker.advance(ItemState.DELETED)
        return tracker.succeed()

    items = await run_items(
        projects,
        worker,
        concurrency=ctx.settings.concurrency,
        hooks=ctx.hooks,
        workflow=result.workflow,
    )
    return close_result(result, items)
