"""Vertex AI workflows.

- `vertex_provision`: configura proyectos existentes (APIs, cuenta de
  servicio, roles, clave JSON).
- `vertex_create`: crea proyectos nuevos por cuenta de facturación, hasta
  `max_projects_per_account` proyectos vinculados por cuenta.
- `vertex_status`: informe de solo lectura.

Nota: las claves JSON se generan primero en el workspace de la sesión
(permisos 600) y después se mueven a `key_dir` (permisos 700).
"""

from __future__ import annotations

import asyncio
import os
import shutil
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from adapters.gcloud_client import VERTEX_SERVICE, VERTEX_SERVICES, policy_has_binding, service_account_email
from adapters.run_log import RunLog
from core.config import AppSettings
from core.domain.errors import RemoteCommandError, StepFailed
from core.domain.models import FailureKind, ItemOutcome, ItemState, KeyPolicy, ProjectStatus, WorkflowResult
from core.log import get_logger
from core.services.runtime import ExecutionContext
from core.services.workflow_common import (
    ItemTracker,
    cancel_result,
    close_result,
    effective_prefix,
    ensure_service,
    random_project_id,
    run_items,
)

logger = get_logger(__name__)

BASE_ROLES = (
    "roles/aiplatform.admin",
    "roles/iam.serviceAccountUser",
    "roles/iam.serviceAccountTokenCreator",
    "roles/aiplatform.user",
)


class VertexProvisionRequest(BaseModel):
    projects: list[str] | None = Field(
        default=None,
        description="Proyectos explícitos; None = proyectos de la cuenta de facturación (o todos).",
    )
    billing_account: str | None = None
    create_missing_accounts: bool = Field(
        default=True,
        description="Crear la cuenta de servicio si no existe.",
    )
    key_policy: KeyPolicy = Field(
        default=KeyPolicy.KEEP,
        description="Qué hacer con las claves existentes antes de generar una nueva.",
    )


class VertexCreateRequest(BaseModel):
    billing_accounts: list[str] | None = Field(
        default=None,
        description="Cuentas de facturación; None = la configurada o todas las abiertas.",
    )
    count: int | None = Field(
        default=None,
        ge=1,
        description="Proyectos por cuenta (limitado por los huecos libres de la cuenta).",
    )
    prefix: str | None = None
    continue_without_billing: bool = Field(
        default=False,
        description="Seguir con el proyecto aunque falle la vinculación de facturación.",
    )


def vertex_roles(settings: AppSettings) -> list[str]:
    return sorted(set(BASE_ROLES) | set(settings.extra_role_list()))


def prepare_key_dir(key_dir: Path) -> Path:
    key_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(key_dir, 0o700)
    return key_dir


def key_file_name(project_id: str, account_name: str, *, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return f"{project_id}-{account_name}-{stamp}.json"


def count_local_keys(key_dir: Path, project_id: str, account_name: str) -> int:
    if not key_dir.is_dir():
        return 0
    return sum(1 for _ in key_dir.glob(f"{project_id}-{account_name}-*.json"))


async def _enable_vertex_services(ctx: ExecutionContext, tracker: ItemTracker) -> None:
    project_id = tracker.target
    if await ctx.client.service_enabled(project_id, VERTEX_SERVICE) is True:
        tracker.advance(ItemState.APIS_ENABLED, "vertex api already enabled")
        return
    for service in VERTEX_SERVICES:
        await ensure_service(ctx.client, project_id, service)
    tracker.advance(ItemState.APIS_ENABLED)


async def _configure_identity(
    ctx: ExecutionContext,
    tracker: ItemTracker,
    *,
    allow_create: bool,
) -> str:
    settings = ctx.settings
    project_id = tracker.target
    email = service_account_email(project_id, settings.service_account_name)

    present = await ctx.client.service_account_exists(project_id, email)
    if present is not True:
        if not allow_create:
            raise StepFailed(f"service account {email} does not exist and creation is disabled")
        try:
            await ctx.client.create_service_account(
                project_id,
                settings.service_account_name,
                settings.service_account_display_name,
            )
        except RemoteCommandError as exc:
            if exc.kind is not FailureKind.ALREADY_EXISTS:
                raise
            logger.info("service account already existed", account=email)

    member = f"serviceAccount:{email}"
    policy = await ctx.client.iam_policy(project_id)
    failed_roles: list[str] = []
    for role in vertex_roles(settings):
        if policy_has_binding(policy, member, role):
            continue
        try:
            await ctx.client.add_iam_binding(project_id, member, role)
        except RemoteCommandError as exc:
            logger.error("role binding failed", role=role, error=str(exc))
            failed_roles.append(role)
    if failed_roles:
        tracker.note(f"role bindings failed: {', '.join(failed_roles)}")

    if email not in await ctx.client.iam_policy(project_id):
        raise StepFailed(f"could not verify iam policy for {email}")
    tracker.advance(ItemState.IDENTITY_CONFIGURED)
    return email


async def _replace_keys(
    ctx: ExecutionContext,
    tracker: ItemTracker,
    email: str,
    keys: list[str],
    cleanup_log: RunLog,
) -> None:
    target = f"{tracker.target}/{email}"
    deleted = 0
    for key_id in keys:
        try:
            await ctx.client.delete_service_account_key(email, key_id)
        except RemoteCommandError as exc:
            logger.error("key deletion failed", key=key_id, error=str(exc))
            cleanup_log.record("failed", target, key_id)
            continue
        cleanup_log.record("deleted", target, key_id)
        deleted += 1
    if deleted:
        tracker.note(f"deleted {deleted} existing keys")


async def _issue_key(ctx: ExecutionContext, tracker: ItemTracker, email: str) -> Path:
    settings = ctx.settings
    project_id = tracker.target
    name = key_file_name(project_id, settings.service_account_name)
    staged = ctx.workspace / name

    await ctx.client.create_service_account_key(project_id, email, staged)
    if not staged.exists():
        raise StepFailed(f"gcloud reported success but no key file was written for {email}")
    os.chmod(staged, 0o600)

    destination = prepare_key_dir(settings.key_dir) / name
    shutil.move(str(staged), str(destination))
    tracker.outcome.key_file = destination
    tracker.advance(ItemState.KEY_ISSUED)
    logger.info("service account key written", project=project_id, path=str(destination))
    return destination


async def _provision_targets(ctx: ExecutionContext, request: VertexProvisionRequest) -> list[str]:
    if request.projects is not None:
        return list(dict.fromkeys(p.strip() for p in request.projects if p.strip()))
    account = request.billing_account or ctx.settings.billing_account
    if account:
        return await ctx.client.billing_projects(account)
    return await ctx.client.list_projects()


async def vertex_provision(ctx: ExecutionContext, request: VertexProvisionRequest) -> WorkflowResult:
    result = WorkflowResult(workflow="vertex-provision")
    projects = await _provision_targets(ctx, request)
    result.requested = len(projects)
    result.metadata["key_policy"] = request.key_policy.value
    if not projects:
        ctx.hooks.warn("no projects found to configure for Vertex AI")
        return close_result(result)

    if not ctx.gate.confirm(
        f"Configure Vertex AI (APIs, service account, roles, key) on {len(projects)} projects? "
        "Vertex AI usage is billed to the linked billing account.",
        default=False,
    ):
        return cancel_result(result, "operator declined vertex provisioning")

    prepare_key_dir(ctx.settings.key_dir)
    cleanup_log = RunLog.create(ctx.settings.log_dir, "api_keys_cleanup")

    async def worker(tracker: ItemTracker) -> ItemOutcome:
        project_id = tracker.target
        if await ctx.client.project_exists(project_id) is False:
            return tracker.skip("project not found or not accessible")

        billing = await ctx.client.project_billing_account(project_id)
        if billing:
            tracker.advance(ItemState.BILLING_LINKED)
        else:
            tracker.note("no billing account linked")

        await _enable_vertex_services(ctx, tracker)
        email = await _configure_identity(ctx, tracker, allow_create=request.create_missing_accounts)

        existing = await ctx.client.list_service_account_keys(email)
        if existing:
            if request.key_policy is KeyPolicy.SKIP:
                tracker.note(f"kept {len(existing)} existing keys, no new key created")
                return tracker.succeed()
            if request.key_policy is KeyPolicy.REPLACE:
                await _replace_keys(ctx, tracker, email, existing, cleanup_log)

        await _issue_key(ctx, tracker, email)
        return tracker.succeed()

    items = await run_items(
        projects,
        worker,
        concurrency=ctx.settings.concurrency,
        hooks=ctx.hooks,
        workflow=result.workflow,
    )
    if cleanup_log.path.exists():
        result.outputs.append(cleanup_log.path)
    result.outputs.append(ctx.settings.key_dir)
    return close_result(result, items)


async def _billing_targets(ctx: ExecutionContext, request: VertexCreateRequest) -> list[str]:
    if request.billing_accounts:
        return [a.strip().removeprefix("billingAccounts/") for a in request.billing_accounts if a.strip()]
    if ctx.settings.billing_account:
        return [ctx.settings.billing_account.removeprefix("billingAccounts/")]
    return [account.account_id for account in await ctx.client.billing_accounts()]


async def vertex_create(ctx: ExecutionContext, request: VertexCreateRequest) -> WorkflowResult:
    settings = ctx.settings
    result = WorkflowResult(workflow="vertex-create")
    prefix = effective_prefix(request.prefix, settings.vertex_project_prefix, ctx.hooks)

    accounts = await _billing_targets(ctx, request)
    if not accounts:
        ctx.hooks.warn("no open billing accounts available")
        return close_result(result)

    plan: dict[str, str] = {}
    capacity: dict[str, int] = {}
    for account in accounts:
        linked = await ctx.client.billing_projects(account)
        free = max(0, settings.max_projects_per_account - len(linked))
        planned = min(request.count, free) if request.count else free
        capacity[account] = planned
        if request.count and request.count > free:
            ctx.hooks.warn(
                f"billing account {account} has {len(linked)} linked projects; creating {planned} instead of {request.count}"
            )
        for _ in range(planned):
            plan[random_project_id(prefix)] = account

    result.requested = len(plan)
    result.metadata["accounts"] = capacity
    if not plan:
        ctx.hooks.warn("every selected billing account is already at its project limit")
        return close_result(result)

    if not ctx.gate.confirm(
        f"Create {len(plan)} Vertex AI projects across {len(accounts)} billing accounts? "
        "Linked projects incur costs on those accounts.",
        default=False,
    ):
        return cancel_result(result, "operator declined vertex project creation")

    prepare_key_dir(settings.key_dir)

    async def worker(tracker: ItemTracker) -> ItemOutcome:
        project_id = tracker.target
        account = plan[project_id]
        if await ctx.client.project_exists(project_id) is True:
            return tracker.skip("project id already taken")

        await ctx.client.create_project(project_id)
        tracker.advance(ItemState.CREATED)

        try:
            await ctx.client.link_billing(project_id, account)
            tracker.advance(ItemState.BILLING_LINKED)
        except RemoteCommandError as exc:
            if not request.continue_without_billing:
                await _compensate(ctx, tracker)
                raise StepFailed(f"billing link to {account} failed: {exc}") from exc
            ctx.hooks.warn(f"{project_id}: billing link failed, continuing without billing")
            tracker.note("continued without billing")

        await _enable_vertex_services(ctx, tracker)
        email = await _configure_identity(ctx, tracker, allow_create=True)
        await _issue_key(ctx, tracker, email)
        return tracker.succeed()

    items = await run_items(
        list(plan),
        worker,
        concurrency=settings.concurrency,
        hooks=ctx.hooks,
        workflow=result.workflow,
    )
    result.outputs.append(settings.key_dir)
    return close_result(result, items)


async def _compensate(ctx: ExecutionContext, tracker: ItemTracker) -> None:
    """Borra el proyecto recién creado cuando no se pudo vincular la facturación."""

    try:
        await ctx.client.delete_project(tracker.target)
        tracker.note("project deleted after billing link failure")
    except RemoteCommandError as exc:
        logger.error("compensating deletion failed", project=tracker.target, error=str(exc))
        tracker.note("compensating deletion failed; project left without billing")


async def vertex_status(ctx: ExecutionContext) -> list[ProjectStatus]:
    """Proyectos con Vertex habilitado: facturación, cuenta de servicio y claves locales."""

    settings = ctx.settings
    projects = await ctx.client.list_projects()
    semaphore = asyncio.Semaphore(settings.concurrency)

    async def inspect(project_id: str) -> ProjectStatus | None:
        async with semaphore:
            if await ctx.client.service_enabled(project_id, VERTEX_SERVICE) is not True:
                return None
            email = service_account_email(project_id, settings.service_account_name)
            return ProjectStatus(
                project_id=project_id,
                billing_account=await ctx.client.project_billing_account(project_id),
                vertex_enabled=True,
                service_account_exists=await ctx.client.service_account_exists(project_id, email),
                local_key_files=count_local_keys(settings.key_dir, project_id, settings.service_account_name),
            )

    rows = await asyncio.gather(*(inspect(p) for p in projects))
    return [row for row in rows if row is not None]
