"""Piezas comunes del orquestador de workflows.

Aquí vive lo que comparten todos los workflows: el tracker de estado por
item, el runner concurrente acotado, los hooks de progreso y los helpers
de ids de proyecto. La CLI pasa callbacks mediante `WorkflowHooks`; este
módulo no imprime nada.
"""

from __future__ import annotations

import asyncio
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

from structlog.contextvars import bound_contextvars

from core.domain.errors import EnvironmentFatalError, KeysmithError, OperationCancelled
from core.domain.models import ItemOutcome, ItemState, ItemStatus, WorkflowResult
from core.log import get_logger

if TYPE_CHECKING:
    from adapters.gcloud_client import GcloudClient

logger = get_logger(__name__)

PROJECT_ID_MAX_LENGTH = 30
PREFIX_RE = re.compile(r"^[a-z][a-z0-9-]{0,28}$")
_INVALID_ID_CHARS = re.compile(r"[^a-z0-9-]")


@dataclass
class WorkflowHooks:
    """Optional callbacks for UI layers (progress, warnings)."""

    start: Callable[[str, int], None] | None = None
    advance: Callable[[ItemOutcome], None] | None = None
    warning: Callable[[str], None] | None = None

    def warn(self, message: str) -> None:
        logger.warning(message)
        if self.warning:
            self.warning(message)


class ItemTracker:
    """Máquina de estados de un item: registra cada transición en `history`."""

    def __init__(self, target: str) -> None:
        self.outcome = ItemOutcome(target=target, history=[ItemState.PENDING])

    @property
    def target(self) -> str:
        return self.outcome.target

    def advance(self, state: ItemState, note: str | None = None) -> None:
        self.outcome.state = state
        self.outcome.history.append(state)
        if note:
            self.outcome.notes.append(note)
        logger.debug("item advanced", item=self.target, state=state.value)

    def note(self, message: str) -> None:
        self.outcome.notes.append(message)

    def succeed(self) -> ItemOutcome:
        self.outcome.status = ItemStatus.SUCCEEDED
        return self.outcome

    def skip(self, reason: str) -> ItemOutcome:
        self.advance(ItemState.SKIPPED, reason)
        self.outcome.status = ItemStatus.SKIPPED
        return self.outcome

    def fail(self, error: Exception | str) -> ItemOutcome:
        self.advance(ItemState.FAILED)
        self.outcome.status = ItemStatus.FAILED
        self.outcome.error = str(error)
        return self.outcome


Worker = Callable[[ItemTracker], Awaitable[ItemOutcome]]


async def run_items(
    targets: Iterable[str],
    worker: Worker,
    *,
    concurrency: int,
    hooks: WorkflowHooks | None = None,
    workflow: str = "workflow",
) -> list[ItemOutcome]:
    """Ejecuta `worker` por item con como mucho `concurrency` items en vuelo.

    Cualquier excepción de un item se convierte en un `ItemOutcome` FAILED
    y el resto continúa. `EnvironmentFatalError` y `OperationCancelled`
    deshacen todo el workflow. El orden del resultado es el de `targets`.
    """

    hooks = hooks or WorkflowHooks()
    items = list(targets)
    if hooks.start:
        hooks.start(workflow, len(items))

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(target: str) -> ItemOutcome:
        tracker = ItemTracker(target)
        async with semaphore:
            with bound_contextvars(workflow=workflow, item=target):
                try:
                    outcome = await worker(tracker)
                except (EnvironmentFatalError, OperationCancelled):
                    raise
                except (KeysmithError, OSError) as exc:
                    logger.error("item failed", error=str(exc))
                    outcome = tracker.fail(exc)
                except Exception as exc:
                    logger.error("item crashed", error=repr(exc))
                    outcome = tracker.fail(f"unexpected error: {exc!r}")
        if hooks.advance:
            hooks.advance(outcome)
        return outcome

    return list(await asyncio.gather(*(run_one(t) for t in items)))


def effective_prefix(prefix: str | None, default: str, hooks: WorkflowHooks | None = None) -> str:
    """Devuelve `prefix` si es válido; si no, `default` con un warning."""

    if not prefix:
        return default
    if PREFIX_RE.match(prefix):
        return prefix
    message = f"invalid project prefix '{prefix}', using default '{default}'"
    if hooks:
        hooks.warn(message)
    else:
        logger.warning(message)
    return default


def sanitize_project_id(raw: str) -> str:
    cleaned = _INVALID_ID_CHARS.sub("", raw.lower())
    return cleaned[:PROJECT_ID_MAX_LENGTH].rstrip("-")


def sequential_project_id(prefix: str, index: int, *, timestamp: int | None = None) -> str:
    """`<prefix>-<unix ts>-<index>`, saneado y recortado a 30 caracteres."""

    ts = int(time.time()) if timestamp is None else timestamp
    return sanitize_project_id(f"{prefix}-{ts}-{index}")


def random_project_id(prefix: str) -> str:
    """`<prefix>-<6 hex>`."""

    return sanitize_project_id(f"{prefix}-{secrets.token_hex(3)}")


def close_result(result: WorkflowResult, items: list[ItemOutcome] | None = None) -> WorkflowResult:
    if items is not None:
        result.items = items
    result.finished_at = datetime.now(timezone.utc)
    logger.info(
        "workflow finished",
        workflow=result.workflow,
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
        cancelled=result.cancelled,
    )
    return result


def cancel_result(result: WorkflowResult, reason: str) -> WorkflowResult:
    """Cierra un workflow rechazado por el operador (no cuenta como fallo)."""

    logger.info("workflow cancelled by operator", workflow=result.workflow, reason=reason)
    result.cancelled = True
    result.metadata["cancel_reason"] = reason
    return close_result(result)


async def ensure_service(client: GcloudClient, project_id: str, service: str) -> bool:
    """Habilita `service` si no consta como habilitado. True si se habilitó ahora."""

    if await client.service_enabled(project_id, service) is True:
        logger.debug("service already enabled", project=project_id, service=service)
        return False
    await client.enable_service(project_id, service)
    logger.info("service enabled", project=project_id, service=service)
    return True
