"""Sesión de ejecución.

Agrupa lo que un workflow necesita (settings, cliente gcloud, puerta de
confirmación, hooks de UI y un directorio de trabajo temporal) en un
`ExecutionContext` explícito. El directorio temporal se elimina en cualquier
salida, incluida una interrupción.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from adapters.gcloud_client import GcloudClient
from adapters.gcloud_runner import GcloudRunner
from core.config import AppSettings
from core.domain.errors import EnvironmentFatalError
from core.interfaces.gate import ConfirmationGate
from core.interfaces.runner import CommandRunner
from core.log import get_logger
from core.services.retry import RetryExecutor, Sleeper
from core.services.workflow_common import WorkflowHooks

logger = get_logger(__name__)


@dataclass
class ExecutionContext:
    settings: AppSettings
    client: GcloudClient
    gate: ConfirmationGate
    workspace: Path
    hooks: WorkflowHooks = field(default_factory=WorkflowHooks)


def build_client(
    settings: AppSettings,
    runner: CommandRunner | None = None,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> GcloudClient:
    runner = runner or GcloudRunner(settings)
    return GcloudClient(runner, RetryExecutor(settings.retry_policy(), sleep=sleep))


@contextmanager
def open_session(
    settings: AppSettings,
    gate: ConfirmationGate,
    *,
    client: GcloudClient | None = None,
    hooks: WorkflowHooks | None = None,
) -> Iterator[ExecutionContext]:
    workspace = Path(tempfile.mkdtemp(prefix="keysmith-"))
    logger.debug("session workspace created", path=str(workspace))
    try:
        yield ExecutionContext(
            settings=settings,
            client=client or build_client(settings),
            gate=gate,
            workspace=workspace,
            hooks=hooks or WorkflowHooks(),
        )
    finally:
        shutil.rmtree(workspace, ignore_errors=True)
        logger.debug("session workspace removed", path=str(workspace))


async def check_environment(client: GcloudClient) -> str:
    """Verifica gcloud + cuenta activa. Devuelve la cuenta activa."""

    if not client.available():
        raise EnvironmentFatalError("gcloud was not found on PATH; install the Google Cloud SDK first")
    account = await client.active_account()
    if not account:
        raise EnvironmentFatalError("no active gcloud account; run `gcloud auth login` first")
    logger.info("environment ok", account=account)
    return account
