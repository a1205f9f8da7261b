"""Retry Executor.

Re-invoca una operación remota fallida con backoff lineal + jitter, hasta
`policy.max_attempts`. Tras agotar los intentos propaga el último error.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable

from core.domain.errors import RemoteCommandError
from core.domain.models import CommandResult, RetryPolicy
from core.log import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[CommandResult]]
Sleeper = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """Ejecuta operaciones con la política de reintentos configurada.

    - Se reintenta todo `RemoteCommandError` (solo los transitorios si
      `retry_transient_only`). Cualquier otra excepción, incluida
      `OperationCancelled`, se propaga sin reintento.
    - La espera es un `await` real: una interrupción del proceso cancela el
      event loop durante el backoff.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._policy = policy
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _should_retry(self, exc: RemoteCommandError) -> bool:
        return not self._policy.retry_transient_only or exc.kind.transient

    async def call(self, operation: Operation, *, description: str) -> CommandResult:
        max_attempts = self._policy.max_attempts
        attempt = 1
        while True:
            try:
                return await operation()
            except RemoteCommandError as exc:
                exc.description = description
                if not self._should_retry(exc):
                    logger.error(
                        "remote operation failed (not retryable)",
                        command=description,
                        attempt=attempt,
                        kind=exc.kind.value,
                        error=str(exc),
                    )
                    raise
                if attempt >= max_attempts:
                    logger.error(
                        "remote operation failed after all attempts",
                        command=description,
                        attempts=max_attempts,
                        error=str(exc),
                    )
                    raise
                delay = self._policy.delay_for(attempt, self._rng)
                logger.warning(
                    "retrying remote operation",
                    command=description,
                    attempt=f"{attempt}/{max_attempts}",
                    delay_seconds=round(delay, 1),
                    error=str(exc),
                )
                await self._sleep(delay)
                attempt += 1
