"""Idempotent State Checker.

Antes de mutar, consulta el estado remoto con una query filtrada y decide
si el recurso ya existe.

Reglas:
- Salida vacía (o `[]` / `{}`) = no existe. No es un error.
- Si la propia query falla, el resultado es `None` ("desconocido"): se
  registra un warning y el llamador decide si continuar.
"""

from __future__ import annotations

from typing import Sequence

from pydantic import BaseModel, Field

from core.interfaces.runner import CommandRunner
from core.log import get_logger

logger = get_logger(__name__)

_EMPTY_OUTPUTS = {"", "[]", "{}", "null"}


class ResourceSelector(BaseModel):
    """Query de solo lectura que identifica un recurso remoto."""

    description: str = Field(..., min_length=1)
    args: list[str] = Field(..., min_length=1)


class StateChecker:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    async def exists(self, selector: ResourceSelector) -> bool | None:
        result = await self._runner.invoke(selector.args)
        if not result.ok:
            logger.warning(
                "existence check failed, state unknown",
                resource=selector.description,
                exit_code=result.exit_code,
                error=(result.stderr or "").strip()[:200],
            )
            return None
        present = result.stdout.strip() not in _EMPTY_OUTPUTS
        logger.debug("existence check", resource=selector.description, present=present)
        return present

    async def missing(self, selectors: Sequence[ResourceSelector]) -> list[ResourceSelector]:
        """Selectores cuyo recurso no consta como existente (ausente o desconocido)."""

        pending: list[ResourceSelector] = []
        for selector in selectors:
            if await self.exists(selector) is not True:
                pending.append(selector)
        return pending
