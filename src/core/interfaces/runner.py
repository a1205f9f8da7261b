"""Contrato del cliente remoto.

El Core trata `gcloud` como un colaborador opaco:
`invoke(args) -> (exit_code, stdout, stderr)` empaquetado en `CommandResult`.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from core.domain.models import CommandResult


@runtime_checkable
class CommandRunner(Protocol):
    """Ejecuta una invocación del cliente remoto.

    Reglas:
    - `invoke` nunca lanza por un código de salida != 0; lo refleja en el
      `CommandResult` (el llamador decide con `raise_for_status`).
    - `available` indica si el ejecutable existe en este entorno.
    """

    async def invoke(self, args: Sequence[str]) -> CommandResult:
        ...

    def available(self) -> bool:
        ...
