"""Taxonomía de errores.

- transient-remote  -> `RemoteCommandError` (lo gestiona el RetryExecutor)
- parse-failure     -> `ResponseParseError` (no se reintenta)
- operator-cancel   -> `OperationCancelled` (señal de control, no es fallo)
- fatal-environment -> `EnvironmentFatalError` (aborta el proceso)
"""

from __future__ import annotations

from core.domain.models import CommandResult, FailureKind


class KeysmithError(Exception):
    """Base de todos los errores propios."""


class RemoteCommandError(KeysmithError):
    """Una invocación del cliente remoto terminó con código != 0."""

    def __init__(self, result: CommandResult, description: str | None = None) -> None:
        self.result = result
        self.description = description or result.command_line
        super().__init__(self.description)

    def __str__(self) -> str:
        # `description` puede reasignarse (RetryExecutor); el mensaje se calcula al vuelo.
        detail = (self.result.stderr or self.result.stdout or "").strip().splitlines()
        last_line = detail[-1] if detail else "no output"
        return f"{self.description} failed (exit {self.result.exit_code}): {last_line}"

    @property
    def kind(self) -> FailureKind:
        return self.result.failure_kind or FailureKind.UNKNOWN


class ResponseParseError(KeysmithError):
    """La respuesta remota no contenía el campo esperado."""

    def __init__(self, field: str, context: str) -> None:
        self.field = field
        super().__init__(f"could not extract '{field}' from {context} response")


class OperationCancelled(KeysmithError):
    """El operador rechazó continuar. No se registra como fallo."""


class EnvironmentFatalError(KeysmithError):
    """Falta el cliente remoto o la autenticación: ningún workflow puede seguir."""


class StepFailed(KeysmithError):
    """Un paso previo obligatorio de un item falló."""
