"""Contrato de la puerta de confirmación (Interactive Gate)."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class ConfirmationGate(Protocol):
    """Confirmación explícita antes de acciones costosas o irreversibles.

    Reglas de diseño:
    - En contexto no interactivo no se bloquea: se devuelve el `default`.
    - `confirm_phrase` exige la frase exacta; cualquier otra entrada cancela.
    """

    def confirm(self, prompt: str, *, default: bool = False) -> bool:
        ...

    def confirm_phrase(self, prompt: str, phrase: str) -> bool:
        ...

    def choose(self, prompt: str, options: Sequence[str], *, default: str) -> str:
        ...

    def notify(self, message: str) -> None:
        ...
