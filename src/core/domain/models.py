"""Modelos del dominio (Pydantic v2).

Describen *qué* produce cada operación remota (resultado de un comando,
campo parseado, registro de salida, estado de un item), no *cómo* se
obtiene.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class FailureKind(str, Enum):
    """Clase de fallo deducida de la salida de error del cliente remoto."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_ARGUMENT = "invalid_argument"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"

    @property
    def transient(self) -> bool:
        return self in (FailureKind.RATE_LIMITED, FailureKind.UNKNOWN)


class CommandResult(BaseModel):
    """Resultado de una invocación del cliente remoto (RemoteOperation)."""

    args: list[str] = Field(
        default_factory=list,
        description="Argumentos de la invocación (sin el ejecutable).",
    )
    exit_code: int = Field(
        default=0,
        description="Código de salida del proceso.",
    )
    stdout: str = Field(default="", description="Salida estándar capturada.")
    stderr: str = Field(default="", description="Salida de error capturada.")
    failure_kind: FailureKind | None = Field(
        default=None,
        description="Clasificación del fallo (solo si exit_code != 0).",
    )

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)

    def raise_for_status(self) -> "CommandResult":
        """Lanza `RemoteCommandError` si la invocación falló."""

        if not self.ok:
            from core.domain.errors import RemoteCommandError

            raise RemoteCommandError(self)
        return self


class RetryPolicy(BaseModel):
    """Política de reintentos: backoff lineal con jitter.

    `delay = intento * base + uniform(0, jitter)` segundos.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=10.0, ge=0)
    jitter_seconds: float = Field(default=5.0, ge=0)
    retry_transient_only: bool = Field(
        default=False,
        description="Si es True, los fallos permanentes (permiso, no encontrado...) no se reintentan.",
    )

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        rng = rng or random
        jitter = rng.uniform(0.0, self.jitter_seconds) if self.jitter_seconds else 0.0
        return attempt * self.base_delay_seconds + jitter


class ParsedField(BaseModel):
    """Valor escalar extraído de una respuesta para un campo concreto."""

    field: str
    value: str | None = None
    strategy: str | None = Field(
        default=None,
        description="Estrategia que produjo el valor ('structured' o 'pattern').",
    )

    @property
    def ok(self) -> bool:
        return self.value is not None


class OutputRecord(BaseModel):
    """Credencial añadida a uno o más ficheros de salida."""

    value: str = Field(..., min_length=1)
    targets: list[Path] = Field(default_factory=list)
    written_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConfirmationDecision(BaseModel):
    """Resultado de una puerta de confirmación. Nunca se persiste."""

    prompt: str
    accepted: bool
    interactive: bool
    answer: str | None = None


class ItemState(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    BILLING_LINKED = "billing_linked"
    APIS_ENABLED = "apis_enabled"
    IDENTITY_CONFIGURED = "identity_configured"
    KEY_ISSUED = "key_issued"
    DELETED = "deleted"
    SKIPPED = "skipped"
    FAILED = "failed"


class ItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ItemOutcome(BaseModel):
    """Resultado final de un item (proyecto) dentro de un workflow."""

    target: str = Field(..., min_length=1)
    state: ItemState = ItemState.PENDING
    status: ItemStatus = ItemStatus.FAILED
    history: list[ItemState] = Field(default_factory=list)
    error: str | None = None
    record: str | None = Field(
        default=None,
        description="Credencial emitida (API key) si aplica.",
    )
    key_file: Path | None = Field(
        default=None,
        description="Fichero JSON de clave de cuenta de servicio si aplica.",
    )
    notes: list[str] = Field(default_factory=list)


class WorkflowResult(BaseModel):
    """Resumen de una ejecución de workflow (éxitos/fallos/omitidos)."""

    workflow: str
    requested: int = 0
    cancelled: bool = False
    items: list[ItemOutcome] = Field(default_factory=list)
    outputs: list[Path] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(ItemStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ItemStatus.SKIPPED)

    @property
    def records(self) -> list[str]:
        return [item.record for item in self.items if item.record]


class QuotaSource(str, Enum):
    GA = "ga"
    ALPHA = "alpha"
    SKIPPED = "skipped"
    UNAVAILABLE = "unavailable"


class QuotaCheck(BaseModel):
    """Límite de creación de proyectos detectado (si se pudo leer)."""

    limit: int | None = Field(default=None, ge=0)
    source: QuotaSource = QuotaSource.UNAVAILABLE
    detail: str | None = None


class BillingAccount(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(..., min_length=1, description="'billingAccounts/XXXX' o el id pelado.")
    display_name: str = Field(default="", alias="displayName")
    open: bool = True

    @property
    def account_id(self) -> str:
        return self.name.removeprefix("billingAccounts/")


class ProjectStatus(BaseModel):
    """Fila del informe de estado Vertex."""

    project_id: str
    billing_account: str | None = None
    vertex_enabled: bool = False
    service_account_exists: bool | None = None
    local_key_files: int = 0


class KeyPolicy(str, Enum):
    """Qué hacer con las claves existentes de una cuenta de servicio."""

    KEEP = "keep"
    REPLACE = "replace"
    SKIP = "skip"
