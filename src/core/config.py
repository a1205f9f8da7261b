"""Configuración del Core.

Responsabilidad:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Se construye una sola vez al arrancar y se pasa explícitamente a cada
  componente (runner, workflows, writer). No hay estado global.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.models import RetryPolicy


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "keysmith"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "keysmith"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "keysmith"
    return Path.home() / ".config" / "keysmith"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str], *, env_path: Path | None = None) -> Path:
    """Escribe/actualiza variables en el .env global del usuario."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# keysmith user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


def env_var_name(field_name: str) -> str:
    """Nombre de la variable de entorno que alimenta un campo de `AppSettings`."""

    return f"{AppSettings.model_config['env_prefix']}{field_name}".upper()


_PREFIX_RE = re.compile(r"^[a-z][a-z0-9-]{0,28}$")


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Todos los valores se leen de variables `KEYSMITH_*`, de `./.env` y del
    `.env` de usuario (en ese orden de prioridad tras el entorno).
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYSMITH_",
        extra="ignore",
        case_sensitive=False,
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    gcloud_binary: str = Field(
        default="gcloud",
        min_length=1,
        description="Ejecutable del cliente remoto (gcloud).",
    )
    command_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Timeout por invocación de gcloud (segundos).",
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout de las comprobaciones HTTP del doctor (segundos).",
    )

    # Reintentos
    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Intentos máximos por operación remota.",
    )
    retry_base_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Espera lineal por intento: intento * base + jitter.",
    )
    retry_jitter_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Jitter máximo añadido a cada espera (segundos).",
    )
    retry_transient_only: bool = Field(
        default=False,
        description="No reintentar errores permanentes (permiso denegado, no encontrado...).",
    )

    concurrency: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Items procesados en paralelo dentro de un workflow.",
    )

    # Gemini
    gemini_project_prefix: str = Field(
        default="gemini-api",
        description="Prefijo por defecto para proyectos Gemini.",
    )
    gemini_default_projects: int = Field(
        default=175,
        ge=1,
        le=1000,
        description="Número de proyectos a crear cuando no se indica --count.",
    )

    # Vertex
    vertex_project_prefix: str = Field(
        default="vertex",
        description="Prefijo por defecto para proyectos Vertex.",
    )
    billing_account: str | None = Field(
        default=None,
        description="Cuenta de facturación por defecto (p.ej. 000000-AAAAAA-BBBBBB).",
    )
    max_projects_per_account: int = Field(
        default=3,
        ge=1,
        description="Máximo de proyectos vinculados por cuenta de facturación.",
    )
    service_account_name: str = Field(
        default="vertex-admin",
        min_length=6,
        max_length=30,
        description="Nombre de la cuenta de servicio a provisionar.",
    )
    service_account_display_name: str = Field(
        default="Vertex Admin",
        min_length=1,
    )
    extra_roles: str = Field(
        default="roles/iam.serviceAccountUser roles/aiplatform.user",
        description="Roles adicionales (separados por espacios o comas).",
    )

    # Salidas
    key_dir: Path = Field(
        default=Path("keys"),
        description="Directorio de claves JSON de cuentas de servicio.",
    )
    output_dir: Path = Field(
        default=Path("."),
        description="Directorio de los ficheros de API keys (línea y coma).",
    )
    log_dir: Path = Field(
        default=Path("logs"),
        description="Directorio de logs de borrado/limpieza.",
    )

    log_level: str = Field(default="INFO")
    log_file: Path | None = Field(
        default=None,
        description="Fichero opcional donde duplicar el log de consola.",
    )

    @field_validator("gemini_project_prefix", "vertex_project_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not _PREFIX_RE.match(value):
            raise ValueError("prefix must start with a lowercase letter and contain only [a-z0-9-] (max 29 chars)")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    def extra_role_list(self) -> list[str]:
        return [r for r in re.split(r"[\s,]+", self.extra_roles) if r]

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            jitter_seconds=self.retry_jitter_seconds,
            retry_transient_only=self.retry_transient_only,
        )
