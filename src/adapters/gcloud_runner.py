"""Runner de `gcloud` sobre asyncio.

Responsabilidad:
- Lanzar el ejecutable con `asyncio.create_subprocess_exec` (sin shell).
- Capturar stdout/stderr y clasificar el fallo a partir de stderr.
- Aplicar un timeout por invocación; un timeout se reporta como fallo
  transitorio (exit 124), no como excepción.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from typing import Sequence

from core.config import AppSettings
from core.domain.models import CommandResult, FailureKind
from core.log import get_logger

logger = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124


def _http_status(code: int) -> str:
    # Solo las formas canónicas: "HTTPError 403:", "code=403", "status: 403".
    return rf"(?:httperror|code=|status[=:])\s*{code}\b"


_CLASSIFIERS: tuple[tuple[FailureKind, re.Pattern[str]], ...] = tuple(
    (kind, re.compile("|".join(patterns), re.IGNORECASE))
    for kind, patterns in (
        (
            FailureKind.RATE_LIMITED,
            (
                r"\bresource_exhausted\b",
                r"\bquota exceeded\b",
                r"\brate limit",
                r"\btoo many requests\b",
                _http_status(429),
            ),
        ),
        (
            FailureKind.PERMISSION_DENIED,
            (
                r"\bpermission_denied\b",
                r"\bdoes not have permission\b",
                r"\bpermission denied\b",
                _http_status(403),
            ),
        ),
        (FailureKind.ALREADY_EXISTS, (r"\balready_exists\b", r"\balready exists\b", _http_status(409))),
        (FailureKind.NOT_FOUND, (r"\bnot_found\b", r"\bnot found\b", _http_status(404))),
        (FailureKind.INVALID_ARGUMENT, (r"\binvalid_argument\b", r"\binvalid value\b", r"\binvalid choice\b")),
    )
)


def classify_stderr(stderr: str) -> FailureKind:
    """Deduce la clase de fallo a partir del texto de error de gcloud.

    Los códigos HTTP solo cuentan en su forma canónica: un id de proyecto
    como `gemini-api-1760404011` no debe parecer un 404.
    """

    text = stderr or ""
    for kind, pattern in _CLASSIFIERS:
        if pattern.search(text):
            return kind
    return FailureKind.UNKNOWN


class GcloudRunner:
    """Implementación de `CommandRunner` que invoca el binario real."""

    def __init__(self, settings: AppSettings) -> None:
        self._binary = settings.gcloud_binary
        self._timeout = settings.command_timeout_seconds

    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    async def invoke(self, args: Sequence[str]) -> CommandResult:
        argv = [str(a) for a in args]
        logger.debug("invoking gcloud", command=" ".join(argv))

        env = {**os.environ, "CLOUDSDK_CORE_DISABLE_PROMPTS": "1"}
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError:
            return CommandResult(
                args=argv,
                exit_code=127,
                stderr=f"{self._binary}: command not found",
                failure_kind=FailureKind.UNKNOWN,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("gcloud command timed out", command=" ".join(argv), timeout=self._timeout)
            return CommandResult(
                args=argv,
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f"timed out after {self._timeout:.0f}s",
                failure_kind=FailureKind.UNKNOWN,
            )

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        exit_code = process.returncode if process.returncode is not None else 1
        kind = classify_stderr(err) if exit_code != 0 else None
        return CommandResult(args=argv, exit_code=exit_code, stdout=out, stderr=err, failure_kind=kind)
