"""Exportación JSON del resumen de ejecución.

El informe (`--report PATH`) incluye contadores, items y ficheros de salida,
pero nunca los valores de las credenciales.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from core.domain.models import WorkflowResult


def result_payload(result: WorkflowResult) -> dict[str, object]:
    payload = result.model_dump(mode="json", exclude={"items": {"__all__": {"record"}}})
    payload["summary"] = {
        "succeeded": result.succeeded,
        "failed": result.failed,
        "skipped": result.skipped,
    }
    return payload


def export_results_json(*, results: Sequence[WorkflowResult], output_path: Path) -> Path:
    """Exporta uno o varios `WorkflowResult` a JSON UTF-8 con formato estable."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"runs": [result_payload(r) for r in results]}
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path
