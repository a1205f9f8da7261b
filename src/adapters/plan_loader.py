"""Carga de planes JSON (`keysmith plan run FILE`).

Formato:

    {"steps": [{"workflow": "gemini-create", "params": {"count": 5}}, ...]}

También se acepta directamente la lista de pasos.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class PlanStep(BaseModel):
    workflow: str = Field(..., min_length=1, description="Nombre del workflow (tabla de dispatch).")
    params: dict[str, Any] = Field(default_factory=dict)


class WorkflowPlan(BaseModel):
    steps: list[PlanStep] = Field(default_factory=list)


def load_plan(path: Path) -> WorkflowPlan:
    """Lee y valida un plan. Propaga `OSError`, `json.JSONDecodeError` y `ValidationError`."""

    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"steps": data}
    return WorkflowPlan.model_validate(data)
