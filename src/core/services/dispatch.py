"""Tabla de dispatch de workflows.

Nombre -> (modelo de petición, handler). La usan tanto los comandos de la CLI
como `keysmith plan run`, de modo que un plan JSON valida sus `params` con el
mismo modelo que la línea de comandos.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel

from core.domain.errors import KeysmithError
from core.domain.models import WorkflowResult
from core.services.gemini_workflows import (
    GeminiCreateRequest,
    GeminiDeleteRequest,
    GeminiKeysRequest,
    gemini_create,
    gemini_delete,
    gemini_keys,
)
from core.services.runtime import ExecutionContext
from core.services.vertex_workflows import (
    VertexCreateRequest,
    VertexProvisionRequest,
    vertex_create,
    vertex_provision,
)

Handler = Callable[[ExecutionContext, Any], Awaitable[WorkflowResult]]


@dataclass(frozen=True)
class WorkflowSpec:
    request_model: type[BaseModel]
    handler: Handler
    summary: str


WORKFLOWS: Mapping[str, WorkflowSpec] = {
    "gemini-create": WorkflowSpec(GeminiCreateRequest, gemini_create, "Create projects and issue Gemini API keys"),
    "gemini-keys": WorkflowSpec(GeminiKeysRequest, gemini_keys, "Extract Gemini API keys from existing projects"),
    "gemini-delete": WorkflowSpec(GeminiDeleteRequest, gemini_delete, "Delete projects (destructive)"),
    "vertex-provision": WorkflowSpec(
        VertexProvisionRequest, vertex_provision, "Configure Vertex AI on existing projects"
    ),
    "vertex-create": WorkflowSpec(VertexCreateRequest, vertex_create, "Create Vertex AI projects per billing account"),
}


class UnknownWorkflowError(KeysmithError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unknown workflow '{name}' (available: {', '.join(sorted(WORKFLOWS))})")


def build_request(name: str, params: Mapping[str, Any] | None = None) -> BaseModel:
    """Valida `params` contra el modelo del workflow. Propaga `ValidationError`."""

    spec = WORKFLOWS.get(name)
    if spec is None:
        raise UnknownWorkflowError(name)
    return spec.request_model.model_validate(dict(params or {}))


async def dispatch(ctx: ExecutionContext, name: str, params: Mapping[str, Any] | BaseModel | None = None) -> WorkflowResult:
    spec = WORKFLOWS.get(name)
    if spec is None:
        raise UnknownWorkflowError(name)
    request = params if isinstance(params, BaseModel) else build_request(name, params)
    return await spec.handler(ctx, request)
