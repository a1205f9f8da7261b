"""Negociación de cuota de creación de proyectos.

Reglas:
- Sin proyecto actual configurado no hay consumidor: se omite la
  comprobación.
- Si ni el comando GA ni el alpha responden, se pregunta si continuar
  (por defecto, no).
- Si lo pedido supera el límite: `continue` / `adjust` (al límite) /
  `cancel`. Sin terminal se usa `adjust`.
"""

from __future__ import annotations

from core.domain.errors import OperationCancelled
from core.domain.models import QuotaCheck, QuotaSource
from core.log import get_logger
from core.services.runtime import ExecutionContext

logger = get_logger(__name__)

QUOTA_CHOICES = ("continue", "adjust", "cancel")


async def negotiate_quota(ctx: ExecutionContext, requested: int) -> tuple[int, QuotaCheck]:
    """Devuelve `(cantidad a crear, comprobación)` o lanza `OperationCancelled`."""

    consumer = await ctx.client.current_project()
    if not consumer:
        ctx.hooks.warn("no current gcloud project is set; skipping the project creation quota check")
        return requested, QuotaCheck(source=QuotaSource.SKIPPED, detail="current project unset")

    check = await ctx.client.project_create_quota(consumer)

    if check.source is QuotaSource.UNAVAILABLE:
        ctx.hooks.warn(f"could not read the project creation quota ({check.detail})")
        if not ctx.gate.confirm("Quota could not be checked. Continue anyway?", default=False):
            raise OperationCancelled("quota check unavailable and operator declined")
        return requested, check

    if check.limit is None:
        ctx.hooks.warn("quota response did not contain a numeric limit; continuing with the requested count")
        return requested, check

    limit = check.limit
    logger.info("project creation quota", limit=limit, requested=requested, source=check.source.value)
    if requested <= limit:
        return requested, check

    ctx.hooks.warn(f"requested {requested} projects but the detected quota limit is {limit}")
    choice = ctx.gate.choose(
        f"Requested {requested} projects exceeds the quota limit of {limit}. "
        f"continue = try all {requested} (likely partial failure), adjust = create {limit}, cancel = abort",
        QUOTA_CHOICES,
        default="adjust",
    )
    if choice == "continue":
        return requested, check
    if choice == "adjust":
        logger.info("request adjusted to quota", count=limit)
        return limit, check
    raise OperationCancelled("operator cancelled at quota negotiation")
