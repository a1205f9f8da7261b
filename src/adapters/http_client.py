"""Wrapper de httpx.

Solo lo usa el doctor para comprobar la conectividad HTTPS con los
endpoints de Google Cloud; las operaciones remotas van por `gcloud`.
"""

from __future__ import annotations

import httpx

from core.config import AppSettings

USER_AGENT = "gcp-keysmith/0.1 (+doctor)"


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` con timeouts y headers homogéneos."""

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
    )


async def check_reachable(url: str, settings: AppSettings | None = None) -> tuple[bool, str]:
    """GET best-effort: `(alcanzable, detalle)`. Cualquier respuesta HTTP cuenta como alcanzable."""

    try:
        async with build_async_client(settings) as client:
            response = await client.get(url)
        return True, f"HTTP {response.status_code}"
    except httpx.HTTPError as exc:
        return False, str(exc) or exc.__class__.__name__
