"""Shared HTTP client for registry, repository and vulnerability-database calls."""

from __future__ import annotations

import httpx

from npvm.core.config import Settings


def create_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    """Build the client used for one analysis.

    Remote analysis calls carry no timeout: a slow registry delays the result
    rather than truncating it.
    """
    settings = settings or Settings.from_env()
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        timeout=None,
        follow_redirects=True,
    )
