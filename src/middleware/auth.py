"""Admin key guard for the escalation admin endpoints.

The key comes from ``ADMIN_API_KEY`` and is compared in constant time
against the ``X-Admin-API-Key`` header.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from config.settings import Settings, settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-API-Key"

_admin_key = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


def _app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", settings)


def _reject(request: Request, status_code: int, detail: str, event: str) -> HTTPException:
    logger.warning(
        event,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown",
    )
    headers = {"WWW-Authenticate": "ApiKey"} if status_code == 401 else None
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Security(_admin_key),
) -> str:
    """Dependency for admin routes.

    With no key configured, development lets callers through and
    production answers 503.
    """
    app_settings = _app_settings(request)
    expected = app_settings.admin_api_key

    if not expected:
        if app_settings.is_production:
            logger.error("auth.admin_key_not_configured_production")
            raise HTTPException(status_code=503, detail="Admin authentication is not configured.")
        logger.warning("auth.admin_key_not_configured", path=request.url.path)
        return ""

    if not api_key:
        raise _reject(request, 401, f"Missing {ADMIN_KEY_HEADER} header.", "auth.missing_api_key")
    if not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise _reject(request, 403, "Invalid API key.", "auth.invalid_api_key")
    return api_key
