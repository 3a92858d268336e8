"""X-API-Key guard for the StockWatch admin router.

Protects every route under /api/admin:

    POST /api/admin/prices/refresh             batch refresh (inline or Celery)
    POST /api/admin/prices/{stock_id}/refresh  single stock refresh
    POST /api/admin/prices/promote             48h exit -> exited sweep
    GET  /api/admin/scheduler                  scheduler state and last run

The /api/stocks read routes are public. With APP_ENV=development and no
API_KEY set the guard lets everything through so local runs need no key.
"""

import logging
import secrets

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from app.config import settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
DEV_BYPASS = "dev-bypass"

_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _dev_bypass_allowed() -> bool:
    return not settings.api_key and settings.app_env == "development"


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """Admin router dependency. Returns the accepted key (or the bypass marker)."""
    if _dev_bypass_allowed():
        return DEV_BYPASS

    if not settings.api_key:
        logger.warning("Admin request to %s refused: no API_KEY with app_env=%s",
                       request.url.path, settings.app_env)
        raise HTTPException(status_code=403, detail="API key not configured on server")

    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        logger.info("Admin request to %s rejected: bad or missing %s", request.url.path, API_KEY_HEADER)
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return api_key
