"""
X-API-Key guard for the job and queue routers.

Off unless API_AUTH_ENABLED is set; the key is compared against API_KEY.
Both are read on every request. Webhook and health routes are mounted
without this dependency (GitHub authenticates with signatures instead).
"""

import hmac
import os
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

API_KEY_HEADER_NAME = "X-API-Key"

api_key_header = APIKeyHeader(
    name=API_KEY_HEADER_NAME,
    auto_error=False,
    description="Required on /api/jobs and /api/queue when API_AUTH_ENABLED=true",
)


def is_auth_enabled() -> bool:
    return os.getenv("API_AUTH_ENABLED", "false").strip().lower() in ("true", "1", "yes", "on")


def get_api_key() -> str:
    return os.getenv("API_KEY", "")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Reject the request unless auth is off or the header matches API_KEY.

    An empty API_KEY with auth enabled rejects every key.
    """
    if not is_auth_enabled():
        return None

    if not api_key:
        raise _unauthorized(f"Missing API key. Provide {API_KEY_HEADER_NAME} header.")

    configured = get_api_key()
    if not configured or not hmac.compare_digest(api_key.encode(), configured.encode()):
        raise _unauthorized("Invalid API key")

    return api_key
