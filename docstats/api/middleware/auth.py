"""
Service Authentication Middleware
Shared-secret check for calls from trusted internal services
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from docstats.config import Settings, get_settings

service_token_header = APIKeyHeader(name="x-service-token", auto_error=False)


async def require_service_token(
    token: Optional[str] = Depends(service_token_header),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Dependency guarding write endpoints.

    Raises:
        HTTPException: 403 if the token is missing or does not match
    """
    if not token or not secrets.compare_digest(token, settings.INTERNAL_SERVICE_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing service token",
        )
    return token
