"""FastAPI auth dependencies."""

import hmac
from typing import Optional

from fastapi import Header, HTTPException

from hookwarden.config import settings


async def require_operator(x_api_key: Optional[str] = Header(None)) -> None:
    """Reject the request unless it carries the operator API key.

    Open when HOOKWARDEN_OPERATOR_API_KEY is empty (development only;
    Settings refuses an empty key in other environments).
    """
    expected = settings.operator_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
