"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Operator auth is applied at the include_router level using FastAPI's
dependencies parameter. Health is open. The GitHub hook receiver is not
under /api/v1 at all — GitHub posts to the bare callback URL and is
authenticated by signature (see api/hooks.py).
"""

from fastapi import APIRouter, Depends

from hookwarden.api.health import router as health_router
from hookwarden.api.org_webhooks import router as org_webhooks_router
from hookwarden.api.organizations import router as organizations_router
from hookwarden.auth.dependencies import require_operator

_auth = [Depends(require_operator)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])

# Operator routes
api_router.include_router(
    organizations_router, tags=["organizations", "users"], dependencies=_auth
)
api_router.include_router(org_webhooks_router, tags=["org-webhooks"], dependencies=_auth)
