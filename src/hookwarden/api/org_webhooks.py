"""Organization webhooks API — inspect records and trigger reconciliation.

Learn: POST /org-webhooks/{id}/ensure-active is the HTTP face of
OrganizationWebhookService.ensure_webhook_is_active(). Each failure mode
maps to its own status code so callers can tell them apart:

- 422  no linked user has an admin:org_hook token (relink someone)
- 502  GitHub call failed (retry later)
- 409  another reconciliation won the race (re-read, maybe retry)
- 500  HOOKWARDEN_WEBHOOK_URL_PREFIX is not configured (fix deployment)
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden.config import ConfigurationError
from hookwarden.db.engine import get_db
from hookwarden.db.models import OrganizationWebhook
from hookwarden.events.store import EventStore, stream_for
from hookwarden.github.client import RemoteAPIError, get_github_client_factory
from hookwarden.services.credentials import NoValidCredentialError
from hookwarden.services.org_webhook_service import (
    ClientFactory,
    OrganizationWebhookNotFoundError,
    OrganizationWebhookService,
    PersistenceConflictError,
)

router = APIRouter(prefix="/org-webhooks")


# ─── Schemas ─────────────────────────────────────────────


class OrgWebhookRead(BaseModel):
    id: uuid.UUID
    github_id: Optional[int] = None
    github_organization_id: int
    last_webhook_received_at: Optional[datetime] = None
    organization_ids: list[uuid.UUID]
    created_at: datetime
    updated_at: datetime


class EnsureActiveRequest(BaseModel):
    token: Optional[str] = None  # pre-verified admin:org_hook token; skips selection


class EnsureActiveResult(BaseModel):
    active: bool
    org_webhook: OrgWebhookRead


class EventRead(BaseModel):
    id: int
    type: str
    data: dict
    created_at: datetime

    model_config = {"from_attributes": True}


def _webhook_read(webhook: OrganizationWebhook) -> OrgWebhookRead:
    return OrgWebhookRead(
        id=webhook.id,
        github_id=webhook.github_id,
        github_organization_id=webhook.github_organization_id,
        last_webhook_received_at=webhook.last_webhook_received_at,
        organization_ids=[org.id for org in webhook.organizations],
        created_at=webhook.created_at,
        updated_at=webhook.updated_at,
    )


async def _get_or_404(svc: OrganizationWebhookService, webhook_id: uuid.UUID):
    webhook = await svc.get_webhook(webhook_id)
    if not webhook:
        raise HTTPException(status_code=404, detail="Organization webhook not found")
    return webhook


# ─── Routes ──────────────────────────────────────────────


@router.get("", response_model=list[OrgWebhookRead])
async def list_org_webhooks(db: AsyncSession = Depends(get_db)):
    webhooks = await OrganizationWebhookService(db).list_webhooks()
    return [_webhook_read(w) for w in webhooks]


@router.get("/{webhook_id}", response_model=OrgWebhookRead)
async def get_org_webhook(
    webhook_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    svc = OrganizationWebhookService(db)
    return _webhook_read(await _get_or_404(svc, webhook_id))


@router.post("/{webhook_id}/ensure-active", response_model=EnsureActiveResult)
async def ensure_active(
    webhook_id: uuid.UUID,
    body: Optional[EnsureActiveRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_github_client_factory),
):
    """Make sure the GitHub org has an active hook pointing at this service."""
    svc = OrganizationWebhookService(db, client_factory=client_factory)
    webhook = await _get_or_404(svc, webhook_id)
    # Read before reconciling: a failed write rolls the session back.
    snapshot = _webhook_read(webhook)

    try:
        if body and body.token:
            async with client_factory(body.token) as client:
                active = await svc.ensure_webhook_is_active(webhook, client=client)
        else:
            active = await svc.ensure_webhook_is_active(webhook)
    except NoValidCredentialError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RemoteAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except PersistenceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    result = snapshot.model_copy(
        update={"github_id": webhook.github_id, "updated_at": webhook.updated_at}
    )
    return EnsureActiveResult(active=active, org_webhook=result)


@router.get("/{webhook_id}/events", response_model=list[EventRead])
async def list_events(
    webhook_id: uuid.UUID,
    event_type: Optional[list[str]] = Query(None, alias="type"),
    after_id: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
):
    """Audit trail of a record: creation, hook (re)creations, deliveries.

    Repeat ?type= to filter, e.g. ?type=org_webhook.hook_created.
    """
    svc = OrganizationWebhookService(db)
    await _get_or_404(svc, webhook_id)
    return await EventStore(db).read_stream(
        stream_for("org_webhook", webhook_id),
        event_types=event_type,
        after_id=after_id,
        limit=limit,
    )


@router.delete("/{webhook_id}")
async def delete_org_webhook(
    webhook_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Forget a record. Its organizations stay, unattached."""
    try:
        await OrganizationWebhookService(db).delete_webhook(webhook_id)
    except OrganizationWebhookNotFoundError:
        raise HTTPException(status_code=404, detail="Organization webhook not found")
    return {"deleted": True}
