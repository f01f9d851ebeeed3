"""GitHub hook receiver — the callback URL every org hook points at.

Learn: This is the other end of the reconciliation loop. GitHub POSTs
organization events here, signed with the record's secret. We only
verify the signature and note that the hook is alive
(last_webhook_received_at); what the events mean is someone else's job.

GitHub headers used:
- X-GitHub-Hook-ID        which hook fired (matches OrganizationWebhook.github_id)
- X-GitHub-Event          event name ("ping" right after creation)
- X-Hub-Signature-256     "sha256=<hex HMAC of the raw body>"
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden.config import GITHUB_HOOKS_PATH
from hookwarden.db.engine import get_db
from hookwarden.services.org_webhook_service import OrganizationWebhookService

router = APIRouter()


@router.post(GITHUB_HOOKS_PATH)
async def receive_github_hook(
    request: Request,
    x_github_hook_id: Optional[str] = Header(None),
    x_github_event: str = Header("unknown"),
    x_hub_signature_256: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    if not x_github_hook_id or not x_github_hook_id.isdigit():
        raise HTTPException(status_code=400, detail="Missing X-GitHub-Hook-ID header")

    svc = OrganizationWebhookService(db)
    webhook = await svc.get_by_github_id(int(x_github_hook_id))
    if not webhook:
        raise HTTPException(status_code=404, detail="Unknown hook")

    # Read raw body for signature verification
    body = await request.body()
    if not x_hub_signature_256 or not svc.verify_signature(
        webhook.secret, body, x_hub_signature_256
    ):
        raise HTTPException(status_code=403, detail="Invalid signature")

    await svc.record_delivery(webhook, x_github_event)
    return {"status": "ok", "event_type": x_github_event}
