"""Org webhooks API + GitHub hook receiver tests.

Learn: Tests cover:
1. Listing and reading records
2. ensure-active success, idempotence, explicit token
3. Error mapping (422 / 502 / 409 / 500) for the four failure modes
4. The receiver: hook id lookup, HMAC signature check, delivery stamp
5. Event log and record deletion
"""

import hashlib
import hmac
import json
import uuid

import pytest

from hookwarden.config import settings
from hookwarden.services.credentials import ADMIN_ORG_HOOK_SCOPE


async def _link_with_admin(client, github_id=4242, *, scopes=(ADMIN_ORG_HOOK_SCOPE,)):
    """Link an org, add one user with a token, return the org webhook id."""
    r = await client.post("/api/v1/orgs", json={
        "name": "Intro to CS",
        "slug": f"intro-{uuid.uuid4().hex[:8]}",
        "github_id": github_id,
    })
    assert r.status_code == 201
    org = r.json()

    r = await client.post("/api/v1/users", json={
        "email": f"{uuid.uuid4().hex[:8]}@example.com",
        "name": "Admin",
        "token": "admin-token",
        "token_scopes": list(scopes),
    })
    user = r.json()
    r = await client.post(f"/api/v1/orgs/{org['id']}/members", json={"user_id": user["id"]})
    assert r.status_code == 201
    return org["organization_webhook_id"]


def _sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ═══════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_and_get(client):
    webhook_id = await _link_with_admin(client)

    r = await client.get("/api/v1/org-webhooks")
    assert r.status_code == 200
    assert [w["id"] for w in r.json()] == [webhook_id]

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.status_code == 200
    data = r.json()
    assert data["github_organization_id"] == 4242
    assert data["github_id"] is None
    assert len(data["organization_ids"]) == 1
    assert "secret" not in data


@pytest.mark.asyncio
async def test_get_unknown_returns_404(client):
    r = await client.get(f"/api/v1/org-webhooks/{uuid.uuid4()}")
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# ensure-active
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_ensure_active_creates_hook(client, github, webhook_prefix):
    webhook_id = await _link_with_admin(client)

    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    assert r.status_code == 200
    data = r.json()
    assert data["active"] is True
    hook_id = data["org_webhook"]["github_id"]
    assert hook_id in github.hooks
    assert github.hooks[hook_id]["config"]["url"] == f"{webhook_prefix}/github/hooks"

    # Already active: one read, no second create
    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    assert r.status_code == 200
    assert r.json()["org_webhook"]["github_id"] == hook_id
    assert len(github.creates()) == 1
    assert len(github.reads()) == 1


@pytest.mark.asyncio
async def test_ensure_active_with_explicit_token(client, github, webhook_prefix):
    r = await client.post("/api/v1/orgs", json={
        "name": "No Members", "slug": "no-members", "github_id": 777,
    })
    webhook_id = r.json()["organization_webhook_id"]

    r = await client.post(
        f"/api/v1/org-webhooks/{webhook_id}/ensure-active",
        json={"token": "operator-token"},
    )
    assert r.status_code == 200
    assert [token for _, _, token in github.calls] == ["operator-token"]


@pytest.mark.asyncio
async def test_ensure_active_without_credential_is_422(client, github, webhook_prefix):
    webhook_id = await _link_with_admin(client, scopes=("repo",))

    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    assert r.status_code == 422
    assert "admin:org_hook" in r.json()["detail"]
    assert github.calls == []


@pytest.mark.asyncio
async def test_ensure_active_github_failure_is_502(client, github, webhook_prefix):
    webhook_id = await _link_with_admin(client)
    github.create_status = 500

    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    assert r.status_code == 502
    assert "create_org_hook" in r.json()["detail"]

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.json()["github_id"] is None


@pytest.mark.asyncio
async def test_ensure_active_conflict_is_409(client, github, webhook_prefix):
    first = await _link_with_admin(client, github_id=1111)
    second = await _link_with_admin(client, github_id=2222)

    r = await client.post(f"/api/v1/org-webhooks/{first}/ensure-active")
    assert r.status_code == 200

    # GitHub hands out the same id again; the unique constraint rejects it
    github.next_hook_id -= 1
    r = await client.post(f"/api/v1/org-webhooks/{second}/ensure-active")
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_ensure_active_without_webhook_url_is_500(client, github, monkeypatch):
    monkeypatch.setattr(settings, "webhook_url_prefix", None)
    webhook_id = await _link_with_admin(client)

    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    assert r.status_code == 500
    assert "HOOKWARDEN_WEBHOOK_URL_PREFIX" in r.json()["detail"]
    assert github.calls == []


@pytest.mark.asyncio
async def test_ensure_active_unknown_record(client):
    r = await client.post(f"/api/v1/org-webhooks/{uuid.uuid4()}/ensure-active")
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Receiver
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_receiver_records_delivery(client, github, webhook_prefix):
    webhook_id = await _link_with_admin(client)
    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    hook_id = r.json()["org_webhook"]["github_id"]
    secret = github.hooks[hook_id]["config"]["secret"]

    body = json.dumps({"zen": "Keep it logically awesome.", "hook_id": hook_id}).encode()
    r = await client.post(
        "/github/hooks",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": "ping",
            "X-GitHub-Hook-ID": str(hook_id),
            "X-Hub-Signature-256": _sign(secret, body),
        },
    )
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "event_type": "ping"}

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.json()["last_webhook_received_at"] is not None

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}/events")
    types = [e["type"] for e in r.json()]
    assert types == [
        "org_webhook.created",
        "org_webhook.hook_created",
        "org_webhook.delivery_received",
    ]


@pytest.mark.asyncio
async def test_receiver_rejects_bad_signature(client, github, webhook_prefix):
    webhook_id = await _link_with_admin(client)
    r = await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")
    hook_id = r.json()["org_webhook"]["github_id"]

    body = b'{"action": "created"}'
    r = await client.post(
        "/github/hooks",
        content=body,
        headers={
            "X-GitHub-Event": "repository",
            "X-GitHub-Hook-ID": str(hook_id),
            "X-Hub-Signature-256": _sign("wrong-secret", body),
        },
    )
    assert r.status_code == 403

    r = await client.post(
        "/github/hooks",
        content=body,
        headers={"X-GitHub-Event": "repository", "X-GitHub-Hook-ID": str(hook_id)},
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_receiver_unknown_or_missing_hook_id(client):
    r = await client.post("/github/hooks", content=b"{}", headers={"X-GitHub-Hook-ID": "123"})
    assert r.status_code == 404

    r = await client.post("/github/hooks", content=b"{}")
    assert r.status_code == 400


# ═══════════════════════════════════════════════════════════
# Events + deletion
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_events_limit(client):
    webhook_id = await _link_with_admin(client)

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}/events", params={"limit": 1})
    assert r.status_code == 200
    events = r.json()
    assert len(events) == 1
    assert events[0]["type"] == "org_webhook.created"
    assert events[0]["data"]["github_organization_id"] == 4242


@pytest.mark.asyncio
async def test_delete_detaches_organizations(client):
    webhook_id = await _link_with_admin(client)
    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}")
    org_id = r.json()["organization_ids"][0]

    r = await client.delete(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.status_code == 200
    assert r.json() == {"deleted": True}

    r = await client.get(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.status_code == 404

    r = await client.get(f"/api/v1/orgs/{org_id}")
    assert r.status_code == 200
    assert r.json()["organization_webhook_id"] is None

    r = await client.delete(f"/api/v1/org-webhooks/{webhook_id}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_events_filtered_by_type(client, webhook_prefix):
    webhook_id = await _link_with_admin(client)
    await client.post(f"/api/v1/org-webhooks/{webhook_id}/ensure-active")

    r = await client.get(
        f"/api/v1/org-webhooks/{webhook_id}/events",
        params={"type": "org_webhook.hook_created"},
    )
    assert r.status_code == 200
    assert [e["type"] for e in r.json()] == ["org_webhook.hook_created"]

    r = await client.get(
        f"/api/v1/org-webhooks/{webhook_id}/events",
        params=[("type", "org_webhook.created"), ("type", "org_webhook.hook_created")],
    )
    assert [e["type"] for e in r.json()] == ["org_webhook.created", "org_webhook.hook_created"]

    first_id = r.json()[0]["id"]
    r = await client.get(
        f"/api/v1/org-webhooks/{webhook_id}/events", params={"after_id": first_id}
    )
    assert [e["type"] for e in r.json()] == ["org_webhook.hook_created"]
