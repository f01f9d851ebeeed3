"""Reconcile worker tests — sweeps keep going past per-record failures."""

import uuid

import pytest

from hookwarden.config import ConfigurationError, settings
from hookwarden.services.credentials import ADMIN_ORG_HOOK_SCOPE
from hookwarden.services.org_webhook_service import OrganizationWebhookService
from hookwarden.services.organization_service import OrganizationService
from hookwarden.services.reconcile_worker import ReconcileWorker, SweepResult


async def _link(db, github_org_id, token=None):
    orgs = OrganizationService(db)
    org = await orgs.link_organization(f"Org {github_org_id}", f"org-{github_org_id}", github_org_id)
    if token:
        user = await orgs.create_user(
            f"admin-{github_org_id}@example.com", "Admin",
            token=token, token_scopes=[ADMIN_ORG_HOOK_SCOPE],
        )
        await orgs.add_member(org.id, user.id, role="admin")
    return org.organization_webhook_id


@pytest.mark.asyncio
async def test_sweep_isolates_failures(
    db_session, session_factory, github, client_factory, webhook_prefix
):
    broken = await _link(db_session, 1001)  # nobody with admin:org_hook
    healthy = await _link(db_session, 1002, token="t")

    worker = ReconcileWorker(session_factory=session_factory, client_factory=client_factory)
    result = await worker.sweep()

    assert result.ok == [healthy]
    assert list(result.failed) == [broken]
    assert "admin:org_hook" in result.failed[broken]
    assert len(github.creates()) == 1

    async with session_factory() as db:
        webhook = await OrganizationWebhookService(db).get_webhook(healthy)
        assert webhook.github_id is not None


@pytest.mark.asyncio
async def test_sweep_stops_on_missing_webhook_url(
    db_session, session_factory, github, client_factory, monkeypatch
):
    monkeypatch.setattr(settings, "webhook_url_prefix", None)
    await _link(db_session, 1003, token="t")

    worker = ReconcileWorker(session_factory=session_factory, client_factory=client_factory)
    with pytest.raises(ConfigurationError):
        await worker.sweep()
    assert github.creates() == []


@pytest.mark.asyncio
async def test_reconcile_one_missing_record(session_factory, client_factory):
    worker = ReconcileWorker(session_factory=session_factory, client_factory=client_factory)
    assert await worker.reconcile_one(uuid.uuid4()) is False


@pytest.mark.asyncio
async def test_run_loop_survives_sweep_errors():
    worker = ReconcileWorker(interval=0)
    calls = 0

    async def flaky_sweep():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database unavailable")
        worker.stop()
        return SweepResult()

    worker.sweep = flaky_sweep
    await worker.run_loop()
    assert calls == 2


@pytest.mark.asyncio
async def test_run_loop_stops_on_configuration_error():
    worker = ReconcileWorker(interval=0)

    async def misconfigured():
        raise ConfigurationError("no prefix")

    worker.sweep = misconfigured
    with pytest.raises(ConfigurationError):
        await worker.run_loop()
    assert worker._running is False
