"""Reconcile worker — periodically ensures every org webhook is active.

Learn: Runs as a long-lived task in the FastAPI lifespan. Each sweep
lists the records, then reconciles them one at a time, each in its own
DB session for transaction isolation. A failure on one record (no valid
token, GitHub down, lost race) is logged and the sweep moves on; the next
sweep tries again.

Usage:
    worker = ReconcileWorker(interval=300)
    asyncio.create_task(worker.run_loop())
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden.config import ConfigurationError
from hookwarden.db.models import OrganizationWebhook
from hookwarden.services.org_webhook_service import (
    ClientFactory,
    OrganizationWebhookService,
)

logger = structlog.get_logger()

SessionFactory = Callable[[], AsyncSession]


@dataclass
class SweepResult:
    """Outcome of one sweep."""
    ok: list[uuid.UUID] = field(default_factory=list)
    failed: dict[uuid.UUID, str] = field(default_factory=dict)


class ReconcileWorker:
    """Background worker that sweeps all organization webhooks."""

    def __init__(
        self,
        interval: float = 300.0,
        *,
        session_factory: Optional[SessionFactory] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.interval = interval
        self._session_factory = session_factory
        self._client_factory = client_factory
        self._running = False

    def _sessions(self) -> SessionFactory:
        if self._session_factory is None:
            from hookwarden.db.engine import async_session_factory

            self._session_factory = async_session_factory
        return self._session_factory

    def _service(self, db: AsyncSession) -> OrganizationWebhookService:
        if self._client_factory is None:
            return OrganizationWebhookService(db)
        return OrganizationWebhookService(db, client_factory=self._client_factory)

    async def run_loop(self) -> None:
        """Main worker loop — sweep, sleep, repeat."""
        self._running = True
        logger.info("reconcile_worker.started", interval=self.interval)

        while self._running:
            try:
                await self.sweep()
            except ConfigurationError:
                # Fatal for every record
                logger.exception("reconcile_worker.misconfigured")
                self._running = False
                raise
            except Exception:
                logger.exception("reconcile_worker.error")
            await asyncio.sleep(self.interval)

    async def sweep(self) -> SweepResult:
        """Reconcile every record once."""
        async with self._sessions()() as db:
            result = await db.execute(
                select(OrganizationWebhook.id).order_by(OrganizationWebhook.created_at)
            )
            webhook_ids = list(result.scalars().all())

        outcome = SweepResult()
        for webhook_id in webhook_ids:
            try:
                await self.reconcile_one(webhook_id)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning(
                    "reconcile_worker.record_failed",
                    org_webhook_id=str(webhook_id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                outcome.failed[webhook_id] = str(e)
            else:
                outcome.ok.append(webhook_id)

        logger.info(
            "reconcile_worker.sweep_done",
            ok=len(outcome.ok),
            failed=len(outcome.failed),
        )
        return outcome

    async def reconcile_one(self, webhook_id: uuid.UUID) -> bool:
        async with self._sessions()() as db:
            svc = self._service(db)
            webhook = await svc.get_webhook(webhook_id)
            if webhook is None:
                # Deleted since the sweep started
                return False
            return await svc.ensure_webhook_is_active(webhook)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("reconcile_worker.stopping")
