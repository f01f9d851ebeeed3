"""Organization webhook service — records + the reconciliation protocol.

Learn: OrganizationWebhookService owns one question: "does this GitHub
organization have an active webhook pointing at us?" The answer is
produced by ensure_webhook_is_active(), which runs three steps:

1. Credential — use the client the caller passed in, or build one from
   the first linked user whose token has admin:org_hook.
2. Probe — no known hook id means "not active" without calling GitHub;
   otherwise read the hook and look at its active flag.
3. Branch — active: done, nothing written. Not active: create a hook on
   GitHub and store its id on the record, overwriting any stale id.

Every failure is its own exception and reaches the caller untouched:
NoValidCredentialError, RemoteAPIError, PersistenceConflictError,
ConfigurationError. Nothing is retried here; retrying is up to the
caller.
"""

import hashlib
import hmac
import secrets
import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from hookwarden.config import Settings, settings
from hookwarden.db.models import (
    Organization,
    OrganizationMember,
    OrganizationWebhook,
    User,
    utcnow,
)
from hookwarden.events.store import EventStore, stream_for
from hookwarden.events.types import (
    ORG_WEBHOOK_CREATED,
    ORG_WEBHOOK_DELETED,
    ORG_WEBHOOK_DELIVERY_RECEIVED,
    ORG_WEBHOOK_HOOK_CREATED,
)
from hookwarden.github.client import GitHubClient
from hookwarden.realtime.pubsub import try_publish_event
from hookwarden.services import credentials
from hookwarden.services.hook_probe import is_webhook_active

logger = structlog.get_logger()

ClientFactory = Callable[[str], GitHubClient]


class PersistenceConflictError(Exception):
    """A write lost a race: unique constraint or version check failed."""


class OrganizationWebhookNotFoundError(Exception):
    pass


class OrganizationWebhookService:
    """Business logic for organization webhook records."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        client_factory: ClientFactory = GitHubClient,
        config: Settings = settings,
    ):
        self.db = db
        self.events = EventStore(db)
        self.client_factory = client_factory
        self.settings = config

    # ─── Records ────────────────────────────────────────

    async def get_webhook(self, webhook_id: uuid.UUID) -> Optional[OrganizationWebhook]:
        result = await self.db.execute(
            select(OrganizationWebhook)
            .where(OrganizationWebhook.id == webhook_id)
            .options(selectinload(OrganizationWebhook.organizations))
        )
        return result.scalars().first()

    async def get_by_github_organization_id(
        self, github_organization_id: int
    ) -> Optional[OrganizationWebhook]:
        result = await self.db.execute(
            select(OrganizationWebhook).where(
                OrganizationWebhook.github_organization_id == github_organization_id
            )
        )
        return result.scalars().first()

    async def get_by_github_id(self, github_id: int) -> Optional[OrganizationWebhook]:
        """Look a record up by its remote hook id."""
        result = await self.db.execute(
            select(OrganizationWebhook).where(OrganizationWebhook.github_id == github_id)
        )
        return result.scalars().first()

    async def list_webhooks(self) -> list[OrganizationWebhook]:
        result = await self.db.execute(
            select(OrganizationWebhook)
            .options(selectinload(OrganizationWebhook.organizations))
            .order_by(OrganizationWebhook.created_at, OrganizationWebhook.id)
        )
        return list(result.scalars().all())

    async def find_or_create(self, github_organization_id: int) -> OrganizationWebhook:
        """Return the record for a GitHub org, creating it on first link.

        Flushes but does not commit — the caller commits together with
        whatever it is linking.
        """
        existing = await self.get_by_github_organization_id(github_organization_id)
        if existing:
            return existing

        webhook = OrganizationWebhook(
            github_organization_id=github_organization_id,
            secret=secrets.token_hex(20),
        )
        self.db.add(webhook)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflictError(
                f"GitHub organization {github_organization_id} was linked concurrently"
            ) from e

        await self.events.append(
            stream_id=stream_for("org_webhook", webhook.id),
            event_type=ORG_WEBHOOK_CREATED,
            data={
                "org_webhook_id": str(webhook.id),
                "github_organization_id": github_organization_id,
            },
        )
        return webhook

    async def delete_webhook(self, webhook_id: uuid.UUID) -> bool:
        """Delete a record and detach its organizations.

        The hook on GitHub is left alone; without a record it simply
        stops being reconciled.
        """
        webhook = await self.db.get(OrganizationWebhook, webhook_id)
        if not webhook:
            raise OrganizationWebhookNotFoundError(
                f"Organization webhook {webhook_id} not found"
            )

        github_organization_id = webhook.github_organization_id
        await self.db.execute(
            update(Organization)
            .where(Organization.organization_webhook_id == webhook_id)
            .values(organization_webhook_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(OrganizationWebhook).where(OrganizationWebhook.id == webhook_id)
        )

        await self.events.append(
            stream_id=stream_for("org_webhook", webhook_id),
            event_type=ORG_WEBHOOK_DELETED,
            data={
                "org_webhook_id": str(webhook_id),
                "github_organization_id": github_organization_id,
            },
        )
        await self.db.commit()
        return True

    # ─── Credential selection ───────────────────────────

    async def candidate_users(self, webhook: OrganizationWebhook) -> list[User]:
        """Users of every organization linked to the record, in join order.

        A user who is a member of two linked organizations appears once,
        at their earliest membership.
        """
        result = await self.db.execute(
            select(User)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .join(Organization, Organization.id == OrganizationMember.organization_id)
            .where(Organization.organization_webhook_id == webhook.id)
            .order_by(OrganizationMember.id)
        )
        seen: set[uuid.UUID] = set()
        users = []
        for user in result.scalars().all():
            if user.id not in seen:
                seen.add(user.id)
                users.append(user)
        return users

    async def users_with_admin_org_hook_scope(
        self, webhook: OrganizationWebhook
    ) -> list[User]:
        return credentials.users_with_admin_org_hook_scope(
            await self.candidate_users(webhook)
        )

    async def admin_org_hook_scoped_github_client(
        self, webhook: OrganizationWebhook
    ) -> GitHubClient:
        """Build a GitHub client from the first qualifying user's token.

        Raises NoValidCredentialError if nobody qualifies. The caller owns
        the returned client and must close it.
        """
        credential = credentials.select_credential(await self.candidate_users(webhook))
        logger.debug(
            "org_webhook.credential_selected",
            org_webhook_id=str(webhook.id),
            user_id=str(credential.user_id),
        )
        return self.client_factory(credential.token)

    # ─── Reconciliation ─────────────────────────────────

    async def is_active(self, webhook: OrganizationWebhook, client: GitHubClient) -> bool:
        return await is_webhook_active(webhook, client)

    async def create_org_hook(
        self, webhook: OrganizationWebhook, client: GitHubClient
    ) -> bool:
        """Create the hook on GitHub and store its id on the record.

        Learn: The callback URL is resolved first, so a missing
        HOOKWARDEN_WEBHOOK_URL_PREFIX fails before anything is sent to
        GitHub. The record is only touched after GitHub answered with a
        hook id; if GitHub fails, nothing is written.
        """
        webhook_id = webhook.id
        github_organization_id = webhook.github_organization_id
        previous_github_id = webhook.github_id
        log = logger.bind(
            org_webhook_id=str(webhook_id),
            github_organization_id=github_organization_id,
        )

        url = self.settings.webhook_url
        hook = await client.create_org_hook(
            github_organization_id,
            url=url,
            secret=webhook.secret,
            events=list(self.settings.webhook_events),
        )
        github_id = int(hook["id"])

        webhook.github_id = github_id
        try:
            await self.events.append(
                stream_id=stream_for("org_webhook", webhook_id),
                event_type=ORG_WEBHOOK_HOOK_CREATED,
                data={
                    "org_webhook_id": str(webhook_id),
                    "github_organization_id": github_organization_id,
                    "github_id": github_id,
                    "previous_github_id": previous_github_id,
                },
            )
            await self.db.commit()
        except (IntegrityError, StaleDataError) as e:
            await self.db.rollback()
            log.warning("org_webhook.persist_conflict", github_id=github_id, error=str(e))
            raise PersistenceConflictError(
                f"Could not store hook {github_id} for GitHub organization "
                f"{github_organization_id}: the record was changed concurrently"
            ) from e

        log.info(
            "org_webhook.hook_created",
            github_id=github_id,
            previous_github_id=previous_github_id,
        )
        await try_publish_event(
            github_organization_id,
            ORG_WEBHOOK_HOOK_CREATED,
            {"org_webhook_id": str(webhook_id), "github_id": github_id},
        )
        return True

    async def ensure_webhook_is_active(
        self,
        webhook: OrganizationWebhook,
        client: Optional[GitHubClient] = None,
    ) -> bool:
        """Make sure the GitHub org has an active hook pointing at us.

        Pass client to skip credential selection (e.g. a background job
        holding a pre-verified admin token). Returns True on success;
        every failure raises.
        """
        if client is not None:
            return await self._ensure_with(webhook, client)

        async with await self.admin_org_hook_scoped_github_client(webhook) as scoped:
            return await self._ensure_with(webhook, scoped)

    async def _ensure_with(self, webhook: OrganizationWebhook, client: GitHubClient) -> bool:
        if await self.is_active(webhook, client):
            logger.debug(
                "org_webhook.active",
                org_webhook_id=str(webhook.id),
                github_id=webhook.github_id,
            )
            return True
        return await self.create_org_hook(webhook, client)

    # ─── Incoming deliveries ────────────────────────────

    @staticmethod
    def verify_signature(secret: str, payload: bytes, signature: str) -> bool:
        """Verify GitHub's X-Hub-Signature-256 (HMAC-SHA256)."""
        expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        if signature.startswith("sha256="):
            signature = signature[7:]
        return hmac.compare_digest(expected, signature)

    async def record_delivery(self, webhook: OrganizationWebhook, event_type: str) -> None:
        """Stamp last_webhook_received_at.

        Bulk UPDATE: version_id is left as is, so a delivery never
        conflicts with an in-flight reconciliation.
        """
        await self.db.execute(
            update(OrganizationWebhook)
            .where(OrganizationWebhook.id == webhook.id)
            .values(last_webhook_received_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        await self.events.append(
            stream_id=stream_for("org_webhook", webhook.id),
            event_type=ORG_WEBHOOK_DELIVERY_RECEIVED,
            data={"org_webhook_id": str(webhook.id), "event_type": event_type},
        )
        await self.db.commit()
