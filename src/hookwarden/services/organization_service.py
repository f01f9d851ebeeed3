"""Organization service — linking orgs, users, and memberships.

Learn: Linking a local organization to a GitHub org is what brings an
OrganizationWebhook record into existence (find-or-create by GitHub org
id). Unlinking the last organization of a GitHub org removes the record
again. Memberships decide which tokens the reconciler may pick from.
"""

import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hookwarden.db.models import Organization, OrganizationMember, User
from hookwarden.events.store import EventStore, stream_for
from hookwarden.events.types import (
    ORGANIZATION_LINKED,
    ORGANIZATION_MEMBER_ADDED,
    ORGANIZATION_UNLINKED,
)
from hookwarden.github.client import GitHubClient
from hookwarden.services.org_webhook_service import (
    ClientFactory,
    OrganizationWebhookService,
    PersistenceConflictError,
)


class OrganizationNotFoundError(Exception):
    pass


class UserNotFoundError(Exception):
    pass


class OrganizationService:
    """Business logic for organizations and their members."""

    def __init__(self, db: AsyncSession, *, client_factory: ClientFactory = GitHubClient):
        self.db = db
        self.events = EventStore(db)
        self.client_factory = client_factory

    async def _commit_or_conflict(self, what: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflictError(f"{what} already exists") from e

    # ─── Organizations ──────────────────────────────────

    async def link_organization(
        self, name: str, slug: str, github_id: int
    ) -> Organization:
        """Create an organization and attach it to its GitHub org's webhook record."""
        webhook = await OrganizationWebhookService(self.db).find_or_create(github_id)

        org = Organization(
            name=name,
            slug=slug,
            github_id=github_id,
            organization_webhook_id=webhook.id,
        )
        self.db.add(org)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflictError(f"Organization slug {slug!r} already exists") from e

        await self.events.append(
            stream_id=stream_for("organization", org.id),
            event_type=ORGANIZATION_LINKED,
            data={
                "name": name,
                "slug": slug,
                "github_id": github_id,
                "org_webhook_id": str(webhook.id),
            },
        )
        await self._commit_or_conflict(f"Organization {slug!r}")
        await self.db.refresh(org)
        return org

    async def get_organization(self, org_id: uuid.UUID) -> Optional[Organization]:
        result = await self.db.execute(
            select(Organization)
            .where(Organization.id == org_id)
            .options(
                selectinload(Organization.users),
                selectinload(Organization.organization_webhook),
            )
        )
        return result.scalars().first()

    async def list_organizations(self) -> list[Organization]:
        result = await self.db.execute(select(Organization).order_by(Organization.name))
        return list(result.scalars().all())

    async def unlink_organization(self, org_id: uuid.UUID) -> bool:
        """Remove an organization; drop the webhook record if it was the last one."""
        org = await self.db.get(Organization, org_id)
        if not org:
            raise OrganizationNotFoundError(f"Organization {org_id} not found")

        webhook_id = org.organization_webhook_id
        github_id = org.github_id

        # Memberships first (FK constraint)
        await self.db.execute(
            delete(OrganizationMember).where(OrganizationMember.organization_id == org_id)
        )
        await self.db.delete(org)
        await self.db.flush()

        await self.events.append(
            stream_id=stream_for("organization", org_id),
            event_type=ORGANIZATION_UNLINKED,
            data={"github_id": github_id},
        )

        if webhook_id is not None:
            remaining = await self.db.execute(
                select(Organization.id)
                .where(Organization.organization_webhook_id == webhook_id)
                .limit(1)
            )
            if remaining.first() is None:
                # commits
                await OrganizationWebhookService(self.db).delete_webhook(webhook_id)
                return True

        await self.db.commit()
        return True

    # ─── Users ──────────────────────────────────────────

    async def create_user(
        self,
        email: str,
        name: str,
        *,
        github_id: Optional[int] = None,
        token: Optional[str] = None,
        token_scopes: Optional[list[str]] = None,
    ) -> User:
        user = User(
            email=email,
            name=name,
            github_id=github_id,
            token=token,
            token_scopes=token_scopes or [],
        )
        self.db.add(user)
        await self._commit_or_conflict(f"User {email!r}")
        await self.db.refresh(user)
        return user

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def refresh_token_scopes(self, user_id: uuid.UUID) -> User:
        """Ask GitHub which scopes the user's token has and store them.

        A user without a token ends up with no scopes.
        """
        user = await self.get_user(user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")

        if not (user.token and user.token.strip()):
            user.token_scopes = []
        else:
            async with self.client_factory(user.token) as client:
                user.token_scopes = await client.token_scopes()

        await self.db.commit()
        return user

    # ─── Memberships ────────────────────────────────────

    async def add_member(
        self, org_id: uuid.UUID, user_id: uuid.UUID, role: str = "member"
    ) -> OrganizationMember:
        if not await self.db.get(Organization, org_id):
            raise OrganizationNotFoundError(f"Organization {org_id} not found")
        if not await self.get_user(user_id):
            raise UserNotFoundError(f"User {user_id} not found")

        member = OrganizationMember(organization_id=org_id, user_id=user_id, role=role)
        self.db.add(member)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflictError(
                f"User {user_id} is already a member of organization {org_id}"
            ) from e

        await self.events.append(
            stream_id=stream_for("organization", org_id),
            event_type=ORGANIZATION_MEMBER_ADDED,
            data={"user_id": str(user_id), "role": role},
        )
        await self.db.commit()
        await self.db.refresh(member)
        return member
