"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing these
models to the actual DB.

Key concepts:
- UUID primary keys for tenant-facing rows
- JSON columns that become JSONB on PostgreSQL (plain JSON elsewhere, which
  keeps the test suite on in-memory SQLite)
- Nullable-unique columns: GitHub ids are unique once known, NULL until then
- Optimistic locking on OrganizationWebhook (version_id_col) so two
  reconciliations of the same org can't silently overwrite each other
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ══════════════════════════════════════════════════════════════
# Organizations, users, memberships
# ══════════════════════════════════════════════════════════════


class Organization(Base):
    """A local organization linked to a GitHub organization.

    Learn: Several local organizations can point at the same GitHub org
    (e.g. one per semester or per course). They all share a single
    OrganizationWebhook row, because GitHub only needs one hook per org.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    github_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True
    )  # GitHub organization id
    organization_webhook_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("organization_webhooks.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    organization_webhook: Mapped[Optional["OrganizationWebhook"]] = relationship(
        back_populates="organizations"
    )
    users: Mapped[list["User"]] = relationship(
        secondary="organization_members",
        order_by="OrganizationMember.id",
        viewonly=True,
    )


class User(Base):
    """A GitHub user who signed in and granted us a token.

    Learn: token_scopes is what GitHub reported in X-OAuth-Scopes the last
    time we looked. Only users holding admin:org_hook can be used to
    create or inspect org webhooks.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    github_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, unique=True, nullable=True
    )
    token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_scopes: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class OrganizationMember(Base):
    """Organization membership — the explicit user↔organization join.

    Learn: The autoincrement id doubles as insertion order. Credential
    selection walks members in this order, so "first qualifying user"
    is deterministic.
    """

    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # owner, admin, member
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Organization webhooks
# ══════════════════════════════════════════════════════════════


class OrganizationWebhook(Base):
    """Reconciled state of one GitHub organization's webhook.

    Learn: github_id is the remote hook id. It stays NULL until the first
    successful creation and is overwritten whenever the hook has to be
    re-created. github_organization_id is the identity of the row.

    version_id is bumped by SQLAlchemy on every UPDATE and checked in the
    WHERE clause — a concurrent writer makes the flush fail with
    StaleDataError instead of winning silently.
    """

    __tablename__ = "organization_webhooks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    github_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, unique=True, nullable=True
    )
    github_organization_id: Mapped[int] = mapped_column(
        BigInteger, unique=True, nullable=False
    )
    secret: Mapped[str] = mapped_column(String(64), nullable=False)
    last_webhook_received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    organizations: Mapped[list["Organization"]] = relationship(
        back_populates="organization_webhook",
        order_by="Organization.created_at",
    )

    __mapper_args__ = {"version_id_col": version_id}


# ══════════════════════════════════════════════════════════════
# Event log
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log.

    stream_id examples: "org_webhook:<uuid>", "organization:<uuid>"
    type examples: "org_webhook.hook_created", "organization.linked"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )  # Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
