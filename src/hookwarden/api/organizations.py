"""Organizations API — link GitHub orgs, register users, manage members.

Learn: Linking an organization is the only way an OrganizationWebhook
record comes into existence. Users carry the GitHub tokens; adding them
as members is what makes their tokens candidates for reconciliation.
Tokens are write-only: responses only say whether one is present.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden.db.engine import get_db
from hookwarden.db.models import User
from hookwarden.github.client import RemoteAPIError, get_github_client_factory
from hookwarden.services.org_webhook_service import ClientFactory, PersistenceConflictError
from hookwarden.services.organization_service import (
    OrganizationNotFoundError,
    OrganizationService,
    UserNotFoundError,
)

router = APIRouter()


# ─── Schemas ─────────────────────────────────────────────


class OrganizationLink(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    github_id: int = Field(..., gt=0, description="GitHub organization id")


class OrganizationRead(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    github_id: int
    organization_webhook_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    email: str
    name: str
    github_id: Optional[int] = None
    token: Optional[str] = None
    token_scopes: list[str] = Field(default_factory=list)


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    github_id: Optional[int] = None
    has_token: bool
    token_scopes: list[str]


class OrganizationDetail(OrganizationRead):
    members: list[UserRead]


class MemberAdd(BaseModel):
    user_id: uuid.UUID
    role: str = "member"


class MemberRead(BaseModel):
    id: int
    organization_id: uuid.UUID
    user_id: uuid.UUID
    role: str

    model_config = {"from_attributes": True}


def _user_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        email=user.email,
        name=user.name,
        github_id=user.github_id,
        has_token=bool(user.token and user.token.strip()),
        token_scopes=list(user.token_scopes or []),
    )


# ─── Organizations ───────────────────────────────────────


@router.post("/orgs", response_model=OrganizationRead, status_code=201)
async def link_organization(
    body: OrganizationLink,
    db: AsyncSession = Depends(get_db),
):
    """Link a local organization to a GitHub organization."""
    svc = OrganizationService(db)
    try:
        return await svc.link_organization(body.name, body.slug, body.github_id)
    except PersistenceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/orgs", response_model=list[OrganizationRead])
async def list_organizations(db: AsyncSession = Depends(get_db)):
    return await OrganizationService(db).list_organizations()


@router.get("/orgs/{org_id}", response_model=OrganizationDetail)
async def get_organization(
    org_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Organization with its members in join order."""
    org = await OrganizationService(db).get_organization(org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return OrganizationDetail(
        **OrganizationRead.model_validate(org).model_dump(),
        members=[_user_read(u) for u in org.users],
    )


@router.delete("/orgs/{org_id}")
async def unlink_organization(
    org_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    try:
        await OrganizationService(db).unlink_organization(org_id)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")
    return {"deleted": True}


@router.post("/orgs/{org_id}/members", response_model=MemberRead, status_code=201)
async def add_member(
    org_id: uuid.UUID,
    body: MemberAdd,
    db: AsyncSession = Depends(get_db),
):
    svc = OrganizationService(db)
    try:
        return await svc.add_member(org_id, body.user_id, role=body.role)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=404, detail="Organization not found")
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except PersistenceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ─── Users ───────────────────────────────────────────────


@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
):
    svc = OrganizationService(db)
    try:
        user = await svc.create_user(
            body.email,
            body.name,
            github_id=body.github_id,
            token=body.token,
            token_scopes=body.token_scopes,
        )
    except PersistenceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _user_read(user)


@router.post("/users/{user_id}/refresh-scopes", response_model=UserRead)
async def refresh_token_scopes(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_github_client_factory),
):
    """Re-read the user's token scopes from GitHub."""
    svc = OrganizationService(db, client_factory=client_factory)
    try:
        user = await svc.refresh_token_scopes(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except RemoteAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _user_read(user)
