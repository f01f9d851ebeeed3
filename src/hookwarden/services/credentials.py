"""Credential selection — which user's token may manage org webhooks.

Learn: GitHub only lets a token create or read organization hooks when
it carries the admin:org_hook scope. Any member of a linked organization
may have signed in with such a token, so we scan the members (in the
order they joined) and take the first one that qualifies. Pure function,
no I/O: the caller loads the users.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from hookwarden.db.models import User

ADMIN_ORG_HOOK_SCOPE = "admin:org_hook"


class NoValidCredentialError(Exception):
    """No associated user has a token with the admin:org_hook scope."""


@dataclass(frozen=True)
class Credential:
    """An access token plus what GitHub said it may do."""
    token: str
    scopes: tuple[str, ...] = field(default_factory=tuple)
    user_id: Optional[uuid.UUID] = None


def has_admin_org_hook_scope(user: User) -> bool:
    """True if the user has a token AND that token has admin:org_hook."""
    token_present = bool(user.token and user.token.strip())
    return token_present and ADMIN_ORG_HOOK_SCOPE in (user.token_scopes or [])


def users_with_admin_org_hook_scope(users: Iterable[User]) -> list[User]:
    """Qualifying users, order preserved."""
    return [user for user in users if has_admin_org_hook_scope(user)]


def select_credential(users: Iterable[User]) -> Credential:
    """Pick the first qualifying user's token.

    Raises NoValidCredentialError when nobody qualifies (including when
    there are no users at all).
    """
    qualifying = users_with_admin_org_hook_scope(users)
    if not qualifying:
        raise NoValidCredentialError(
            "No linked user has a GitHub token with the "
            f"{ADMIN_ORG_HOOK_SCOPE} scope"
        )
    user = qualifying[0]
    return Credential(
        token=user.token,
        scopes=tuple(user.token_scopes or ()),
        user_id=user.id,
    )
