"""GitHub REST client — the handful of endpoints org webhook management needs.

Learn: A thin httpx.AsyncClient wrapper, one instance per token. Every
failure (connection error, timeout, 401/403, rate limit, 5xx) comes out
as RemoteAPIError tagged with the operation and GitHub org id, so callers
can decide on retry/backoff without knowing anything about httpx.

Organizations are addressed by numeric id (/organizations/{id}/...),
which survives org renames, unlike /orgs/{login}.

Endpoints:
- GET  /organizations/{org_id}/hooks/{hook_id}
- POST /organizations/{org_id}/hooks
- GET  /user  (only for the X-OAuth-Scopes response header)
"""

from typing import Any, Callable, Optional

import httpx
import structlog

from hookwarden import __version__
from hookwarden.config import settings

logger = structlog.get_logger()


class RemoteAPIError(Exception):
    """A GitHub API call failed.

    Learn: Carries enough context for the caller to log or retry.
    status_code is None for transport-level failures (DNS, timeouts,
    connection resets) where no response was received.
    """

    def __init__(
        self,
        operation: str,
        github_organization_id: Optional[int],
        message: str,
        *,
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.github_organization_id = github_organization_id
        self.status_code = status_code
        detail = f"{operation} failed"
        if github_organization_id is not None:
            detail += f" for GitHub organization {github_organization_id}"
        if status_code is not None:
            detail += f" (HTTP {status_code})"
        super().__init__(f"{detail}: {message}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


def _json_object(
    operation: str, github_organization_id: Optional[int], response: httpx.Response
) -> dict:
    """Decode a 2xx body that must be a JSON object (a proxy page is not)."""
    try:
        body = response.json()
    except ValueError as e:
        raise RemoteAPIError(
            operation,
            github_organization_id,
            "invalid JSON response",
            status_code=response.status_code,
        ) from e
    if not isinstance(body, dict):
        raise RemoteAPIError(
            operation,
            github_organization_id,
            "invalid JSON response",
            status_code=response.status_code,
        )
    return body


class GitHubClient:
    """Async GitHub API client bound to one access token."""

    def __init__(
        self,
        token: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self._http = httpx.AsyncClient(
            base_url=(base_url or settings.github_api_url).rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": f"hookwarden/{__version__}",
            },
            timeout=timeout if timeout is not None else settings.github_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        operation: str,
        github_organization_id: Optional[int],
        method: str,
        path: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        """Send a request and translate failures into RemoteAPIError.

        Returns None for a 404 when allow_not_found is set.
        """
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "github.transport_error",
                operation=operation,
                github_organization_id=github_organization_id,
                error=str(e),
            )
            raise RemoteAPIError(
                operation, github_organization_id, str(e) or type(e).__name__
            ) from e

        if allow_not_found and response.status_code == 404:
            return None

        if response.is_error:
            logger.warning(
                "github.request_failed",
                operation=operation,
                github_organization_id=github_organization_id,
                status_code=response.status_code,
            )
            raise RemoteAPIError(
                operation,
                github_organization_id,
                _error_message(response),
                status_code=response.status_code,
            )
        return response

    # ─── Organization hooks ──────────────────────────────

    async def get_org_hook(
        self, github_organization_id: int, hook_id: int
    ) -> Optional[dict]:
        """Fetch an org hook. None if GitHub no longer knows the hook."""
        response = await self._request(
            "get_org_hook",
            github_organization_id,
            "GET",
            f"/organizations/{github_organization_id}/hooks/{hook_id}",
            allow_not_found=True,
        )
        if response is None:
            return None
        return _json_object("get_org_hook", github_organization_id, response)

    async def create_org_hook(
        self,
        github_organization_id: int,
        *,
        url: str,
        secret: str,
        events: list[str],
        active: bool = True,
    ) -> dict:
        """Create a JSON webhook on the organization. Returns the hook object."""
        response = await self._request(
            "create_org_hook",
            github_organization_id,
            "POST",
            f"/organizations/{github_organization_id}/hooks",
            json={
                "name": "web",
                "active": active,
                "events": events,
                "config": {
                    "url": url,
                    "content_type": "json",
                    "secret": secret,
                    "insecure_ssl": "0",
                },
            },
        )
        hook = _json_object("create_org_hook", github_organization_id, response)
        hook_id = hook.get("id")
        if isinstance(hook_id, str) and hook_id.isdigit():
            hook_id = int(hook_id)
        if not isinstance(hook_id, int) or isinstance(hook_id, bool) or hook_id <= 0:
            raise RemoteAPIError(
                "create_org_hook",
                github_organization_id,
                "response did not include a valid hook id",
                status_code=response.status_code,
            )
        hook["id"] = hook_id
        return hook

    # ─── Token introspection ─────────────────────────────

    async def token_scopes(self) -> list[str]:
        """Scopes granted to this token, from the X-OAuth-Scopes header."""
        response = await self._request("token_scopes", None, "GET", "/user")
        header = response.headers.get("X-OAuth-Scopes", "")
        return [scope.strip() for scope in header.split(",") if scope.strip()]


def get_github_client_factory() -> Callable[[str], GitHubClient]:
    """FastAPI dependency — how a token becomes a client (overridden in tests)."""
    return GitHubClient
