"""hookwarden CLI — link organizations and keep their GitHub hooks alive.

Usage:
    hookwarden status                                  # Every org webhook record
    hookwarden link "Intro to CS" intro-cs 1234567     # Link a GitHub org
    hookwarden add-user ada@example.com "Ada" --token ghp_...
    hookwarden add-member <org-id> <user-id>           # Token becomes a candidate
    hookwarden ensure <org-webhook-id>                 # Reconcile one record
    hookwarden events <org-webhook-id>                 # Audit trail of a record

Talks to the running server over HTTP. HOOKWARDEN_API_URL points at it,
HOOKWARDEN_OPERATOR_API_KEY is sent as X-API-Key when set.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from hookwarden import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("HOOKWARDEN_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the hookwarden server."""
    headers = {}
    api_key = os.environ.get("HOOKWARDEN_OPERATOR_API_KEY")
    if api_key:
        headers["X-API-Key"] = api_key
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Inside an already running loop (CliRunner in async tests) the
    coroutine is offloaded to a thread with its own loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(
            str(row.get(k) if row.get(k) is not None else "-")[:w].ljust(w)
            for _, k, w in columns
        )
        click.echo(line)


def _check(r: httpx.Response) -> dict | list:
    """Exit with the server's error detail on a non-2xx response."""
    if r.is_error:
        try:
            detail = r.json().get("detail", r.text)
        except ValueError:
            detail = r.text
        click.secho(f"Error ({r.status_code}): {detail}", fg="red", err=True)
        sys.exit(1)
    return r.json()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="hookwarden")
def main():
    """hookwarden — keep GitHub organization webhooks active."""


# ---------------------------------------------------------------------------
# hookwarden status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show server health and every organization webhook record."""
    _run(_status_impl())


async def _status_impl():
    async with _client() as c:
        health = _check(await c.get("/api/v1/health"))
        color = "green" if health["status"] == "healthy" else "yellow"
        click.secho(f"Server: {health['status']}", fg=color, bold=True)
        if health.get("webhook_url") != "ok":
            click.secho(f"  webhook_url: {health.get('webhook_url')}", fg="yellow")
        click.echo()

        webhooks = _check(await c.get("/api/v1/org-webhooks"))
        if not webhooks:
            click.echo("No organization webhooks yet. Link an organization first.")
            return

        rows = [
            {
                **w,
                "hook": w["github_id"] if w["github_id"] is not None else "none",
                "orgs": len(w["organization_ids"]),
            }
            for w in webhooks
        ]
        _print_table(rows, [
            ("ID", "id", 36),
            ("GITHUB ORG", "github_organization_id", 12),
            ("HOOK", "hook", 12),
            ("ORGS", "orgs", 4),
            ("LAST DELIVERY", "last_webhook_received_at", 25),
        ])


# ---------------------------------------------------------------------------
# hookwarden link / add-user / add-member
# ---------------------------------------------------------------------------


@main.command()
@click.argument("name")
@click.argument("slug")
@click.argument("github_id", type=int)
def link(name: str, slug: str, github_id: int):
    """Link organization NAME (SLUG) to the GitHub org with id GITHUB_ID."""
    _run(_link_impl(name, slug, github_id))


async def _link_impl(name: str, slug: str, github_id: int):
    async with _client() as c:
        org = _check(await c.post("/api/v1/orgs", json={
            "name": name,
            "slug": slug,
            "github_id": github_id,
        }))
        click.secho(f"Linked {org['name']} ({org['id']})", fg="green")
        click.echo(f"  Org webhook: {org['organization_webhook_id']}")


@main.command("add-user")
@click.argument("email")
@click.argument("name")
@click.option("--github-id", type=int, help="GitHub user id")
@click.option("--token", help="GitHub access token (scopes are read from GitHub)")
def add_user(email: str, name: str, github_id: Optional[int], token: Optional[str]):
    """Register a user, optionally with a GitHub token."""
    _run(_add_user_impl(email, name, github_id, token))


async def _add_user_impl(
    email: str, name: str, github_id: Optional[int], token: Optional[str]
):
    async with _client() as c:
        user = _check(await c.post("/api/v1/users", json={
            "email": email,
            "name": name,
            "github_id": github_id,
            "token": token,
        }))
        if token:
            user = _check(await c.post(f"/api/v1/users/{user['id']}/refresh-scopes"))
        click.secho(f"User {user['email']} ({user['id']})", fg="green")
        scopes = ", ".join(user["token_scopes"]) or "none"
        click.echo(f"  Token scopes: {scopes}")


@main.command("add-member")
@click.argument("org_id")
@click.argument("user_id")
@click.option("--role", default="member", show_default=True)
def add_member(org_id: str, user_id: str, role: str):
    """Add USER_ID to organization ORG_ID."""
    _run(_add_member_impl(org_id, user_id, role))


async def _add_member_impl(org_id: str, user_id: str, role: str):
    async with _client() as c:
        _check(await c.post(
            f"/api/v1/orgs/{org_id}/members",
            json={"user_id": user_id, "role": role},
        ))
        click.secho(f"Added {user_id} to {org_id} as {role}", fg="green")


# ---------------------------------------------------------------------------
# hookwarden ensure / events
# ---------------------------------------------------------------------------


@main.command()
@click.argument("org_webhook_id")
@click.option("--token", help="Use this admin:org_hook token instead of picking a member's")
def ensure(org_webhook_id: str, token: Optional[str]):
    """Make sure the GitHub org behind ORG_WEBHOOK_ID has an active hook."""
    _run(_ensure_impl(org_webhook_id, token))


async def _ensure_impl(org_webhook_id: str, token: Optional[str]):
    body = {"token": token} if token else None
    async with _client() as c:
        result = _check(await c.post(
            f"/api/v1/org-webhooks/{org_webhook_id}/ensure-active", json=body
        ))
        webhook = result["org_webhook"]
        click.secho(
            f"Active: GitHub org {webhook['github_organization_id']} "
            f"hook {webhook['github_id']}",
            fg="green",
        )


@main.command()
@click.argument("org_webhook_id")
@click.option("--limit", default=20, show_default=True)
@click.option("--type", "event_types", multiple=True, help="Only this event type (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def events(org_webhook_id: str, limit: int, event_types: tuple[str, ...], as_json: bool):
    """Show the event log of ORG_WEBHOOK_ID."""
    _run(_events_impl(org_webhook_id, limit, event_types, as_json))


async def _events_impl(
    org_webhook_id: str, limit: int, event_types: tuple[str, ...], as_json: bool
):
    params: list[tuple[str, str | int]] = [("limit", limit)]
    params += [("type", t) for t in event_types]
    async with _client() as c:
        items = _check(await c.get(
            f"/api/v1/org-webhooks/{org_webhook_id}/events",
            params=params,
        ))

    if as_json:
        click.echo(_pretty_json(items))
        return
    if not items:
        click.echo("No events.")
        return
    for e in items:
        click.echo(f"  #{e['id']:<5d} {e['created_at'][:19]}  {e['type']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
