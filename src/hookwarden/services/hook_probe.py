"""Remote webhook probe — is the org's hook on GitHub still active?"""

import structlog

from hookwarden.db.models import OrganizationWebhook
from hookwarden.github.client import GitHubClient

logger = structlog.get_logger()


async def is_webhook_active(
    webhook: OrganizationWebhook, client: GitHubClient
) -> bool:
    """Check the remote hook behind an OrganizationWebhook record.

    Learn: No github_id means we never created a hook for this org, so
    there is nothing to ask GitHub about — return False without a
    round trip. A hook GitHub no longer knows (404, e.g. an org owner
    deleted it in the UI) is also reported as inactive so the caller
    re-creates it. Every other failure propagates as RemoteAPIError.
    """
    if webhook.github_id is None:
        return False

    hook = await client.get_org_hook(
        webhook.github_organization_id, webhook.github_id
    )
    if hook is None:
        logger.info(
            "org_webhook.remote_hook_missing",
            org_webhook_id=str(webhook.id),
            github_organization_id=webhook.github_organization_id,
            github_id=webhook.github_id,
        )
        return False
    return bool(hook.get("active"))
