"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Organization linking ────────────────────────────────

ORGANIZATION_LINKED = "organization.linked"
ORGANIZATION_UNLINKED = "organization.unlinked"
ORGANIZATION_MEMBER_ADDED = "organization.member_added"

# ─── Organization webhooks ───────────────────────────────

ORG_WEBHOOK_CREATED = "org_webhook.created"  # local record
ORG_WEBHOOK_DELETED = "org_webhook.deleted"
ORG_WEBHOOK_HOOK_CREATED = "org_webhook.hook_created"  # remote hook on GitHub
ORG_WEBHOOK_DELIVERY_RECEIVED = "org_webhook.delivery_received"
