"""hookwarden — keeps GitHub organization webhooks alive.

Links local organizations to GitHub organizations, picks a user token
that is allowed to manage org hooks, and makes sure an active webhook
points back at this service.
"""

__version__ = "0.1.0"
