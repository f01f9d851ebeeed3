"""GitHub API access.

Learn: Everything that talks to api.github.com lives here. Services
receive a GitHubClient (or build one from a user's token) and never
touch httpx directly.
"""

from hookwarden.github.client import (
    GitHubClient,
    RemoteAPIError,
    get_github_client_factory,
)

__all__ = ["GitHubClient", "RemoteAPIError", "get_github_client_factory"]
