"""Operator authentication.

Learn: The management API is used by operators and automation, not end
users, so a single shared API key (X-API-Key header) is enough. The
GitHub hook receiver is authenticated by HMAC signature instead.
"""
