"""
Credential resolution — which API key a request goes out with.

Priority, per provider:
    1. key the user saved in their own settings
    2. administrator fallback key (config.yaml `api_keys`, usually ${ENV})
    3. nothing → the adapter raises MissingCredentialError

Provider names are matched case-insensitively ("OpenAI" == "openai").
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def _normalize(keys: dict | None) -> dict[str, str]:
    """Lowercase provider names and drop blank keys (unset env vars resolve to "")."""
    return {
        str(name).lower(): str(value).strip()
        for name, value in (keys or {}).items()
        if value and str(value).strip()
    }


class CredentialResolver:
    """Resolve an API key for a provider from user and administrator keys."""

    def __init__(self, user_keys: dict | None = None, admin_keys: dict | None = None):
        self.user_keys = _normalize(user_keys)
        self.admin_keys = _normalize(admin_keys)

    def resolve(self, provider: str) -> str | None:
        name = provider.lower()
        if name in self.user_keys:
            return self.user_keys[name]
        if name in self.admin_keys:
            logger.debug("Using administrator key for %s", provider)
            return self.admin_keys[name]
        return None

    def with_user_keys(self, user_keys: dict | None) -> CredentialResolver:
        """Same administrator keys, different user."""
        resolver = CredentialResolver(admin_keys=None)
        resolver.user_keys = _normalize(user_keys)
        resolver.admin_keys = dict(self.admin_keys)
        return resolver
