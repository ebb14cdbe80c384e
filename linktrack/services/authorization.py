"""
Authorizers for link administration.

Administrative engine operations take an authorizer and call
``require_link_admin()`` before doing anything. The HTTP layer builds an
``ApiKeyAuthorizer`` from the request; embedders can supply their own.
"""
import hmac
from typing import Optional

from linktrack.config import settings
from linktrack.services.errors import Unauthorized


class ApiKeyAuthorizer:
    """Grants administration when the presented key matches the master key."""

    def __init__(self, presented_key: Optional[str], expected_key: Optional[str] = None):
        self.presented_key = presented_key
        self.expected_key = expected_key if expected_key is not None else settings.master_api_key

    def require_link_admin(self) -> None:
        if not self.presented_key or not self.expected_key:
            raise Unauthorized("API key required for link administration")
        if not hmac.compare_digest(self.presented_key.encode(), self.expected_key.encode()):
            raise Unauthorized("Invalid API key")


class StaticAuthorizer:
    """Fixed decision, for trusted in-process callers and tests."""

    def __init__(self, allowed: bool = True):
        self.allowed = allowed

    def require_link_admin(self) -> None:
        if not self.allowed:
            raise Unauthorized()
