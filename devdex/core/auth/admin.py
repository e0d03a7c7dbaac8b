"""Single shared-secret admin gate.

Write operations take an explicit AuthContext rather than reading
ambient session state. The HTTP layer builds the context from the
session cookie after a password login.
"""

import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..exceptions import AuthorizationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Proof that the admin gate passed (or did not)."""
    is_admin: bool
    authenticated_at: Optional[float] = None

    def require_admin(self):
        if not self.is_admin:
            raise AuthorizationError("Admin access required")

    @classmethod
    def anonymous(cls) -> "AuthContext":
        return cls(is_admin=False)

    @classmethod
    def admin(cls, authenticated_at: Optional[float] = None) -> "AuthContext":
        return cls(is_admin=True, authenticated_at=authenticated_at or time.time())


class AdminGate:
    """Password check plus session expiry for the admin role."""

    def __init__(self, password: str, session_ttl_hours: int = 24):
        self._password = password
        self.session_ttl_seconds = session_ttl_hours * 3600

    def check_password(self, candidate: str) -> bool:
        ok = hmac.compare_digest(
            (candidate or "").encode("utf-8"), self._password.encode("utf-8")
        )
        if not ok:
            logger.warning("Admin login rejected")
        return ok

    def context_for(self, authenticated_at: Optional[float], now: Optional[float] = None) -> AuthContext:
        """Build an AuthContext from a stored login timestamp."""
        if authenticated_at is None:
            return AuthContext.anonymous()
        now = now if now is not None else time.time()
        if now - float(authenticated_at) > self.session_ttl_seconds:
            return AuthContext.anonymous()
        return AuthContext.admin(float(authenticated_at))
