"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Stores and
services do the work; these only own the shape. The one exception is
Session.state_at(), which derives the lifecycle state from stored flags and
a clock reading so every caller agrees on what "expired" means.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass
class User:
    """An identity in LevelGate. password_hash is a bcrypt digest, never plaintext."""

    username: str
    password_hash: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class SkillProgress:
    """Per-(user, skill) progression record.

    level is always derived from experience through the skill's curve.
    A record with level=0 and experience=0 is the default for users who
    were never awarded anything -- the ledger returns one instead of None.
    """

    user_id: int
    skill: str
    level: int = 0
    experience: int = 0
    updated_at: str | None = None


class SessionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Session:
    """A stored session. token_hash is HMAC-SHA256(SECRET_KEY, raw token).

    The raw token is never persisted; it only exists in IssuedToken.
    rotation counts how many times the login chain has been rotated.
    """

    token_hash: str
    user_id: int
    issued_at: datetime
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    expired: bool = False
    rotation: int = 0

    def state_at(self, now: datetime) -> SessionState:
        # Revocation wins over expiry: a logged-out token reports Revoked forever.
        if self.revoked:
            return SessionState.REVOKED
        if self.expired or now >= self.expires_at:
            return SessionState.EXPIRED
        return SessionState.ACTIVE

    @property
    def ttl_seconds(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


@dataclass
class IssuedToken:
    """A freshly issued raw token together with its stored session."""

    token: str
    session: Session

    @property
    def user_id(self) -> int:
        return self.session.user_id


@dataclass
class Validation:
    """Result of a successful session validation.

    replacement is set when the session was inside the renewal window and
    got rotated; the caller must hand replacement.token back to the client.
    """

    session: Session
    replacement: Optional[IssuedToken] = None

    @property
    def user_id(self) -> int:
        return self.session.user_id


@dataclass
class Decision:
    """The outcome of a permission check.

    reason is one of "allowed", "unknown_action", "disabled",
    "insufficient_level". skill/required_level/current_level are only
    filled for skill rules.
    """

    action: str
    allowed: bool
    reason: str
    skill: Optional[str] = None
    required_level: Optional[int] = None
    current_level: Optional[int] = None


@dataclass
class AuthorizationResult:
    """What the gateway hands back for authorize(token, action)."""

    user_id: int
    decision: Decision
    rotated_token: Optional[IssuedToken] = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed


@dataclass
class Profile:
    """A user's public view of themselves: identity, progress, unlocked actions."""

    user: User
    progress: list[SkillProgress] = field(default_factory=list)
    allowed_actions: list[str] = field(default_factory=list)
