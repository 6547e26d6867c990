"""
auth/sessions.py -- Session Manager: issue, validate, rotate and revoke tokens.

Token design:
  Tokens are secrets.token_urlsafe(32) -- 256 bits of entropy, opaque to the
  client. The store only ever sees HMAC-SHA256(SECRET_KEY, token), so a
  leaked sessions table cannot be replayed without SECRET_KEY. The HMAC is
  deterministic, which keeps validation to one indexed lookup.

Lifecycle:
  Active -> Expired   lazily, the first time validate() sees now >= expires_at.
                      The Expired flag is persisted; no scheduler is needed.
  Active -> Revoked   on revoke()/revoke_all() or when rotated away.
  Expired and Revoked are terminal. Every validate() goes to the store, so a
  revocation is visible to the next request with no cache to invalidate.

Rotation:
  When fewer than renewal_window seconds remain, validate() revokes the
  presented token and issues a replacement with the same TTL in one store
  transaction. The caller must send the replacement to the client. A stolen
  token therefore stops working as soon as the legitimate client rotates,
  and max_rotations (if non-zero) bounds how long one login can be stretched.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import SessionExpired, SessionNotFound, SessionRevoked
from auth.models import IssuedToken, Session, SessionState, Validation
from auth.store import AuthStore

logger = logging.getLogger("levelgate.sessions")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_token() -> str:
    """Return a new opaque session token (256 bits, URL-safe base64)."""
    return secrets.token_urlsafe(32)


class SessionManager:
    """Usage:
    sessions = SessionManager(store, secret_key=settings.secret_key)
    issued = sessions.issue(user_id)
    user_id = sessions.validate(issued.token).user_id
    sessions.revoke(issued.token)
    """

    def __init__(
        self,
        store: AuthStore,
        secret_key: str,
        default_ttl: int = 3600,
        renewal_window: int = 0,
        max_rotations: int = 0,
        clock: Clock = utc_now,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("Session TTL must be positive.")
        self.store = store
        self._secret = secret_key.encode("utf-8")
        self.default_ttl = default_ttl
        self.renewal_window = renewal_window
        self.max_rotations = max_rotations
        self.clock = clock

    def hash_token(self, token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, token) as hex -- the stored form of a token."""
        return hmac.new(self._secret, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, user_id: int, ttl: int | None = None) -> IssuedToken:
        """Create an Active session for user_id expiring ttl seconds from now."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("Session TTL must be positive.")
        now = self.clock()
        token = generate_token()
        session = self.store.create_session(
            Session(
                token_hash=self.hash_token(token),
                user_id=user_id,
                issued_at=now,
                expires_at=now + timedelta(seconds=ttl),
            )
        )
        logger.info("Session issued for user id=%s (ttl=%ds)", user_id, ttl)
        return IssuedToken(token=token, session=session)

    def validate(self, token: str) -> Validation:
        """Resolve token to its session, rotating it if it is close to expiry.

        Raises SessionNotFound, SessionExpired or SessionRevoked.
        """
        session = self.store.get_session(self.hash_token(token)) if token else None
        if session is None:
            raise SessionNotFound()

        now = self.clock()
        state = session.state_at(now)
        if state is SessionState.REVOKED:
            raise SessionRevoked()
        if state is SessionState.EXPIRED:
            if not session.expired:
                self.store.mark_expired(session.id)
                logger.info("Session id=%s for user id=%s expired", session.id, session.user_id)
            raise SessionExpired()

        replacement = None
        if self._due_for_rotation(session, now):
            replacement = self._rotate(session, now)
        return Validation(session=session, replacement=replacement)

    def _due_for_rotation(self, session: Session, now: datetime) -> bool:
        if self.renewal_window <= 0:
            return False
        if self.max_rotations and session.rotation >= self.max_rotations:
            return False
        return session.expires_at - now <= timedelta(seconds=self.renewal_window)

    def _rotate(self, session: Session, now: datetime) -> IssuedToken | None:
        token = generate_token()
        replacement = Session(
            token_hash=self.hash_token(token),
            user_id=session.user_id,
            issued_at=now,
            expires_at=now + timedelta(seconds=session.ttl_seconds),
            rotation=session.rotation + 1,
        )
        stored = self.store.rotate_session(session.token_hash, replacement)
        if stored is None:
            # Another request rotated this session first; it owns the replacement.
            return None
        logger.info("Session id=%s rotated to id=%s for user id=%s", session.id, stored.id, session.user_id)
        return IssuedToken(token=token, session=stored)

    def revoke(self, token: str) -> bool:
        """Revoke one token. Returns False if it was unknown or already revoked."""
        revoked = self.store.revoke_session(self.hash_token(token))
        if revoked:
            logger.info("Session revoked")
        return revoked

    def revoke_all(self, user_id: int) -> int:
        """Revoke every session held by user_id."""
        count = self.store.revoke_user_sessions(user_id)
        logger.info("Revoked %d session(s) for user id=%s", count, user_id)
        return count

    def list_active(self, user_id: int) -> list[Session]:
        return self.store.list_active_sessions(user_id, self.clock())

    def purge_expired(self) -> int:
        """Delete dead session rows. Maintenance only -- validate() never depends on it."""
        count = self.store.purge_sessions(self.clock())
        if count:
            logger.info("Purged %d dead session(s)", count)
        return count
