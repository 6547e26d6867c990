"""
auth/gateway.py -- Authentication Gateway: the single trust boundary.

The transport layer (api/) talks to AuthGateway and nothing else. It
composes the credential store, session manager, skill ledger and permission
resolver into the operations a request actually needs:

  login(username, password)   -> IssuedToken            | AuthFailed
  authorize(token, action)    -> AuthorizationResult    | SessionError
  require(token, action)      -> AuthorizationResult    | SessionError, Denied

authorize() reports a denial as data (result.allowed is False, with the
reason); require() raises Denied instead, for callers that want to bail out.

Administrative operations (awarding experience, overriding levels, deleting
users) take the acting user's id and check it against the MANAGE_SKILLS /
MANAGE_USERS rules before touching anything. An actor can never edit their
own progress -- otherwise one manage_skills grant would be enough to climb to
any level.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.credentials import CredentialStore
from auth.errors import AuthFailed, Denied, UnknownUser
from auth.ledger import SkillLedger
from auth.models import AuthorizationResult, IssuedToken, Profile, Session, SkillProgress, User, Validation
from auth.passwords import PasswordHasher
from auth.permissions import PermissionResolver
from auth.sessions import Clock, SessionManager, utc_now
from auth.store import AuthStore
from core.catalog import MANAGE_SKILLS, MANAGE_USERS, Catalog
from core.config import Settings

logger = logging.getLogger("levelgate.gateway")


class AuthGateway:
    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionManager,
        ledger: SkillLedger,
        resolver: PermissionResolver,
    ) -> None:
        self.credentials = credentials
        self.sessions = sessions
        self.ledger = ledger
        self.resolver = resolver

    @classmethod
    def build(cls, store: AuthStore, catalog: Catalog, settings: Settings, clock: Clock = utc_now) -> "AuthGateway":
        """Wire every component from one store, one catalog and the settings."""
        ledger = SkillLedger(store, catalog)
        return cls(
            credentials=CredentialStore(store, PasswordHasher(rounds=settings.bcrypt_rounds)),
            sessions=SessionManager(
                store,
                secret_key=settings.secret_key,
                default_ttl=settings.token_ttl_seconds,
                renewal_window=settings.session_renewal_window_seconds,
                max_rotations=settings.session_max_rotations,
                clock=clock,
            ),
            ledger=ledger,
            resolver=PermissionResolver(catalog, ledger),
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def register(self, username: str, password: str) -> int:
        return self.credentials.create_user(username, password)

    def login(self, username: str, password: str, ttl: int | None = None) -> IssuedToken:
        """Verify credentials and issue a session. Raises AuthFailed."""
        try:
            user_id = self.credentials.verify_credentials(username, password)
        except AuthFailed:
            logger.warning("Failed login attempt")
            raise
        issued = self.sessions.issue(user_id, ttl)
        logger.info("Login succeeded for user id=%s", user_id)
        return issued

    def logout(self, token: str) -> bool:
        return self.sessions.revoke(token)

    def logout_everywhere(self, token: str) -> int:
        """Revoke every session of the token's owner, the presented one included."""
        validation = self.authenticate(token)
        return self.sessions.revoke_all(validation.user_id)

    def change_password(self, user_id: int, old_password: str, new_password: str) -> int:
        """Change the password and revoke all of the user's sessions. Returns the number revoked."""
        self.credentials.change_password(user_id, old_password, new_password)
        return self.sessions.revoke_all(user_id)

    # ------------------------------------------------------------------
    # Sessions and authorization
    # ------------------------------------------------------------------

    def authenticate(self, token: str) -> Validation:
        """Validate token. Raises SessionNotFound / SessionExpired / SessionRevoked."""
        return self.sessions.validate(token)

    def authorize(self, token: str, action: str) -> AuthorizationResult:
        validation = self.authenticate(token)
        decision = self.resolver.check(validation.user_id, action)
        if not decision.allowed:
            logger.info("Denied %r for user id=%s (%s)", action, validation.user_id, decision.reason)
        return AuthorizationResult(
            user_id=validation.user_id,
            decision=decision,
            rotated_token=validation.replacement,
        )

    def require(self, token: str, action: str) -> AuthorizationResult:
        result = self.authorize(token, action)
        if not result.allowed:
            d = result.decision
            raise Denied(d.action, d.reason, d.skill, d.required_level, d.current_level)
        return result

    def check_user(self, user_id: int, action: str) -> None:
        """Raise Denied unless user_id may perform action."""
        d = self.resolver.check(user_id, action)
        if not d.allowed:
            raise Denied(d.action, d.reason, d.skill, d.required_level, d.current_level)

    def get_user(self, user_id: int) -> User:
        user = self.credentials.get_user(user_id)
        if user is None:
            raise UnknownUser(f"No user with id {user_id}.")
        return user

    def list_users(self) -> list[User]:
        return self.credentials.list_users()

    def active_sessions(self, user_id: int) -> list[Session]:
        return self.sessions.list_active(user_id)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def profile(self, user_id: int) -> Profile:
        user = self.credentials.get_user(user_id)
        if user is None:
            # A live session whose user row vanished: treat like bad credentials.
            raise AuthFailed()
        return Profile(
            user=user,
            progress=self.ledger.get_all_progress(user_id),
            allowed_actions=self.resolver.allowed_actions(user_id),
        )

    def award_experience(self, actor_id: int, user_id: int, skill: str, amount: int) -> SkillProgress:
        self._check_admin(actor_id, user_id, MANAGE_SKILLS)
        self._require_user(user_id)
        progress = self.ledger.award_experience(user_id, skill, amount)
        logger.info("User id=%s awarded %d %s xp to user id=%s", actor_id, amount, skill, user_id)
        return progress

    def set_level(self, actor_id: int, user_id: int, skill: str, level: int) -> SkillProgress:
        self._check_admin(actor_id, user_id, MANAGE_SKILLS)
        self._require_user(user_id)
        return self.ledger.set_level_directly(user_id, skill, level)

    def delete_user(self, actor_id: int, user_id: int) -> bool:
        self._check_admin(actor_id, user_id, MANAGE_USERS)
        return self.credentials.delete_user(user_id)

    def _check_admin(self, actor_id: int, user_id: int, action: str) -> None:
        if actor_id == user_id:
            raise Denied(action, "self_edit")
        self.check_user(actor_id, action)

    def _require_user(self, user_id: int) -> None:
        self.get_user(user_id)
