"""
auth/credentials.py -- Credential Store: user identities and their secrets.

Only bcrypt digests ever reach the database. verify_credentials() returns the
same AuthFailed for every failure mode and always runs exactly one bcrypt
verification, so neither the error nor the response time tells an attacker
whether a username exists:
  - Unknown username: bcrypt runs against the hasher's dummy digest.
  - Wrong password:   bcrypt runs against the real digest.
  - Corrupt digest:   logged server-side, then the same AuthFailed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re

from auth.errors import AuthFailed, HashError, InvalidUsername
from auth.models import User
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.models import USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH, USERNAME_PATTERN

logger = logging.getLogger("levelgate.auth")

_USERNAME_RE = re.compile(USERNAME_PATTERN)


def normalize_username(username: str) -> str:
    """Lower-case and validate a username. Raises InvalidUsername."""
    name = (username or "").strip().lower()
    if not USERNAME_MIN_LENGTH <= len(name) <= USERNAME_MAX_LENGTH or not _USERNAME_RE.match(name):
        raise InvalidUsername()
    return name


class CredentialStore:
    def __init__(self, store: AuthStore, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher

    def create_user(self, username: str, plaintext: str) -> int:
        """Create a user and return its id. Raises DuplicateUsername or InvalidUsername."""
        name = normalize_username(username)
        user_id = self.store.create_user(User(username=name, password_hash=self.hasher.hash(plaintext)))
        logger.info("User created: %s (id=%s)", name, user_id)
        return user_id

    def verify_credentials(self, username: str, plaintext: str) -> int:
        """Return the user id for a correct username/password pair, else raise AuthFailed."""
        try:
            name = normalize_username(username)
        except InvalidUsername:
            # No such user can exist; still pay for one bcrypt run.
            self.hasher.burn(plaintext)
            raise AuthFailed() from None

        user = self.store.get_by_username(name)
        if user is None:
            self.hasher.burn(plaintext)
            raise AuthFailed()

        try:
            matched = self.hasher.verify(plaintext, user.password_hash)
        except HashError:
            logger.error("Stored password digest for user id=%s is malformed", user.id)
            raise AuthFailed() from None
        if not matched:
            raise AuthFailed()

        if self.hasher.needs_rehash(user.password_hash):
            self.store.update_password_hash(user.id, self.hasher.hash(plaintext))
            logger.info("Upgraded password digest cost for user id=%s", user.id)
        return user.id

    def change_password(self, user_id: int, old_plaintext: str, new_plaintext: str) -> None:
        """Replace the password after re-verifying the old one. Raises AuthFailed."""
        user = self.store.get_by_id(user_id)
        if user is None:
            self.hasher.burn(old_plaintext)
            raise AuthFailed()
        try:
            matched = self.hasher.verify(old_plaintext, user.password_hash)
        except HashError:
            logger.error("Stored password digest for user id=%s is malformed", user.id)
            raise AuthFailed() from None
        if not matched:
            raise AuthFailed()
        self.store.update_password_hash(user_id, self.hasher.hash(new_plaintext))
        logger.info("Password changed for user id=%s", user_id)

    def get_user(self, user_id: int) -> User | None:
        return self.store.get_by_id(user_id)

    def get_user_by_name(self, username: str) -> User | None:
        try:
            return self.store.get_by_username(normalize_username(username))
        except InvalidUsername:
            return None

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def delete_user(self, user_id: int) -> bool:
        """Delete the user and cascade to skill progress and sessions."""
        deleted = self.store.delete_user(user_id)
        if deleted:
            logger.info("User deleted: id=%s", user_id)
        return deleted
