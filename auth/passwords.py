"""
auth/passwords.py -- One-way salted password hashing (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection builds a
  password longer than 72 bytes, which bcrypt 4.x rejects outright.

  Every digest embeds its own salt and cost ("$2b$12$<salt><hash>"), so
  verify() needs nothing but the plaintext and the stored string, and a cost
  change only affects newly hashed passwords. needs_rehash() lets the
  credential store upgrade old digests on the next successful login.

  bcrypt.checkpw compares in constant time. The hasher also keeps a dummy
  digest at the configured cost so the credential store can burn the same
  CPU for unknown usernames as for real ones.

  HashError is raised only for digests that are not bcrypt at all (e.g. a
  corrupted row). A wrong password is just False.

  bcrypt only reads 72 bytes. hash() refuses longer input instead of
  truncating, and verify() reports False for it after doing the same work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re
from functools import cached_property

import bcrypt

from auth.errors import HashError

# $2a$ / $2b$ / $2y$, two-digit cost, 53 chars of bcrypt base64 (22 salt + 31 hash).
_BCRYPT_RE = re.compile(r"^\$2[aby]\$(\d{2})\$[./A-Za-z0-9]{53}$")

MAX_PASSWORD_BYTES = 72

DEFAULT_ROUNDS = 12


class PasswordHasher:
    """bcrypt hash/verify with a configurable cost.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("correct horse")
        hasher.verify("correct horse", digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31.")
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext with a fresh random salt."""
        secret = plaintext.encode("utf-8")
        if len(secret) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Passwords are limited to {MAX_PASSWORD_BYTES} bytes.")
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest. Raises HashError if digest is malformed."""
        _cost_of(digest)
        secret = plaintext.encode("utf-8")
        try:
            matched = bcrypt.checkpw(secret[:MAX_PASSWORD_BYTES], digest.encode("utf-8"))
        except ValueError as exc:
            # bcrypt rejects salts it cannot decode even when the shape looks right.
            raise HashError() from exc
        # No stored digest can come from more than 72 bytes.
        return matched and len(secret) <= MAX_PASSWORD_BYTES

    def needs_rehash(self, digest: str) -> bool:
        """True if digest was produced with a different cost than this hasher's."""
        return _cost_of(digest) != self.rounds

    @cached_property
    def dummy_digest(self) -> str:
        """A digest at the configured cost, for timing equalization.

        Computed on first use so that constructing a hasher stays cheap.
        """
        return self.hash("levelgate_timing_dummy")

    def burn(self, plaintext: str) -> None:
        """Run a full verify against the dummy digest and discard the result."""
        self.verify(plaintext, self.dummy_digest)


def _cost_of(digest: str) -> int:
    match = _BCRYPT_RE.match(digest or "")
    if match is None:
        raise HashError()
    return int(match.group(1))
