"""
auth/errors.py -- Error taxonomy for the permission engine.

Every failure the core reports is a LevelGateError subclass so the transport
layer can map the whole family with a handful of exception handlers.

AuthFailed is undifferentiated: unknown username, wrong password
and a corrupted stored hash all raise the same instance type with the same
message so callers cannot enumerate accounts.

Denied carries the skill, required level and current level. Disclosing these
is safe -- it says the caller's level is too low, not whether any resource
exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Optional


class LevelGateError(Exception):
    """Base class for all errors raised by the auth core."""

    code = "error"
    message = "An unspecified error has occurred."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)


class DuplicateUsername(LevelGateError):
    code = "duplicate_username"
    message = "That username is already taken."


class InvalidUsername(LevelGateError, ValueError):
    code = "invalid_username"
    message = "Usernames must be 2-64 characters of letters, digits, '_', '-', '.' or '!'."


class AuthFailed(LevelGateError):
    code = "bad_credentials"
    message = "Invalid username or password."


class HashError(LevelGateError, ValueError):
    code = "hash_error"
    message = "Stored password digest is malformed."


class LookupFailed(LevelGateError, KeyError):
    code = "not_found"
    message = "No such record."

    def __str__(self) -> str:
        # KeyError.__str__ wraps the message in quotes.
        return str(self.args[0]) if self.args else self.message


class UnknownSkill(LookupFailed):
    code = "unknown_skill"
    message = "No skill with that name is configured."


class UnknownUser(LookupFailed):
    code = "unknown_user"
    message = "No user with that id exists."


class StoreUnavailable(LevelGateError):
    """The backing store failed. Retryable by the caller; the core never retries."""

    code = "store_unavailable"
    message = "The credential store is temporarily unavailable."


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionError(LevelGateError):
    code = "session_error"
    message = "Session is not valid."


class SessionNotFound(SessionError):
    code = "session_not_found"
    message = "Session not found."


class SessionExpired(SessionError):
    code = "session_expired"
    message = "Session has expired."


class SessionRevoked(SessionError):
    code = "session_revoked"
    message = "Session has been revoked."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Denied(LevelGateError):
    """The user's level is too low (or the action is unknown/disabled)."""

    code = "denied"
    message = "You are not allowed to perform this action."

    def __init__(
        self,
        action: str,
        reason: str,
        skill: Optional[str] = None,
        required_level: Optional[int] = None,
        current_level: Optional[int] = None,
    ) -> None:
        self.action = action
        self.reason = reason
        self.skill = skill
        self.required_level = required_level
        self.current_level = current_level
        if skill is not None:
            detail = f"{action!r} requires {skill} level {required_level} (current: {current_level})."
        else:
            detail = f"{action!r} is not allowed ({reason})."
        super().__init__(detail)
