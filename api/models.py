"""
API request and response models for LevelGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: auth/ + core/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Decision, Session, SkillProgress
from core.models import USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH, USERNAME_PATTERN, Skill

# bcrypt only looks at the first 72 bytes; refuse longer input instead of truncating silently.
_Password = Annotated[str, Field(min_length=8, max_length=72)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=USERNAME_MIN_LENGTH, max_length=USERNAME_MAX_LENGTH, pattern=USERNAME_PATTERN)
    password: _Password


class LoginRequest(BaseModel):
    """Login body. No format checks: a malformed username must fail like a wrong one (401, not 422)."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class PasswordChangeRequest(BaseModel):
    old_password: str = Field(max_length=255)
    new_password: _Password


class AuthorizeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    action: str = Field(min_length=1, max_length=128)


class AwardRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    skill: str = Field(min_length=1, max_length=64)
    amount: int = Field(ge=0, le=1_000_000_000)


class SetLevelRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    skill: str = Field(min_length=1, max_length=64)
    level: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str


class ProgressRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    skill: str
    level: int
    experience: int
    max_level: int
    next_level_at: Optional[int] = None

    @classmethod
    def from_progress(cls, progress: SkillProgress, skill: Skill) -> "ProgressRow":
        next_at = skill.thresholds[progress.level + 1] if progress.level < skill.max_level else None
        return cls(
            skill=progress.skill,
            level=progress.level,
            experience=progress.experience,
            max_level=skill.max_level,
            next_level_at=next_at,
        )


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    created_at: str
    skills: list[ProgressRow]
    allowed_actions: list[str]


class DecisionResponse(BaseModel):
    """Response for POST /auth/authorize -- boolean plus reason."""

    model_config = ConfigDict(frozen=True)

    action: str
    allowed: bool
    reason: str
    skill: Optional[str] = None
    required_level: Optional[int] = None
    current_level: Optional[int] = None

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionResponse":
        return cls(
            action=decision.action,
            allowed=decision.allowed,
            reason=decision.reason,
            skill=decision.skill,
            required_level=decision.required_level,
            current_level=decision.current_level,
        )


class SessionRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    issued_at: str
    expires_at: str
    rotation: int

    @classmethod
    def from_session(cls, session: Session) -> "SessionRow":
        return cls(
            id=session.id,
            issued_at=session.issued_at.isoformat(),
            expires_at=session.expires_at.isoformat(),
            rotation=session.rotation,
        )


class SkillDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    thresholds: list[int]
    max_level: int


class UserRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    created_at: str


class RevokedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class DeniedDetail(ErrorDetail):
    """Error payload for 403 responses. Names the skill level the caller is missing."""

    action: str
    reason: str
    skill: Optional[str] = None
    required_level: Optional[int] = None
    current_level: Optional[int] = None
