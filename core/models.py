from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.progression import validate_thresholds

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Canonical username format. A domain rule -- not an API contract.
# The credential store and the API request models both import from here.
USERNAME_PATTERN = r"^[\w\-.!]+$"
USERNAME_MIN_LENGTH = 2
USERNAME_MAX_LENGTH = 64


class RuleEffect(str, Enum):
    SKILL = "skill"  # requires (skill, min_level)
    ALLOW = "allow"  # public action, ledger never consulted
    DENY = "deny"  # disabled action, kept in the table


@dataclass(frozen=True)
class Skill:
    """A named progression track.

    thresholds[i] is the experience needed for level i. The curve is
    validated on construction so a bad catalog fails at startup, not on the
    first award.
    """

    name: str
    thresholds: tuple[int, ...]
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "thresholds", validate_thresholds(self.thresholds))

    @property
    def max_level(self) -> int:
        return len(self.thresholds) - 1


@dataclass(frozen=True)
class PermissionRule:
    action: str
    effect: RuleEffect = RuleEffect.SKILL
    skill: Optional[str] = None
    min_level: int = 0

    def __post_init__(self) -> None:
        if self.effect is RuleEffect.SKILL:
            if not self.skill:
                raise ValueError(f"Rule {self.action!r} needs a skill.")
            if self.min_level < 0:
                raise ValueError(f"Rule {self.action!r} has a negative min_level.")
        elif self.skill is not None:
            raise ValueError(f"Rule {self.action!r} is {self.effect.value!r} and cannot name a skill.")

    @classmethod
    def allow(cls, action: str) -> "PermissionRule":
        return cls(action=action, effect=RuleEffect.ALLOW)

    @classmethod
    def deny(cls, action: str) -> "PermissionRule":
        return cls(action=action, effect=RuleEffect.DENY)
