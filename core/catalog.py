"""
core/catalog.py -- The process-wide skill and permission-rule catalog.

The catalog is loaded once at startup (API lifespan or CLI entry) and is
never mutated afterwards. Catalog is a frozen dataclass over read-only
mappings; the Skill Ledger and Permission Resolver receive it as a
constructor argument instead of reading a module global.

Catalog file format (JSON, validated with pydantic):

    {
      "skills": [{"name": "publishing", "thresholds": [0, 100, 500]}],
      "rules": [
        {"action": "publish_post", "skill": "publishing", "min_level": 1},
        {"action": "read_post", "effect": "allow"},
        {"action": "legacy_export", "effect": "deny"}
      ]
    }

Cross-checks run at load time: every skill rule must reference a known skill
and a min_level the skill can actually reach.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.config import get_settings
from core.models import PermissionRule, RuleEffect, Skill

logger = logging.getLogger("levelgate.catalog")

# Actions the gateway itself checks before administrative operations.
MANAGE_SKILLS = "manage_skills"
MANAGE_USERS = "manage_users"

DEFAULT_CATALOG: dict = {
    "skills": [
        {"name": "publishing", "thresholds": [0, 100, 500], "description": "Writing and publishing posts."},
        {"name": "moderation", "thresholds": [0, 50, 250, 1000], "description": "Keeping discussions civil."},
        {
            "name": "administration",
            "thresholds": [0, 1000, 10000],
            "description": "Managing other users and their skills.",
        },
    ],
    "rules": [
        {"action": "read_post", "effect": "allow"},
        {"action": "view_profile", "effect": "allow"},
        {"action": "create_post", "skill": "publishing", "min_level": 0},
        {"action": "publish_post", "skill": "publishing", "min_level": 1},
        {"action": "feature_post", "skill": "publishing", "min_level": 2},
        {"action": "flag_post", "skill": "moderation", "min_level": 1},
        {"action": "delete_post", "skill": "moderation", "min_level": 2},
        {"action": "ban_user", "skill": "moderation", "min_level": 3},
        {"action": MANAGE_SKILLS, "skill": "administration", "min_level": 1},
        {"action": MANAGE_USERS, "skill": "administration", "min_level": 2},
        {"action": "bulk_export", "effect": "deny"},
    ],
}


# ---------------------------------------------------------------------------
# File schema (pydantic) -- parses untrusted JSON into domain objects
# ---------------------------------------------------------------------------


class _SkillEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=64)
    thresholds: list[int] = Field(min_length=1)
    description: str = ""


class _RuleEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    action: str = Field(min_length=1, max_length=128)
    effect: RuleEffect = RuleEffect.SKILL
    skill: Optional[str] = None
    min_level: int = Field(default=0, ge=0)


class _CatalogFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    skills: list[_SkillEntry] = Field(default_factory=list)
    rules: list[_RuleEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def no_duplicates(self) -> "_CatalogFile":
        names = [s.name for s in self.skills]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate skill names in catalog.")
        actions = [r.action for r in self.rules]
        if len(actions) != len(set(actions)):
            raise ValueError("Duplicate actions in catalog.")
        return self


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Catalog:
    skills: Mapping[str, Skill]
    rules: Mapping[str, PermissionRule]

    def skill(self, name: str) -> Optional[Skill]:
        return self.skills.get(name)

    def rule(self, action: str) -> Optional[PermissionRule]:
        return self.rules.get(action)


def build_catalog(skills: list[Skill], rules: list[PermissionRule]) -> Catalog:
    """Assemble a Catalog, raising ValueError if a rule cannot be satisfied."""
    skill_map = {s.name: s for s in skills}
    for rule in rules:
        if rule.effect is not RuleEffect.SKILL:
            continue
        skill = skill_map.get(rule.skill)
        if skill is None:
            raise ValueError(f"Rule {rule.action!r} references unknown skill {rule.skill!r}.")
        if rule.min_level > skill.max_level:
            raise ValueError(
                f"Rule {rule.action!r} requires {rule.skill} level {rule.min_level}, "
                f"but the skill tops out at {skill.max_level}."
            )
    return Catalog(
        skills=MappingProxyType(skill_map),
        rules=MappingProxyType({r.action: r for r in rules}),
    )


def parse_catalog(data: dict) -> Catalog:
    """Validate a catalog dict (already decoded from JSON) and build a Catalog."""
    return _from_file(_CatalogFile.model_validate(data))


def _from_file(parsed: _CatalogFile) -> Catalog:
    skills = [Skill(name=s.name, thresholds=tuple(s.thresholds), description=s.description) for s in parsed.skills]
    rules = [PermissionRule(action=r.action, effect=r.effect, skill=r.skill, min_level=r.min_level) for r in parsed.rules]
    return build_catalog(skills, rules)


def load_catalog(path: Optional[str] = None) -> Catalog:
    """Load the catalog from a JSON file, or the built-in default when path is empty."""
    if not path:
        catalog = parse_catalog(DEFAULT_CATALOG)
        logger.info("Using built-in catalog (%d skills, %d rules)", len(catalog.skills), len(catalog.rules))
        return catalog
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise ValueError(f"Catalog file {path!r} does not exist.")
    catalog = _from_file(_CatalogFile.model_validate_json(file_path.read_text(encoding="utf-8")))
    logger.info("Loaded catalog from %s (%d skills, %d rules)", file_path, len(catalog.skills), len(catalog.rules))
    return catalog


@lru_cache
def get_catalog() -> Catalog:
    """Return the catalog named by Settings.catalog_path, loaded once per process."""
    return load_catalog(get_settings().catalog_path)
