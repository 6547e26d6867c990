"""
auth/ledger.py -- Skill Ledger: per-user experience totals and levels.

The ledger is the only writer of skill_progress. Levels are never stored
independently of experience: every write derives the level from the total
through core.progression.level_for, inside the store transaction.

Experience only grows through award_experience(). set_level_directly() is the
administrative override and the only path that can lower a level; it pins
experience to the level's threshold so the invariant still holds.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from functools import partial

from auth.errors import UnknownSkill
from auth.models import SkillProgress
from auth.store import AuthStore
from core.catalog import Catalog
from core.models import Skill
from core.progression import level_for, threshold_for

logger = logging.getLogger("levelgate.ledger")


class SkillLedger:
    def __init__(self, store: AuthStore, catalog: Catalog) -> None:
        self.store = store
        self.catalog = catalog

    def _skill(self, name: str) -> Skill:
        skill = self.catalog.skill(name)
        if skill is None:
            raise UnknownSkill(f"No skill named {name!r} is configured.")
        return skill

    def award_experience(self, user_id: int, skill: str, amount: int) -> SkillProgress:
        """Add amount (>= 0) to the user's total for skill and return the new progress.

        Awards are cumulative: replaying the same award counts twice. Level is
        recomputed from the persisted total, so the order of awards never
        matters.
        """
        definition = self._skill(skill)
        if amount < 0:
            raise ValueError("Experience awards must be non-negative.")
        if amount == 0:
            return self.get_progress(user_id, skill)

        before = self.get_progress(user_id, skill).level
        progress = self.store.add_experience(user_id, skill, amount, partial(level_for, definition.thresholds))
        if progress.level > before:
            logger.info(
                "User id=%s reached %s level %d (%d xp)", user_id, skill, progress.level, progress.experience
            )
        return progress

    def get_progress(self, user_id: int, skill: str) -> SkillProgress:
        """Return the user's progress for skill; a zero record if none exists yet."""
        self._skill(skill)
        progress = self.store.get_progress(user_id, skill)
        if progress is None:
            return SkillProgress(user_id=user_id, skill=skill)
        return progress

    def get_all_progress(self, user_id: int) -> list[SkillProgress]:
        """Progress for every configured skill, in catalog order, zero-filled."""
        stored = {p.skill: p for p in self.store.list_progress(user_id)}
        return [stored.get(name) or SkillProgress(user_id=user_id, skill=name) for name in self.catalog.skills]

    def set_level_directly(self, user_id: int, skill: str, level: int) -> SkillProgress:
        """Administrative override: set level and pin experience to that level's threshold."""
        definition = self._skill(skill)
        experience = threshold_for(definition.thresholds, level)
        progress = self.store.put_progress(user_id, skill, level, experience)
        logger.warning("Admin override: user id=%s set to %s level %d", user_id, skill, level)
        return progress
