"""
auth/permissions.py -- Permission Resolver: may user U perform action A?

Resolution order for an action:
  1. No rule in the catalog  -> deny ("unknown_action"). Fail closed.
  2. DENY rule               -> deny ("disabled").
  3. ALLOW rule              -> allow without touching the ledger.
  4. Skill rule              -> allow iff current level >= min_level.

The resolver holds no state of its own. Each check reads the ledger, so a
level-up is visible to the very next check.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from auth.ledger import SkillLedger
from auth.models import Decision
from core.catalog import Catalog
from core.models import RuleEffect


class PermissionResolver:
    def __init__(self, catalog: Catalog, ledger: SkillLedger) -> None:
        self.catalog = catalog
        self.ledger = ledger

    def check(self, user_id: int, action: str) -> Decision:
        rule = self.catalog.rule(action)
        if rule is None:
            return Decision(action=action, allowed=False, reason="unknown_action")
        if rule.effect is RuleEffect.DENY:
            return Decision(action=action, allowed=False, reason="disabled")
        if rule.effect is RuleEffect.ALLOW:
            return Decision(action=action, allowed=True, reason="allowed")

        current = self.ledger.get_progress(user_id, rule.skill).level
        allowed = current >= rule.min_level
        return Decision(
            action=action,
            allowed=allowed,
            reason="allowed" if allowed else "insufficient_level",
            skill=rule.skill,
            required_level=rule.min_level,
            current_level=current,
        )

    def is_authorized(self, user_id: int, action: str) -> bool:
        return self.check(user_id, action).allowed

    def allowed_actions(self, user_id: int) -> list[str]:
        """Every action the user currently passes, sorted. Reads each skill once."""
        levels = {p.skill: p.level for p in self.ledger.get_all_progress(user_id)}
        allowed = []
        for action, rule in self.catalog.rules.items():
            if rule.effect is RuleEffect.ALLOW:
                allowed.append(action)
            elif rule.effect is RuleEffect.SKILL and levels.get(rule.skill, 0) >= rule.min_level:
                allowed.append(action)
        return sorted(allowed)
