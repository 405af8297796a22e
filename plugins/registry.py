"""Registry of verification rules consulted by the engine."""

import logging
from typing import Dict, List, Optional

from flowguard.exceptions import PluginError
from .base import VerificationRule

logger = logging.getLogger(__name__)


class RuleRegistry:
    """Holds verification rules keyed by id, in registration order."""

    def __init__(self):
        self._rules: Dict[str, VerificationRule] = {}

    def register_rule(self, rule: VerificationRule):
        """Add a rule.

        Raises:
            PluginError: If the rule has no id or the id is already registered
        """
        if not rule.id:
            raise PluginError(f"Rule {rule.__class__.__name__} has no id")
        if rule.id in self._rules:
            raise PluginError(f"Verification rule already registered: {rule.id}")

        self._rules[rule.id] = rule
        logger.info(f"Registered verification rule {rule.id}")

    def unregister_rule(self, rule_id: str) -> bool:
        removed = self._rules.pop(rule_id, None)
        if removed:
            logger.info(f"Unregistered verification rule {rule_id}")
        return removed is not None

    def get_rule(self, rule_id: str) -> Optional[VerificationRule]:
        return self._rules.get(rule_id)

    def get_verification_rules(self) -> List[VerificationRule]:
        return list(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)
