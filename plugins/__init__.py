"""
Verification Rule Plugins

Rule base class, registry and the built-in security rules.
"""

from plugins.base import ValidationContext, VerificationRule
from plugins.registry import RuleRegistry
from plugins.security import (
    HardcodedSecretsRule,
    SqlInjectionRule,
    load_builtin_rules,
)

__all__ = [
    'ValidationContext',
    'VerificationRule',
    'RuleRegistry',
    'HardcodedSecretsRule',
    'SqlInjectionRule',
    'load_builtin_rules',
]
