"""Built-in security rules: hardcoded secrets and SQL injection patterns."""

import re
import uuid
from abc import abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Pattern

from flowguard.models import VerificationIssue
from .base import ValidationContext, VerificationRule

CODE_PREVIEW_LIMIT = 100


@dataclass(frozen=True)
class SecurityPattern:
    name: str
    regex: Pattern
    suggestion: str


def _first_matching_line(content: str, regex: Pattern) -> int:
    for number, line in enumerate(content.split('\n'), start=1):
        if regex.search(line):
            return number
    return 1


class PatternRule(VerificationRule):
    """Rule that reports one issue per pattern found in the file content."""

    patterns: List[SecurityPattern] = []

    @abstractmethod
    def format_message(self, pattern: SecurityPattern) -> str:
        """Issue message for a pattern found in the file."""

    def validate(self, context: ValidationContext) -> List[VerificationIssue]:
        issues = []
        content = context.file_content

        for pattern in self.patterns:
            match = pattern.regex.search(content)
            if not match:
                continue

            issues.append(VerificationIssue(
                id=str(uuid.uuid4()),
                severity=self.severity,
                category=self.category,
                file=context.file_path,
                line=_first_matching_line(content, pattern.regex),
                message=self.format_message(pattern),
                suggestion=pattern.suggestion,
                code=match.group(0)[:CODE_PREVIEW_LIMIT],
            ))

        return issues


class HardcodedSecretsRule(PatternRule):
    """Detects credentials committed in source."""

    id = 'hardcoded-secrets'
    name = 'Hardcoded Secrets Detection'
    category = 'security'
    severity = 'Critical'
    enabled = True

    patterns = [
        SecurityPattern(
            'API Key',
            re.compile(r'''api[_-]?key[_-]?[=:]\s*['"]([a-zA-Z0-9]{20,})['"]''', re.IGNORECASE),
            'Use environment variables or a secret management service for API keys',
        ),
        SecurityPattern(
            'AWS Access Key',
            re.compile(r'AKIA[0-9A-Z]{16}'),
            'Use AWS IAM roles or environment variables for AWS credentials',
        ),
        SecurityPattern(
            'Private Key',
            re.compile(r'-----BEGIN (RSA |EC )?PRIVATE KEY-----'),
            'Store private keys in secure storage, never commit them to version control',
        ),
        SecurityPattern(
            'Hardcoded Password',
            re.compile(r'''password\s*[=:]\s*['"](?!.*\$\{)([^'"]+)['"]''', re.IGNORECASE),
            'Use environment variables or a secret management service for passwords',
        ),
        SecurityPattern(
            'Auth Token',
            re.compile(r'''token[_-]?[=:]\s*['"]([a-zA-Z0-9]{20,})['"]''', re.IGNORECASE),
            'Use environment variables or a secret management service for tokens',
        ),
        SecurityPattern(
            'Database URL with credentials',
            re.compile(
                r'(mongodb|mysql|postgresql|postgres|redis)://[a-zA-Z0-9._-]+:[a-zA-Z0-9._-]+@',
                re.IGNORECASE,
            ),
            'Use environment variables for database connection strings with credentials',
        ),
    ]

    def format_message(self, pattern: SecurityPattern) -> str:
        return f"Hardcoded {pattern.name} detected"


_PARAMETERIZE = 'Use parameterized queries or prepared statements to prevent SQL injection'


class SqlInjectionRule(PatternRule):
    """Detects SQL assembled by concatenation or interpolation."""

    id = 'sql-injection'
    name = 'SQL Injection Detection'
    category = 'security'
    severity = 'High'
    enabled = True

    patterns = [
        SecurityPattern(
            'String concatenation in SQL query',
            re.compile(r'''(execute|query|exec)\s*\(\s*["'].*\+.*\$''', re.IGNORECASE),
            _PARAMETERIZE,
        ),
        SecurityPattern(
            'Template literal in SQL query',
            re.compile(r'''(execute|query|exec)\s*\(\s*[`"'].*\$\{''', re.IGNORECASE),
            _PARAMETERIZE,
        ),
        SecurityPattern(
            'Direct SQL concatenation',
            re.compile(r'SELECT.*\+.*FROM|INSERT.*\+.*INTO|UPDATE.*\+.*SET', re.IGNORECASE),
            _PARAMETERIZE,
        ),
        SecurityPattern(
            'Raw SQL with string interpolation',
            re.compile(r'''sql\s*[=:]\s*[`"'].*\$\{''', re.IGNORECASE),
            _PARAMETERIZE,
        ),
    ]

    def format_message(self, pattern: SecurityPattern) -> str:
        return f"Potential {pattern.name}"


BUILTIN_RULES = (HardcodedSecretsRule, SqlInjectionRule)


def load_builtin_rules(registry, rule_ids: Optional[List[str]] = None) -> int:
    """Register the built-in rules (or the named subset). Returns how many were added."""
    count = 0
    for rule_cls in BUILTIN_RULES:
        if rule_ids is not None and rule_cls.id not in rule_ids:
            continue
        if registry.get_rule(rule_cls.id) is None:
            registry.register_rule(rule_cls())
            count += 1
    return count
