"""Extension point for pattern- or logic-based verification rules."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, List, Union

from flowguard.models import ChangedFile, VerificationIssue


@dataclass
class ValidationContext:
    """What a rule sees for one changed file."""
    file_changes: List[ChangedFile] = field(default_factory=list)
    spec_content: str = ''
    # Changed lines of the file joined with newlines, not the full file
    file_content: str = ''
    file_path: str = ''
    workspace_root: str = ''


RuleResult = Union[List[VerificationIssue], Awaitable[List[VerificationIssue]]]


class VerificationRule(ABC):
    """Base class for verification rules.

    Subclasses set the class attributes and implement validate(), which may be
    a plain method or a coroutine.
    """

    id: str = ''
    name: str = ''
    category: str = 'logic'
    severity: str = 'Medium'
    # Default when plugins.verification_rules has no entry for this id
    enabled: bool = True

    @abstractmethod
    def validate(self, context: ValidationContext) -> RuleResult:
        """Return the issues this rule finds in the context's file."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id!r} severity={self.severity}>"
