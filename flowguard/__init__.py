"""
FlowGuard - Diff-to-Specification Verification

Checks code changes against epic specifications with a local LLM,
rates each deviation and turns the result into an approval decision.
"""

__version__ = "0.1.0"

# Package-level imports
from flowguard.llm_client import (
    OllamaClient,
    OllamaConnectionError,
    OllamaModelNotFoundError,
    OllamaGenerationError,
    LLMResponseError,
    parse_json_response,
)

from flowguard.state import ArtifactStore
from flowguard.config import (
    FlowGuardConfig,
    ConfigLoader,
    get_default_config,
)
from flowguard.models import (
    Spec,
    Change,
    ChangedFile,
    DiffAnalysis,
    DiffSource,
    FixSuggestion,
    VerificationIssue,
    VerificationSummary,
    Verification,
)
from flowguard.exceptions import (
    FlowGuardError,
    ConfigError,
    StorageError,
    DatabaseError,
    SpecNotFoundError,
    VerificationNotFoundError,
    IssueNotFoundError,
    DiffParseError,
    PluginError,
    ValidationError,
)

__all__ = [
    # LLM Client
    "OllamaClient",
    "OllamaConnectionError",
    "OllamaModelNotFoundError",
    "OllamaGenerationError",
    "LLMResponseError",
    "parse_json_response",
    # Storage
    "ArtifactStore",
    # Configuration
    "FlowGuardConfig",
    "ConfigLoader",
    "get_default_config",
    # Models
    "Spec",
    "Change",
    "ChangedFile",
    "DiffAnalysis",
    "DiffSource",
    "FixSuggestion",
    "VerificationIssue",
    "VerificationSummary",
    "Verification",
    # Exceptions
    "FlowGuardError",
    "ConfigError",
    "StorageError",
    "DatabaseError",
    "SpecNotFoundError",
    "VerificationNotFoundError",
    "IssueNotFoundError",
    "DiffParseError",
    "PluginError",
    "ValidationError",
]
