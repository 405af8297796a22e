"""Custom exceptions for FlowGuard."""


class FlowGuardError(Exception):
    """Base exception for all FlowGuard errors."""
    pass


class ConfigError(FlowGuardError):
    """Raised when configuration loading or validation fails."""
    pass


class StorageError(FlowGuardError):
    """Base exception for artifact storage errors."""
    pass


class SpecNotFoundError(StorageError):
    """Raised when a spec ID cannot be found in the store."""

    def __init__(self, spec_id: str):
        self.spec_id = spec_id
        super().__init__(f"Spec not found: {spec_id}")


class VerificationNotFoundError(StorageError):
    """Raised when a verification ID cannot be found in the store."""

    def __init__(self, verification_id: str):
        self.verification_id = verification_id
        super().__init__(f"Verification not found: {verification_id}")


class IssueNotFoundError(StorageError):
    """Raised when an issue ID is not part of a verification."""

    def __init__(self, verification_id: str, issue_id: str):
        self.verification_id = verification_id
        self.issue_id = issue_id
        super().__init__(f"Issue {issue_id} not found in verification {verification_id}")


class DatabaseError(StorageError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class DiffParseError(FlowGuardError):
    """Raised when a diff cannot be parsed in the requested format."""
    pass


class PluginError(FlowGuardError):
    """Raised when a verification rule cannot be registered or run."""
    pass


class ValidationError(FlowGuardError):
    """Raised when data validation fails."""
    pass
