"""Custom exception hierarchy for the REELCAST core"""


class ReelcastException(Exception):
    """Base exception for all reelcast errors"""
    pass


# ========================================
# Storage Errors
# ========================================

class StorageError(ReelcastException):
    """Raised when persistence is unavailable or rejects a read/write"""
    pass


class NamespaceMismatchError(StorageError):
    """Raised when a write targets a project that is no longer active"""
    pass


class MigrationError(ReelcastException):
    """Raised when the legacy single-project layout cannot be copied"""
    pass


# ========================================
# Project & Configuration Errors
# ========================================

class ProjectError(ReelcastException):
    """Base exception for project-related errors"""
    pass


class ProjectNotFoundError(ProjectError):
    """Raised when a project id is not registered"""
    pass


class ConfigurationError(ReelcastException):
    """Raised when configuration is invalid or missing"""
    pass


# ========================================
# Generation Errors
# ========================================

class GenerationError(ReelcastException):
    """Base exception for generation job failures"""

    #: Short machine-readable label stored on the failed queue item
    kind = "unexpected"


class NotFoundError(GenerationError):
    """Raised when the clip or scene a job refers to no longer exists"""
    kind = "not_found"


class PreconditionFailedError(GenerationError):
    """Raised when a job's inputs are not ready (e.g. missing start frame)"""
    kind = "precondition_failed"


class ProviderError(GenerationError):
    """Raised when the generation provider returns a failure"""
    kind = "provider_error"

    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects the API key"""
    pass


class ProviderRateLimitError(ProviderError):
    """Raised when the provider rate limit is exceeded"""
    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a long-running provider operation exceeds its poll budget"""
    kind = "timeout"


# ========================================
# Validation Errors
# ========================================

class InputValidationError(ReelcastException):
    """Raised when user input validation fails"""
    pass


__all__ = [
    # Base
    "ReelcastException",
    # Storage
    "StorageError",
    "NamespaceMismatchError",
    "MigrationError",
    # Project
    "ProjectError",
    "ProjectNotFoundError",
    "ConfigurationError",
    # Generation
    "GenerationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ProviderError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    # Validation
    "InputValidationError",
]
