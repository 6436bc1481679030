"""Error taxonomy for the knowledge engine."""

from typing import Any

# ============================================================================
# Error Type Constants
# ============================================================================

ERROR_TYPE_VALIDATION = "validation_error"
ERROR_TYPE_TRANSIENT_BACKEND = "transient_backend_error"
ERROR_TYPE_TERMINAL_BACKEND = "terminal_backend_error"
ERROR_TYPE_UNKNOWN_SOURCE = "unknown_source_error"


# ============================================================================
# Exceptions
# ============================================================================


class KnowledgeEngineError(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class DescriptorValidationError(KnowledgeEngineError, ValueError):
    """A knowledge descriptor failed validation and was not registered."""

    def __init__(self, message: str, descriptor_id: str | None = None, field_errors: list[str] | None = None):
        self.descriptor_id = descriptor_id
        self.field_errors = field_errors or []
        super().__init__(
            message,
            code=ERROR_TYPE_VALIDATION,
            details={"descriptor_id": descriptor_id, "field_errors": self.field_errors},
        )


class TransientBackendError(KnowledgeEngineError):
    """One backend attempt failed; the caller may retry."""

    def __init__(self, message: str, source_id: str, status_code: int | None = None):
        self.source_id = source_id
        self.status_code = status_code
        super().__init__(
            message,
            code=ERROR_TYPE_TRANSIENT_BACKEND,
            details={"source_id": source_id, "status_code": status_code},
        )


class TerminalBackendError(KnowledgeEngineError):
    """Retries and the on-disk fallback are both exhausted."""

    def __init__(self, message: str, source_id: str, attempts: int):
        self.source_id = source_id
        self.attempts = attempts
        super().__init__(
            message,
            code=ERROR_TYPE_TERMINAL_BACKEND,
            details={"source_id": source_id, "attempts": attempts},
        )


class UnknownSourceError(KnowledgeEngineError, KeyError):
    """No knowledge source is registered under the requested id."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(
            f"Unknown knowledge source: {source_id}",
            code=ERROR_TYPE_UNKNOWN_SOURCE,
            details={"source_id": source_id},
        )

    def __str__(self) -> str:
        return self.message
