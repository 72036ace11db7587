"""
Directory error taxonomy.

Kernel code raises these; the API layer maps them to HTTP responses and the
batch orchestrator turns them into per-item error entries.
"""

from typing import Any, Dict, Optional


class DirectoryError(Exception):
    """Base class for expected, caller-facing directory failures."""

    code = "DIRECTORY_ERROR"
    status_code = 400
    # Writes made before the error (audit denials, failed-login counters) survive it
    preserve_writes = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(DirectoryError):
    """
    Target does not exist or is outside the caller's scope.

    The two cases look the same to the caller.
    """

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, identifier: Any):
        super().__init__(
            f"{entity_type} {identifier} not found",
            {"entity_type": entity_type, "identifier": str(identifier)},
        )


class ConflictError(DirectoryError):
    """Uniqueness violation or invalid state transition."""

    code = "CONFLICT"
    status_code = 409


class ForbiddenError(DirectoryError):
    """Privilege ordering, role escalation or operation not permitted for the role."""

    code = "FORBIDDEN"
    status_code = 403
    preserve_writes = True


class AuthenticationError(DirectoryError):
    """Credentials rejected or account unable to sign in."""

    code = "UNAUTHORIZED"
    status_code = 401
    preserve_writes = True


class ValidationFailure(DirectoryError):
    """Well-formed input that references something unusable."""

    code = "VALIDATION_FAILED"
    status_code = 422


class AuditWriteError(Exception):
    """Audit entry could not be persisted and the ledger runs fail-closed."""
