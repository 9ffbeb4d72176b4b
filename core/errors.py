"""
Domain error taxonomy.

Every failure the catalog can report to a caller is one of these. The API
layer maps each class to a status code and a fixed public message, so the
message passed in here is for logs and never decides what a client sees
about restricted content.
"""

from typing import Optional


class CatalogError(Exception):
    """Base class for all catalog domain errors."""

    public_message = "error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.public_message
        super().__init__(self.message)


class NotFound(CatalogError):
    """Resource absent, or filtered out by the visibility policy."""
    public_message = "not found"


class Forbidden(CatalogError):
    """Resource is visible in principle but refined away for this caller."""
    public_message = "access denied"


class PermissionDenied(CatalogError):
    """Ownership or admin-only action refused."""
    public_message = "permission denied"


class ValidationError(CatalogError):
    """Malformed or missing input."""
    public_message = "invalid input"


class Conflict(CatalogError):
    """Input collides with existing state (e.g. duplicate email)."""
    public_message = "conflict"


class CycleDetected(CatalogError):
    """Category parent links form a loop."""
    public_message = "category graph malformed"

    def __init__(self, category_id: Optional[int] = None):
        self.category_id = category_id
        super().__init__(f"cycle detected at category {category_id}")


class StorageError(CatalogError):
    """Underlying persistence failure, tagged with the store operation."""
    public_message = "storage error"

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        super().__init__(message or f"storage failure during {operation}")


class CredentialError(CatalogError):
    """Presented credential cannot be trusted."""
    public_message = "unauthorized"


class InvalidCredential(CredentialError):
    pass


class StaleCredential(CredentialError):
    """Credential was issued before the user's last logout or role change."""
    pass


class DeadlineExceeded(CatalogError):
    """Request ran out of time before a store call could complete."""
    public_message = "request timed out"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"deadline exceeded before {operation}")


class RequestCancelled(CatalogError):
    """Request was cancelled by the host before a store call."""
    public_message = "request cancelled"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"request cancelled before {operation}")
