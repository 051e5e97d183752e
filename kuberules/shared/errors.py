"""
Shared error handling for kuberules.
"""

from typing import Dict, Any, Optional


class RuleStoreException(Exception):
    """Base exception for rule store components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a loggable mapping."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(RuleStoreException):
    """Request rejected before reaching the store."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(RuleStoreException):
    """Object is absent from the store."""

    def __init__(self, name: str, message: str = "Object not found", details: Optional[Dict[str, Any]] = None):
        self.name = name
        super().__init__("NOT_FOUND", f"{message}: {name}", details)


class AlreadyExistsError(RuleStoreException):
    """Object with the same name already exists."""

    def __init__(self, name: str, message: str = "Object already exists", details: Optional[Dict[str, Any]] = None):
        self.name = name
        super().__init__("ALREADY_EXISTS", f"{message}: {name}", details)


class TransportError(RuleStoreException):
    """Store unreachable, unauthorized or failing."""

    def __init__(self, message: str = "Store transport error", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)


class WatchExpiredError(RuleStoreException):
    """Requested resource version is no longer available for watching."""

    def __init__(self, resource_version: Optional[str], details: Optional[Dict[str, Any]] = None):
        self.resource_version = resource_version
        super().__init__(
            "WATCH_EXPIRED",
            f"Resource version expired: {resource_version}",
            details
        )


class SyncBarrierError(RuleStoreException):
    """Initial synchronization did not complete."""


class SyncBarrierTimeout(SyncBarrierError):
    """Initial snapshot was not applied in time."""

    def __init__(self, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.timeout = timeout
        super().__init__("SYNC_TIMEOUT", f"Initial sync not completed within {timeout}s", details)


class SyncCancelled(SyncBarrierError):
    """Synchronizer was stopped while waiting for the initial snapshot."""

    def __init__(self, message: str = "Initial sync cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__("SYNC_CANCELLED", message, details)


class SynchronizerStateError(RuleStoreException):
    """Operation not allowed in the synchronizer's current state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("SYNCHRONIZER_STATE_ERROR", message, details)
