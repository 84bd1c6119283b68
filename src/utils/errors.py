"""Error types for the RMF compliance core."""

from typing import Optional


class RMFError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str, reference: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reference = reference


class InvalidInputError(RMFError):
    """Structurally malformed payload or illegal state transition."""

    status_code = 400


class AlreadyPromotedError(RMFError):
    """A control or risk has already been promoted."""

    status_code = 409


class NotFoundError(RMFError):
    """Referenced record does not exist."""

    status_code = 404


class UniqueConstraintError(RMFError):
    """Raised by the storage layer when an insert violates a uniqueness rule."""

    status_code = 409
