from typing import Any


class OrderingError(Exception):
    """Base class for errors surfaced to callers of the order service."""

    code = "ordering_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderingError):
    """Malformed creation request. Raised before any write."""

    code = "validation_error"
    status_code = 400


class InvalidTransition(OrderingError):
    """Requested status edge is not in the transition table."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: Any, target: Any):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {_name(current)} to {_name(target)}")


class NotFound(OrderingError):
    code = "not_found"
    status_code = 404


class ConflictError(OrderingError):
    """Concurrent write on the same order; the caller should retry."""

    code = "conflict"
    status_code = 409


class PublishFailure(Exception):
    """Broker rejected or could not accept an event. Contained in the publisher."""


def _name(status: Any) -> str:
    return getattr(status, "value", str(status))
