"""
Business exceptions for the ordering core.

Every business error carries enough structure for a caller to render a
specific message: which rule, which id, which name. Infrastructure failures
are kept apart so the HTTP layer can answer them with a generic 500.
"""

from dataclasses import dataclass, asdict
from typing import Iterable, Optional


class OrderingError(Exception):
    """Base exception for business-rule failures."""

    error_type = "ordering_error"

    def to_dict(self) -> dict:
        return {"type": self.error_type, "message": str(self)}


@dataclass(frozen=True)
class CompositionViolation:
    """One broken grouping rule inside one group of a proposed order."""
    group_index: Optional[int]
    rule: str
    message: str


class CompositionError(OrderingError):
    """Raised when groups break the BaseItem/Topping/Discount rules."""

    error_type = "composition_error"

    def __init__(self, violations: Iterable[CompositionViolation], message=None):
        self.violations = list(violations)
        if message is None:
            message = "; ".join(v.message for v in self.violations)
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["violations"] = [asdict(v) for v in self.violations]
        return data


class NotFoundError(OrderingError):
    """Raised when a merchandise, order, or group id resolves to nothing."""

    error_type = "not_found"

    def __init__(self, resource: str, ids: Iterable[str], message=None):
        self.resource = resource
        self.ids = list(ids)
        if message is None:
            message = f"{resource.replace('_', ' ').capitalize()} not found: {', '.join(self.ids)}"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["resource"] = self.resource
        data["ids"] = self.ids
        return data


class UnavailableError(OrderingError):
    """Raised when referenced merchandise exists but is switched off."""

    error_type = "unavailable"

    def __init__(self, names: Iterable[str], ids: Iterable[str] = (), message=None):
        self.names = list(names)
        self.ids = list(ids)
        if message is None:
            message = f"Unavailable merchandise: {', '.join(self.names)}"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["names"] = self.names
        data["ids"] = self.ids
        return data


class OrderValidationError(OrderingError):
    """Every problem found while validating one proposed order."""

    error_type = "validation_error"

    def __init__(self, errors: Iterable[OrderingError], message=None):
        self.errors = list(errors)
        if message is None:
            message = "Order validation failed: " + " | ".join(str(e) for e in self.errors)
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = [e.to_dict() for e in self.errors]
        return data


class ConflictError(OrderingError):
    """Two creations raced for the same call number. Retried internally."""

    error_type = "conflict"


class InfrastructureError(Exception):
    """The store could not complete an operation."""
