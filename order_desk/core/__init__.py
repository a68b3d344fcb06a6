"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from order_desk.core.config import get_settings, get_logger, setup_logging, Settings, EnvironmentMode
from order_desk.core.exceptions import (
    OrderingError,
    CompositionError,
    CompositionViolation,
    NotFoundError,
    UnavailableError,
    OrderValidationError,
    ConflictError,
    InfrastructureError,
)

__all__ = [
    "get_settings",
    "get_logger",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderingError",
    "CompositionError",
    "CompositionViolation",
    "NotFoundError",
    "UnavailableError",
    "OrderValidationError",
    "ConflictError",
    "InfrastructureError",
]
