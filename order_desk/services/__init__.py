"""
                        Services Module

Business logic of the ordering core. Every service receives its store
handle (session or session factory) and publisher explicitly.

Services:
    - catalog: read-only merchandise lookup
    - validation: order composition and availability checks
    - call_numbers: per-day call number allocation
    - orders: order lifecycle engine
    - notifications: publish/subscribe adapters and event fan-out
"""

from order_desk.services.catalog import CatalogLookup
from order_desk.services.call_numbers import CallNumberAllocator
from order_desk.services.orders import OrderLifecycleEngine
from order_desk.services.validation import OrderValidator, ValidationResult

__all__ = [
    "CatalogLookup",
    "CallNumberAllocator",
    "OrderLifecycleEngine",
    "OrderValidator",
    "ValidationResult",
]
