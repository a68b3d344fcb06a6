"""
Order Validator

Decides, before anything is written, whether a proposed set of item groups
is admissible. Two independent checks:

    - composition: at most one base item per group, and toppings/discounts
      only next to a base item in the same group
    - availability: every referenced id exists and is switched on

Neither check stops at the first problem. Each returns a ValidationResult
holding every error it found so one rejection can describe the whole order.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from order_desk.core.exceptions import (
    CompositionError,
    CompositionViolation,
    NotFoundError,
    OrderingError,
    OrderValidationError,
    UnavailableError,
)
from order_desk.models import Merchandise, MerchandiseType
from order_desk.services.catalog import CatalogLookup

logger = logging.getLogger(__name__)

RULE_EMPTY_ORDER = "EMPTY_ORDER"
RULE_EMPTY_GROUP = "EMPTY_GROUP"
RULE_MULTIPLE_BASE_ITEMS = "MULTIPLE_BASE_ITEMS"
RULE_MODIFIER_WITHOUT_BASE_ITEM = "MODIFIER_WITHOUT_BASE_ITEM"

MODIFIER_TYPES = (MerchandiseType.TOPPING, MerchandiseType.DISCOUNT)


@dataclass
class ValidationResult:
    """Outcome of a validation pass. Empty ``errors`` means the input passed."""
    errors: list[OrderingError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(errors=self.errors + other.errors)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise OrderValidationError(self.errors)


def check_group_composition(
    groups: Sequence[Sequence[str]],
    catalog: dict[str, Merchandise],
) -> list[CompositionViolation]:
    """
    Apply the grouping rules to already-resolved catalog items.

    Ids missing from ``catalog`` are skipped here; the availability check
    reports them. Repeated ids count once per occurrence.
    """
    violations = []

    if not groups:
        violations.append(CompositionViolation(
            group_index=None,
            rule=RULE_EMPTY_ORDER,
            message="An order must contain at least one group",
        ))

    for index, item_ids in enumerate(groups):
        if not item_ids:
            violations.append(CompositionViolation(
                group_index=index,
                rule=RULE_EMPTY_GROUP,
                message=f"Group {index + 1} must contain at least one item",
            ))
            continue

        resolved = [catalog[i] for i in item_ids if i in catalog]
        base_items = [m for m in resolved if m.type == MerchandiseType.BASE_ITEM]
        modifiers = [m for m in resolved if m.type in MODIFIER_TYPES]

        if len(base_items) > 1:
            violations.append(CompositionViolation(
                group_index=index,
                rule=RULE_MULTIPLE_BASE_ITEMS,
                message=f"Group {index + 1} can contain at most one BASE_ITEM",
            ))

        if modifiers and not base_items:
            violations.append(CompositionViolation(
                group_index=index,
                rule=RULE_MODIFIER_WITHOUT_BASE_ITEM,
                message=(
                    f"Group {index + 1}: TOPPING or DISCOUNT items can only be added "
                    "to a group that contains a BASE_ITEM"
                ),
            ))

    return violations


def check_availability(
    merchandise_ids: Iterable[str],
    catalog: dict[str, Merchandise],
) -> list[OrderingError]:
    """Report every unknown id and every unavailable item, in request order."""
    missing: list[str] = []
    unavailable: list[Merchandise] = []
    seen = set()

    for merchandise_id in merchandise_ids:
        if merchandise_id in seen:
            continue
        seen.add(merchandise_id)

        item = catalog.get(merchandise_id)
        if item is None:
            missing.append(merchandise_id)
        elif not item.is_available:
            unavailable.append(item)

    errors: list[OrderingError] = []
    if missing:
        errors.append(NotFoundError("merchandise", missing))
    if unavailable:
        errors.append(UnavailableError(
            names=[m.name for m in unavailable],
            ids=[m.id for m in unavailable],
        ))
    return errors


class OrderValidator:
    """Business-rule checker backed by a catalog lookup."""

    def __init__(self, catalog: CatalogLookup):
        self.catalog = catalog

    async def validate_group_composition(
        self,
        groups: Sequence[Sequence[str]],
        resolved: Optional[dict[str, Merchandise]] = None,
    ) -> ValidationResult:
        if resolved is None:
            resolved = await self.catalog.find_many(i for group in groups for i in group)

        violations = check_group_composition(groups, resolved)
        if not violations:
            return ValidationResult()
        return ValidationResult(errors=[CompositionError(violations)])

    async def validate_availability(
        self,
        merchandise_ids: Sequence[str],
        resolved: Optional[dict[str, Merchandise]] = None,
    ) -> ValidationResult:
        if resolved is None:
            resolved = await self.catalog.find_many(merchandise_ids)
        return ValidationResult(errors=check_availability(merchandise_ids, resolved))

    async def validate_order(
        self,
        groups: Sequence[Sequence[str]],
    ) -> tuple[ValidationResult, dict[str, Merchandise]]:
        """
        Run both checks across the entire proposed order with one catalog read.

        Returns:
            The merged result and the resolved catalog items, so the caller
            can attach them to the records it creates.
        """
        all_ids = [i for group in groups for i in group]
        resolved = await self.catalog.find_many(all_ids)

        composition = await self.validate_group_composition(groups, resolved)
        availability = await self.validate_availability(all_ids, resolved)
        result = composition.merge(availability)

        if not result.valid:
            logger.info(f"Order rejected with {len(result.errors)} error(s): {[e.error_type for e in result.errors]}")
        return result, resolved
