"""Dual-cost and hierarchy validation for line items and work entries.

Validators are pure: they never mutate their input and return every
violation they find as a human-readable message.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from config.errors import ValidationError
from config.settings import settings
from models.draft import WorkEntryItem
from models.line_item import LineItem
from services.rollup_engine import HierarchyIndex
from utils.money import add, to_decimal, within_tolerance

logger = structlog.get_logger(__name__)


@dataclass
class ValidationResult:
    """Result of a validation pass."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def extend(self, other: "ValidationResult") -> "ValidationResult":
        """Fold another result into this one."""
        if not other.is_valid:
            self.errors.extend(other.errors)
            self.is_valid = False
        return self

    def raise_if_invalid(self, message: str = "Line item validation failed") -> None:
        """Raise ValidationError carrying every message."""
        if not self.is_valid:
            raise ValidationError(message=f"{message}: {', '.join(self.errors)}", errors=self.errors)


def _money(value: Optional[float]) -> str:
    return f"${to_decimal(value)}"


def _is_positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def validate_dual_structure(
    item: LineItem,
    treat_as_parent: bool = False,
    tolerance: Optional[float] = None
) -> ValidationResult:
    """Validate one line item's dual time + materials cost.

    Parents (flagged, or known to have children) are always valid: their
    stored cost fields are ignored. Leaves need a positive time or
    materials cost, time cost must equal hours x rate and total must equal
    time cost + materials cost (negated magnitude allowed for removals).

    Args:
        item: Line item to check.
        treat_as_parent: Item is referenced by children in its collection.
        tolerance: Allowed rounding difference (default from settings).

    Returns:
        ValidationResult with is_valid and errors.
    """
    if item.is_parent or treat_as_parent:
        return ValidationResult()

    tolerance = settings.cost_tolerance if tolerance is None else tolerance
    errors: List[str] = []
    label = item.description

    has_time_cost = _is_positive(item.time_cost)
    has_materials_cost = _is_positive(item.materials_cost)

    if not has_time_cost and not has_materials_cost:
        errors.append(
            f'Line item "{label}" must have either time cost or materials cost (or both)'
        )

    if has_time_cost:
        if not _is_positive(item.time_hours):
            errors.append(f'Line item "{label}" has time cost but missing or invalid timeHours')
        if not _is_positive(item.time_rate):
            errors.append(f'Line item "{label}" has time cost but missing or invalid timeRate')
        expected_time_cost = to_decimal(item.time_hours) * to_decimal(item.time_rate)
        if not within_tolerance(expected_time_cost, item.time_cost, tolerance):
            errors.append(
                f'Line item "{label}" has inconsistent time calculation: '
                f"{item.time_hours} hrs x {_money(item.time_rate)}/hr should equal "
                f"{_money(expected_time_cost)}, but got {_money(item.time_cost)}"
            )

    expected_total = add(item.time_cost, item.materials_cost)
    stored_total = abs(item.total) if item.is_removal else item.total
    if not within_tolerance(expected_total, stored_total, tolerance):
        errors.append(
            f'Line item "{label}" has inconsistent total: timeCost ({_money(item.time_cost or 0)}) '
            f"+ materialsCost ({_money(item.materials_cost or 0)}) should equal "
            f"{_money(expected_total)}, but got {_money(item.total)}"
        )

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_hierarchy_depth(
    items: Sequence[LineItem],
    max_depth: Optional[int] = None
) -> ValidationResult:
    """Validate parent references and nesting depth over a whole collection.

    Relationships are resolved by stable id through HierarchyIndex.
    Reports duplicate ids, references to unknown parents, cycles, and
    any item nested deeper than ``max_depth`` levels from a root.
    """
    max_depth = settings.max_hierarchy_depth if max_depth is None else max_depth
    index = HierarchyIndex(items)
    errors: List[str] = []

    for key in index.duplicates:
        errors.append(f'Line item id "{key}" is used more than once')

    for key in index.orphans:
        item = index.items[key]
        errors.append(
            f'Line item "{item.description}" references unknown parent "{item.parent_id}"'
        )

    orphan_set = set(index.orphans)
    for key in index.unreachable():
        if key in orphan_set:
            continue
        errors.append(
            f'Line item "{index.items[key].description}" is not reachable from a root item'
        )

    for key, level in index.depths().items():
        if level > max_depth:
            errors.append(
                f'Line item "{index.items[key].description}" exceeds maximum hierarchy '
                f"depth of {max_depth} levels"
            )

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_line_items(items: Sequence[LineItem]) -> ValidationResult:
    """Validate every item's dual structure plus the collection hierarchy."""
    result = ValidationResult()
    index = HierarchyIndex(items)

    for key in index.order:
        result.extend(validate_dual_structure(index.items[key], treat_as_parent=index.is_parent(key)))

    result.extend(validate_hierarchy_depth(items))

    if not result.is_valid:
        logger.info("line_item_validation_failed", error_count=len(result.errors))
    return result


def validate_work_entry(entry: WorkEntryItem) -> ValidationResult:
    """Validate one proposed work entry's actual dual-cost structure."""
    tolerance = settings.cost_tolerance
    errors: List[str] = []

    if not entry.estimate_line_item_id:
        errors.append("Work entry must reference an estimate line item")

    if not entry.description or not entry.description.strip():
        errors.append("Work entry must have a description")

    if not _is_positive(entry.actual_total):
        errors.append("Work entry must have a positive actual total cost")

    has_time_cost = _is_positive(entry.actual_time_cost)
    has_materials_cost = _is_positive(entry.actual_materials_cost)

    if not has_time_cost and not has_materials_cost:
        errors.append("Work entry must have either actual time cost or materials cost (or both)")

    if has_time_cost:
        if not _is_positive(entry.actual_time_hours):
            errors.append("Work entry has time cost but missing or invalid actualTimeHours")
        if not _is_positive(entry.actual_time_rate):
            errors.append("Work entry has time cost but missing or invalid actualTimeRate")
        expected_time_cost = to_decimal(entry.actual_time_hours) * to_decimal(entry.actual_time_rate)
        if not within_tolerance(expected_time_cost, entry.actual_time_cost, tolerance):
            errors.append(
                f"Work entry has inconsistent time calculation: {entry.actual_time_hours} hrs x "
                f"{_money(entry.actual_time_rate)}/hr should equal {_money(expected_time_cost)}, "
                f"but got {_money(entry.actual_time_cost)}"
            )

    expected_total = add(entry.actual_time_cost, entry.actual_materials_cost)
    if not within_tolerance(expected_total, entry.actual_total, tolerance):
        errors.append(
            f"Work entry has inconsistent total: actualTimeCost ({_money(entry.actual_time_cost or 0)}) "
            f"+ actualMaterialsCost ({_money(entry.actual_materials_cost or 0)}) should equal "
            f"{_money(expected_total)}, but got {_money(entry.actual_total)}"
        )

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_work_entries(entries: Sequence[WorkEntryItem]) -> ValidationResult:
    """Validate a batch of work entries, prefixing messages with the entry number."""
    if not entries:
        return ValidationResult(is_valid=False, errors=["At least one work entry is required"])

    result = ValidationResult()
    for position, entry in enumerate(entries, start=1):
        entry_result = validate_work_entry(entry)
        if not entry_result.is_valid:
            result.extend(ValidationResult(
                is_valid=False,
                errors=[f"Work entry {position}: {error}" for error in entry_result.errors],
            ))
    return result

