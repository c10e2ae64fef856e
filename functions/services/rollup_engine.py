"""Rollup engine for JobLedger line items.

Line items live in a flat arena keyed by stable id; the parent/child
hierarchy is a separate adjacency index over those keys. Parents never
carry authoritative costs: their effective totals are the sums of their
children's effective totals. The document subtotal sums root items only.
"""

from typing import Callable, Dict, Iterable, List, Optional, Sequence

import structlog

from config.errors import ValidationError
from models.line_item import EffectiveTotals, LineItem
from utils.money import sum_rounded

logger = structlog.get_logger()


class HierarchyIndex:
    """Arena + adjacency index over a document's line items.

    Items without an id get an internal key that nothing can reference,
    so they are always leaves or empty groups.
    """

    def __init__(self, items: Iterable[LineItem]):
        self.items: Dict[str, LineItem] = {}
        self.order: List[str] = []
        self.children: Dict[str, List[str]] = {}
        self.roots: List[str] = []
        self.orphans: List[str] = []
        self.duplicates: List[str] = []

        for position, item in enumerate(items):
            key = item.id or f"__unkeyed_{position}"
            if key in self.items:
                self.duplicates.append(key)
                continue
            self.items[key] = item
            self.order.append(key)

        for key in self.order:
            parent_id = self.items[key].parent_id
            if not parent_id:
                self.roots.append(key)
            elif parent_id not in self.items:
                self.orphans.append(key)
            else:
                self.children.setdefault(parent_id, []).append(key)

    def children_of(self, key: str) -> List[str]:
        """Direct children keys of an item, in document order."""
        return self.children.get(key, [])

    def is_parent(self, key: str) -> bool:
        """An item is a parent if flagged, or if anything references it."""
        return bool(self.children.get(key)) or self.items[key].is_parent

    def depths(self) -> Dict[str, int]:
        """Nesting level of every item reachable from a root (roots are level 1)."""
        levels: Dict[str, int] = {}
        stack = [(key, 1) for key in reversed(self.roots)]
        while stack:
            key, level = stack.pop()
            if key in levels:
                continue
            levels[key] = level
            for child in reversed(self.children_of(key)):
                stack.append((child, level + 1))
        return levels

    def unreachable(self) -> List[str]:
        """Keys that no root reaches: orphans, their descendants and cycles."""
        reached = self.depths()
        return [key for key in self.order if key not in reached]


def link_draft_hierarchy(
    items: Sequence[LineItem],
    next_key: Callable[[], str]
) -> List[LineItem]:
    """Give every item a stable key and resolve grouping by key.

    Items missing an id get one from ``next_key``. When no item carries an
    explicit ``parentId``, each non-parent item that follows an ``isParent``
    header becomes that header's child. ``sortOrder`` follows list order.
    """
    keyed = [
        item if item.id else item.model_copy(update={"id": next_key()})
        for item in items
    ]

    explicit = any(item.parent_id for item in keyed)
    current_parent: Optional[str] = None
    linked: List[LineItem] = []

    for position, item in enumerate(keyed):
        update = {"sort_order": position}
        if not explicit:
            if item.is_parent:
                current_parent = item.id
                update["parent_id"] = None
            elif current_parent is not None:
                update["parent_id"] = current_parent
        linked.append(item.model_copy(update=update))

    return linked


def compute_effective_totals(items: Sequence[LineItem]) -> Dict[str, EffectiveTotals]:
    """Effective {timeCost, materialsCost, total} for every keyed item.

    Leaves keep their stored values; items with children receive the
    cent-rounded sum of their children's effective values; a flagged parent
    with no children is an empty group worth zero. Depth is not assumed.

    Raises:
        ValidationError: If the parent references form a cycle.
    """
    index = HierarchyIndex(items)
    memo: Dict[str, EffectiveTotals] = {}
    in_progress = set()

    def visit(key: str) -> EffectiveTotals:
        if key in memo:
            return memo[key]
        if key in in_progress:
            raise ValidationError(
                message="Line item hierarchy contains a cycle",
                errors=[f'Line item "{index.items[key].description}" is its own ancestor'],
            )
        in_progress.add(key)

        item = index.items[key]
        child_keys = index.children_of(key)
        if child_keys:
            totals = EffectiveTotals.zero()
            for child in child_keys:
                totals = totals + visit(child)
        elif item.is_parent:
            totals = EffectiveTotals.zero()
        else:
            totals = EffectiveTotals(
                time_cost=item.time_cost or 0.0,
                materials_cost=item.materials_cost or 0.0,
                total=item.total or 0.0,
            )

        in_progress.discard(key)
        memo[key] = totals
        return totals

    for key in index.order:
        visit(key)

    return memo


def calculate_grand_total(items: Sequence[LineItem]) -> EffectiveTotals:
    """Sum effective totals of root-level items only."""
    index = HierarchyIndex(items)
    effective = compute_effective_totals(items)
    totals = EffectiveTotals.zero()
    for key in index.roots:
        totals = totals + effective[key]
    return totals


def calculate_subtotal(items: Sequence[LineItem]) -> float:
    """Document subtotal: root effective totals, never parent + children."""
    index = HierarchyIndex(items)
    effective = compute_effective_totals(items)
    return sum_rounded(effective[key].total for key in index.roots)


def flatten_with_totals(items: Sequence[LineItem]) -> List[LineItem]:
    """Return items parent-first with parent costs replaced by derived values.

    Each root is followed by its descendants (depth first). Leaves are
    returned unchanged apart from ``sortOrder``.
    """
    index = HierarchyIndex(items)
    effective = compute_effective_totals(items)
    result: List[LineItem] = []
    emitted = set()

    def walk(key: str) -> None:
        emitted.add(key)
        item = index.items[key]
        update = {"sort_order": len(result)}
        if index.is_parent(key):
            totals = effective[key]
            update.update({
                "is_parent": True,
                "time_hours": None,
                "time_rate": None,
                "time_cost": totals.time_cost,
                "materials_cost": totals.materials_cost,
                "total": totals.total,
            })
        result.append(item.model_copy(update=update))
        for child in index.children_of(key):
            walk(child)

    for root in index.roots:
        walk(root)

    # Unreachable rows keep their relative order at the end
    for key in index.order:
        if key not in emitted:
            result.append(index.items[key].model_copy(update={"sort_order": len(result)}))

    logger.debug("line_items_flattened", count=len(result), roots=len(index.roots))
    return result
