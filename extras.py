"""
Extras Module
=============
Extra-tree validation, pricing and snapshotting.

The catalog attaches a tree of option nodes to each item; the customer
sends a matching tree of selections. Both are walked together one level at
a time:

- validate_level: required / existence / availability / max_selectable
  rules for one level of siblings
- price_and_snapshot: recursive walk producing frozen snapshots and the
  summed price delta of the whole selection subtree
- price_item_line: one order line (item + quantity + extras)

Pure functions: no I/O, no shared state. The first violation raises and
aborts; nothing partial is returned.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from prometheus_client import Counter

from errors import (
    ExtraNotFound,
    ExtraTreeTooDeep,
    ExtraUnavailable,
    ItemUnavailable,
    OrderError,
    QuantityExceeded,
    RequiredExtraMissing,
    TooManySelections,
)
from menu import CatalogExtra, CatalogItem
from order import OrderExtraSnapshot, OrderLineSnapshot


logger = logging.getLogger(__name__)


DEFAULT_MAX_DEPTH = 10


extra_validation_failures = Counter(
    'extra_validation_failures_total',
    'Extra-tree validation failures',
    ['kind']
)


# ============================================================================
# SELECTIONS
# ============================================================================

ITEM_SELECTION_KEYS = ("extras", "selected_extras")
NESTED_SELECTION_KEYS = ("extras", "nested_selections")


def selection_children(data: Dict[str, Any], keys: Sequence[str]) -> Any:
    """
    Child selections stored under any of the alias `keys`.

    null and [] both mean "no choices"; the first key holding anything
    else wins. Request validation rejects nodes that fill more than one.
    """
    for key in keys:
        value = data.get(key)
        if value is not None and value != []:
            return value
    return []


@dataclass(frozen=True)
class ExtraSelection:
    """Customer's choice of one extra, with choices for its children."""
    extra_id: str
    nested_selections: Tuple["ExtraSelection", ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Any) -> "ExtraSelection":
        """
        Build from request data.

        Accepts {"extra_id": ..., "extras": [...]} (nested choices may also
        be given as "nested_selections") or a bare id string for a leaf
        choice.
        """
        if isinstance(data, str):
            return cls(extra_id=data)

        return cls(
            extra_id=str(data["extra_id"]),
            nested_selections=tuple(
                cls.from_dict(c)
                for c in selection_children(data, NESTED_SELECTION_KEYS)
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extra_id": self.extra_id,
            "extras": [child.to_dict() for child in self.nested_selections]
        }


# ============================================================================
# VALIDATOR (one level)
# ============================================================================

def find_extra(
    catalog_nodes: Sequence[CatalogExtra],
    extra_id: str
) -> Optional[CatalogExtra]:
    """Find a node among siblings only (never searches deeper levels)."""
    for node in catalog_nodes:
        if node.extra_id == extra_id:
            return node
    return None


def validate_level(
    catalog_nodes: Sequence[CatalogExtra],
    selections: Sequence[ExtraSelection],
    parent: Optional[CatalogExtra] = None,
    enforce_max_selectable: bool = True
) -> List[CatalogExtra]:
    """
    Validate the selections made at one level of the extra tree.

    Rules, in order:
    1. every required node at this level is selected
    2. every selection names a node at this level
    3. every selected node is available
    4. distinct selections under `parent` do not exceed its max_selectable

    Required choices one level down are not checked here; they only matter
    once their parent is selected and the walk descends into it.

    Args:
        catalog_nodes: Sibling catalog nodes at this level
        selections: Selections made at this level
        parent: Node whose children these are (None at item level)
        enforce_max_selectable: Treat max_selectable as a hard limit

    Returns:
        Catalog node matched by each selection, in selection order

    Raises:
        RequiredExtraMissing, ExtraNotFound, ExtraUnavailable,
        TooManySelections
    """
    try:
        selected_ids = {selection.extra_id for selection in selections}

        for node in catalog_nodes:
            if node.is_required and node.extra_id not in selected_ids:
                raise RequiredExtraMissing(node.name, node.extra_id)

        matched = []
        for selection in selections:
            node = find_extra(catalog_nodes, selection.extra_id)
            if node is None:
                raise ExtraNotFound(selection.extra_id)
            if not node.is_available:
                raise ExtraUnavailable(node.name, node.extra_id)
            matched.append(node)

        if (
            enforce_max_selectable
            and parent is not None
            and len(selected_ids) > parent.max_selectable
        ):
            raise TooManySelections(
                parent.name,
                parent.max_selectable,
                len(selected_ids)
            )

    except OrderError as e:
        extra_validation_failures.labels(kind=e.kind.value).inc()
        raise

    return matched


# ============================================================================
# PRICER & SNAPSHOTTER (recursive)
# ============================================================================

def price_and_snapshot(
    catalog_nodes: Sequence[CatalogExtra],
    selections: Sequence[ExtraSelection],
    parent: Optional[CatalogExtra] = None,
    depth: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
    enforce_max_selectable: bool = True
) -> Tuple[Tuple[OrderExtraSnapshot, ...], Decimal]:
    """
    Walk selections against the catalog tree.

    Each call handles one level and returns the snapshots for it together
    with the price delta of the whole subtree beneath it.

    Returns:
        (snapshots, total_delta)

    Raises:
        ExtraTreeTooDeep: If selections nest below max_depth
        Any validate_level error, from any depth
    """
    if not selections and not any(node.is_required for node in catalog_nodes):
        return (), Decimal("0")

    if depth >= max_depth:
        extra_validation_failures.labels(kind='extra_tree_too_deep').inc()
        raise ExtraTreeTooDeep(max_depth)

    matched = validate_level(
        catalog_nodes,
        selections,
        parent=parent,
        enforce_max_selectable=enforce_max_selectable
    )

    snapshots = []
    total_delta = Decimal("0")

    for selection, node in zip(selections, matched):
        nested_snapshots, nested_total = price_and_snapshot(
            node.extras,
            selection.nested_selections,
            parent=node,
            depth=depth + 1,
            max_depth=max_depth,
            enforce_max_selectable=enforce_max_selectable
        )

        snapshots.append(OrderExtraSnapshot(
            extra_id=node.extra_id,
            name=node.name,
            price_delta=node.price_delta,
            nested=nested_snapshots
        ))

        total_delta += node.price_delta + nested_total

    return tuple(snapshots), total_delta


def price_item_line(
    item: CatalogItem,
    quantity: int,
    selections: Sequence[ExtraSelection],
    max_depth: int = DEFAULT_MAX_DEPTH,
    enforce_max_selectable: bool = True
) -> OrderLineSnapshot:
    """
    Price one order line.

    Availability of the item is checked before any extras are looked at.

    Raises:
        ItemUnavailable: If the item is marked unavailable
        QuantityExceeded: If quantity is above the item's max_per_order
        Any price_and_snapshot error
    """
    if not item.is_available:
        raise ItemUnavailable(item.name, item.item_id)

    if quantity > item.max_per_order:
        raise QuantityExceeded(item.name, item.max_per_order, quantity)

    extra_snapshots, extras_total = price_and_snapshot(
        item.extras,
        selections,
        max_depth=max_depth,
        enforce_max_selectable=enforce_max_selectable
    )

    line_subtotal = quantity * (item.base_price + extras_total)

    logger.debug(
        f"Priced line: {item.name} x{quantity} "
        f"(extras={extras_total}, subtotal={line_subtotal})"
    )

    return OrderLineSnapshot(
        line_id=uuid.uuid4().hex,
        menu_item_id=item.item_id,
        item_name=item.name,
        description=item.description,
        unit_price=item.base_price,
        quantity=quantity,
        extras=extra_snapshots,
        line_subtotal=line_subtotal
    )
