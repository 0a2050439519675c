"""
Order Module
============
Immutable order record and the snapshots it is built from.

Every snapshot is frozen and holds values copied out of the catalog at order
time (names, prices). Nothing here references a live catalog object, so a
stored order can be re-priced from its own contents alone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from policy import DEFAULT_TAX_RATE, calculate_tax, round_to_cents


logger = logging.getLogger(__name__)


# ============================================================================
# ORDER STATUS
# ============================================================================

class OrderStatus(Enum):
    """
    Order lifecycle states.

    Orders are created PENDING. Later transitions belong to fulfillment.
    """
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _money(amount: Decimal) -> str:
    """Two decimals when exact, full precision otherwise (never rounds)."""
    cents = round_to_cents(amount)
    return str(cents if cents == amount else amount)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_money(value: Any) -> Decimal:
    return Decimal(str(value))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ============================================================================
# LINE SNAPSHOTS
# ============================================================================

@dataclass(frozen=True)
class OrderExtraSnapshot:
    """Selected extra, frozen at order time, with its selected children."""
    extra_id: str
    name: str
    price_delta: Decimal
    nested: Tuple["OrderExtraSnapshot", ...] = field(default_factory=tuple)

    def subtree_total(self) -> Decimal:
        """price_delta of this node plus every nested selection."""
        return self.price_delta + sum(
            (child.subtree_total() for child in self.nested),
            Decimal("0")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extra_id": self.extra_id,
            "extra_name": self.name,
            "extra_price": _money(self.price_delta),
            "extras": [child.to_dict() for child in self.nested]
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "OrderExtraSnapshot":
        return cls(
            extra_id=str(doc["extra_id"]),
            name=doc["extra_name"],
            price_delta=_parse_money(doc["extra_price"]),
            nested=tuple(cls.from_dict(c) for c in doc.get("extras") or [])
        )


@dataclass(frozen=True)
class OrderLineSnapshot:
    """
    One ordered item with its extras subtree.

    line_subtotal == quantity * (unit_price + sum of every extra price_delta
    in the subtree).
    """
    line_id: str
    menu_item_id: str
    item_name: str
    unit_price: Decimal
    quantity: int
    extras: Tuple[OrderExtraSnapshot, ...]
    line_subtotal: Decimal
    description: Optional[str] = None

    def extras_total(self) -> Decimal:
        return sum(
            (extra.subtree_total() for extra in self.extras),
            Decimal("0")
        )

    def recompute_subtotal(self) -> Decimal:
        """Re-price the line from its own snapshot."""
        return self.quantity * (self.unit_price + self.extras_total())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_item_id": self.line_id,
            "menu_item_id": self.menu_item_id,
            "item_name": self.item_name,
            "description": self.description,
            "unit_price": _money(self.unit_price),
            "quantity": self.quantity,
            "extras": [extra.to_dict() for extra in self.extras],
            "line_subtotal": _money(self.line_subtotal)
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "OrderLineSnapshot":
        return cls(
            line_id=str(doc["order_item_id"]),
            menu_item_id=str(doc["menu_item_id"]),
            item_name=doc["item_name"],
            description=doc.get("description"),
            unit_price=_parse_money(doc["unit_price"]),
            quantity=int(doc["quantity"]),
            extras=tuple(
                OrderExtraSnapshot.from_dict(e) for e in doc.get("extras") or []
            ),
            line_subtotal=_parse_money(doc["line_subtotal"])
        )


# ============================================================================
# CUSTOMER / RESTAURANT SNAPSHOTS
# ============================================================================

@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer as they were at order time."""
    customer_id: str
    name: str
    email: str
    preferred_name: Optional[str] = None
    phone: Optional[str] = None
    student_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "name": self.name,
            "preferred_name": self.preferred_name,
            "email": self.email,
            "phone": self.phone,
            "student_id": self.student_id
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CustomerSnapshot":
        return cls(
            customer_id=str(doc["customer_id"]),
            name=doc["name"],
            email=doc["email"],
            preferred_name=doc.get("preferred_name"),
            phone=doc.get("phone"),
            student_id=doc.get("student_id")
        )


@dataclass(frozen=True)
class RestaurantSnapshot:
    """Restaurant as it was at order time."""
    restaurant_id: str
    name: str
    location: str
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "location": self.location,
            "phone": self.phone
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "RestaurantSnapshot":
        return cls(
            restaurant_id=str(doc["restaurant_id"]),
            name=doc["name"],
            location=doc["location"],
            phone=doc.get("phone")
        )


# ============================================================================
# ORDER RECORD
# ============================================================================

@dataclass(frozen=True)
class OrderRecord:
    """
    Finished order, ready for a single terminal write.

    Invariants:
    - lines is non-empty
    - subtotal == sum(line.line_subtotal)
    - tax == round_half_up(subtotal * tax_rate, 2)
    - total == subtotal + tax
    """
    order_number: str
    customer: CustomerSnapshot
    restaurant: RestaurantSnapshot
    lines: Tuple[OrderLineSnapshot, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal = DEFAULT_TAX_RATE
    status: OrderStatus = OrderStatus.PENDING
    order_datetime: datetime = field(default_factory=datetime.utcnow)
    pickup_time_requested: Optional[datetime] = None
    pickup_time_ready: Optional[datetime] = None
    special_instructions: Optional[str] = None
    is_cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def item_count(self) -> int:
        """Total units across lines."""
        return sum(line.quantity for line in self.lines)

    def verify(self) -> Tuple[bool, List[str]]:
        """
        Validate order integrity from the snapshot alone.

        Returns:
            (is_valid, error_messages)
        """
        errors = []

        if not self.lines:
            errors.append("Order has no items")

        for line in self.lines:
            expected_line = line.recompute_subtotal()
            if line.line_subtotal != expected_line:
                errors.append(
                    f"Line subtotal mismatch for {line.item_name}: "
                    f"{line.line_subtotal} != {expected_line}"
                )

        expected_subtotal = sum(
            (line.line_subtotal for line in self.lines),
            Decimal("0")
        )
        if self.subtotal != expected_subtotal:
            errors.append(
                f"Subtotal mismatch: {self.subtotal} != {expected_subtotal}"
            )

        expected_tax = calculate_tax(self.subtotal, self.tax_rate)
        if self.tax != expected_tax:
            errors.append(f"Tax mismatch: {self.tax} != {expected_tax}")

        if self.total != self.subtotal + self.tax:
            errors.append(
                f"Total mismatch: {self.total} != {self.subtotal + self.tax}"
            )

        if errors:
            logger.warning(f"Order {self.order_number} failed verification: {errors}")

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Export to storage document."""
        return {
            "order_number": self.order_number,
            "customer": self.customer.to_dict(),
            "restaurant": self.restaurant.to_dict(),
            "items": [line.to_dict() for line in self.lines],
            "status": self.status.value,
            "order_datetime": _iso(self.order_datetime),
            "pickup_time_requested": _iso(self.pickup_time_requested),
            "pickup_time_ready": _iso(self.pickup_time_ready),
            "subtotal_amount": _money(self.subtotal),
            "tax_amount": _money(self.tax),
            "tax_rate": str(self.tax_rate),
            "total_amount": _money(self.total),
            "special_instructions": self.special_instructions,
            "is_cancelled": self.is_cancelled,
            "cancelled_at": _iso(self.cancelled_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "OrderRecord":
        """Rebuild from a stored order document (no catalog access)."""
        return cls(
            order_number=doc["order_number"],
            customer=CustomerSnapshot.from_dict(doc["customer"]),
            restaurant=RestaurantSnapshot.from_dict(doc["restaurant"]),
            lines=tuple(OrderLineSnapshot.from_dict(i) for i in doc["items"]),
            subtotal=_parse_money(doc["subtotal_amount"]),
            tax=_parse_money(doc["tax_amount"]),
            total=_parse_money(doc["total_amount"]),
            tax_rate=_parse_money(doc.get("tax_rate", DEFAULT_TAX_RATE)),
            status=OrderStatus(doc.get("status", OrderStatus.PENDING.value)),
            order_datetime=_parse_datetime(doc["order_datetime"]),
            pickup_time_requested=_parse_datetime(doc.get("pickup_time_requested")),
            pickup_time_ready=_parse_datetime(doc.get("pickup_time_ready")),
            special_instructions=doc.get("special_instructions"),
            is_cancelled=bool(doc.get("is_cancelled", False)),
            cancelled_at=_parse_datetime(doc.get("cancelled_at")),
            created_at=_parse_datetime(doc["created_at"]),
            updated_at=_parse_datetime(doc["updated_at"])
        )
