"""
Order Errors
============
Error taxonomy for order assembly.

Every failure raised while validating, pricing or storing an order is an
OrderError. The `kind` attribute is the discriminant an outer layer switches
on; `category` groups kinds into reference, business-rule and storage errors.

NO HTTP MAPPING - callers translate errors into responses.
"""

from enum import Enum
from typing import Any, Dict, Optional


# ============================================================================
# ERROR KINDS
# ============================================================================

class ErrorCategory(Enum):
    """Broad error classes (decides how the caller reports/retries)."""
    REFERENCE = "reference"          # Client referenced an unknown id
    BUSINESS_RULE = "business_rule"  # Selection violates catalog rules
    STORAGE = "storage"              # Store unreachable or write failed


class OrderErrorKind(Enum):
    """Discriminant for every order error."""
    MENU_NOT_FOUND = "menu_not_found"
    ITEM_NOT_FOUND = "item_not_found"
    EXTRA_NOT_FOUND = "extra_not_found"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    ITEM_UNAVAILABLE = "item_unavailable"
    EXTRA_UNAVAILABLE = "extra_unavailable"
    REQUIRED_EXTRA_MISSING = "required_extra_missing"
    TOO_MANY_SELECTIONS = "too_many_selections"
    EXTRA_TREE_TOO_DEEP = "extra_tree_too_deep"
    QUANTITY_EXCEEDED = "quantity_exceeded"
    MENU_INACTIVE = "menu_inactive"
    EMPTY_ORDER = "empty_order"
    STORAGE_ERROR = "storage_error"
    ORDER_NUMBER_COLLISION = "order_number_collision"


# ============================================================================
# BASE ERROR
# ============================================================================

class OrderError(Exception):
    """
    Base class for all order assembly failures.

    Attributes:
        kind: OrderErrorKind discriminant
        category: ErrorCategory of the kind
        name: Offending entity name (when known)
        identifier: Offending entity id (when known)
        message: Human-readable reason
    """

    kind: OrderErrorKind = OrderErrorKind.STORAGE_ERROR
    category: ErrorCategory = ErrorCategory.STORAGE
    retryable: bool = False

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        identifier: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.name = name
        self.identifier = identifier

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (for an outer response layer)."""
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "category": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.name is not None:
            data["name"] = self.name
        if self.identifier is not None:
            data["id"] = self.identifier
        return data


# ============================================================================
# REFERENCE ERRORS
# ============================================================================

class NotFoundError(OrderError):
    """Client referenced an identifier that does not exist."""
    category = ErrorCategory.REFERENCE


class MenuNotFound(NotFoundError):
    kind = OrderErrorKind.MENU_NOT_FOUND

    def __init__(self, restaurant_id: str):
        super().__init__(
            f"Menu not found for restaurant {restaurant_id}",
            identifier=restaurant_id
        )


class ItemNotFound(NotFoundError):
    kind = OrderErrorKind.ITEM_NOT_FOUND

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found", identifier=item_id)


class ExtraNotFound(NotFoundError):
    kind = OrderErrorKind.EXTRA_NOT_FOUND

    def __init__(self, extra_id: str):
        super().__init__(f"Extra {extra_id} not found", identifier=extra_id)


class CustomerNotFound(NotFoundError):
    kind = OrderErrorKind.CUSTOMER_NOT_FOUND

    def __init__(self, customer_id: str):
        super().__init__("Customer not found", identifier=customer_id)


# ============================================================================
# BUSINESS-RULE ERRORS
# ============================================================================

class BusinessRuleError(OrderError):
    """Selection violates current catalog constraints."""
    category = ErrorCategory.BUSINESS_RULE


class ItemUnavailable(BusinessRuleError):
    kind = OrderErrorKind.ITEM_UNAVAILABLE

    def __init__(self, name: str, item_id: Optional[str] = None):
        super().__init__(
            f"{name} is currently unavailable",
            name=name,
            identifier=item_id
        )


class ExtraUnavailable(BusinessRuleError):
    kind = OrderErrorKind.EXTRA_UNAVAILABLE

    def __init__(self, name: str, extra_id: Optional[str] = None):
        super().__init__(
            f"{name} is currently unavailable",
            name=name,
            identifier=extra_id
        )


class RequiredExtraMissing(BusinessRuleError):
    kind = OrderErrorKind.REQUIRED_EXTRA_MISSING

    def __init__(self, name: str, extra_id: Optional[str] = None):
        super().__init__(f"{name} is required", name=name, identifier=extra_id)


class TooManySelections(BusinessRuleError):
    kind = OrderErrorKind.TOO_MANY_SELECTIONS

    def __init__(self, name: str, limit: int, selected: int):
        super().__init__(
            f"{name} allows at most {limit} selection(s), got {selected}",
            name=name
        )
        self.limit = limit
        self.selected = selected


class ExtraTreeTooDeep(BusinessRuleError):
    kind = OrderErrorKind.EXTRA_TREE_TOO_DEEP

    def __init__(self, max_depth: int):
        super().__init__(f"Extra selections nest deeper than {max_depth} levels")
        self.max_depth = max_depth


class QuantityExceeded(BusinessRuleError):
    kind = OrderErrorKind.QUANTITY_EXCEEDED

    def __init__(self, name: str, max_per_order: int, quantity: int):
        super().__init__(
            f"{name} is limited to {max_per_order} per order",
            name=name
        )
        self.max_per_order = max_per_order
        self.quantity = quantity


class MenuInactive(BusinessRuleError):
    kind = OrderErrorKind.MENU_INACTIVE

    def __init__(self, name: str, restaurant_id: Optional[str] = None):
        super().__init__(
            f"{name} is not accepting orders",
            name=name,
            identifier=restaurant_id
        )


class EmptyOrder(BusinessRuleError):
    kind = OrderErrorKind.EMPTY_ORDER

    def __init__(self):
        super().__init__("Order must contain at least one item")


# ============================================================================
# STORAGE ERRORS
# ============================================================================

class StorageError(OrderError):
    """Store read/write failed. Nothing partial was written."""
    kind = OrderErrorKind.STORAGE_ERROR
    category = ErrorCategory.STORAGE
    retryable = True


class OrderNumberCollision(StorageError):
    kind = OrderErrorKind.ORDER_NUMBER_COLLISION

    def __init__(self, order_number: str):
        super().__init__(
            f"Order number already exists: {order_number}",
            identifier=order_number
        )
