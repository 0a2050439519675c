"""
Order Assembler
===============
Orchestrates one order from selection request to finished record.

Responsibilities:
- Resolve customer and menu (once per order)
- Price every requested line through the extra-tree engine
- Apply tax policy and stamp customer/restaurant snapshots
- Place: one terminal write, retrying order-number collisions

Everything is computed in memory first; the only side effect is the final
save in place_order. Cancelling before that write leaves nothing behind.
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, List, Optional, Protocol, Tuple, TypeVar

import structlog
from prometheus_client import Counter, Histogram

from customers import CustomerProfile, CustomerRepository
from errors import (
    EmptyOrder,
    MenuInactive,
    OrderError,
    OrderNumberCollision,
    StorageError,
)
from extras import DEFAULT_MAX_DEPTH, ExtraSelection, price_item_line
from menu import CatalogMenu, MenuRepository, find_item
from order import CustomerSnapshot, OrderRecord, RestaurantSnapshot
from policy import (
    DEFAULT_ORDER_NUMBER_PREFIX,
    DEFAULT_TAX_RATE,
    calculate_tax,
    generate_order_number,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# METRICS
# ============================================================================

orders_assembled = Counter(
    'orders_assembled_total',
    'Order assembly attempts',
    ['result']
)
order_value = Histogram(
    'order_value_dollars',
    'Order total distribution'
)
order_placements = Counter(
    'order_placements_total',
    'Order placement results',
    ['result']
)


# ============================================================================
# SELECTION REQUEST
# ============================================================================

@dataclass(frozen=True)
class LineRequest:
    """One requested item with its extra selections."""
    item_id: str
    quantity: int
    selected_extras: Tuple[ExtraSelection, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SelectionRequest:
    """
    Structurally valid order request.

    Shape validation happens before this is built (see validation.py).
    """
    restaurant_id: str
    items: Tuple[LineRequest, ...]
    pickup_time_requested: Optional[datetime] = None
    special_instructions: Optional[str] = None


# ============================================================================
# COLLABORATORS
# ============================================================================

class CatalogProvider(Protocol):
    async def get_menu(self, restaurant_id: str) -> CatalogMenu: ...


class CustomerProvider(Protocol):
    async def get_customer(self, customer_id: str) -> CustomerProfile: ...


class OrderStore(Protocol):
    async def save(self, record: OrderRecord) -> OrderRecord: ...

    async def list_for_customer(self, customer_id: str) -> List[OrderRecord]: ...


# ============================================================================
# SNAPSHOTS
# ============================================================================

def create_customer_snapshot(customer: CustomerProfile) -> CustomerSnapshot:
    return CustomerSnapshot(
        customer_id=customer.customer_id,
        name=customer.display_name,
        preferred_name=customer.preferred_name,
        email=customer.email,
        phone=customer.phone,
        student_id=customer.student_id
    )


def create_restaurant_snapshot(menu: CatalogMenu) -> RestaurantSnapshot:
    return RestaurantSnapshot(
        restaurant_id=menu.restaurant_id,
        name=menu.restaurant_name,
        location=menu.restaurant_location,
        phone=menu.restaurant_phone
    )


# ============================================================================
# ORDER ASSEMBLER
# ============================================================================

class OrderAssembler:
    """
    Builds and places orders.

    This class:
    - Reads catalog and customer through injected providers
    - Delegates all tree validation and pricing to extras.py
    - Writes at most once per placed order

    This class does NOT:
    - Parse or shape-check requests
    - Change order status after creation
    """

    def __init__(
        self,
        catalog: CatalogProvider,
        customers: CustomerProvider,
        store: Optional[OrderStore] = None,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        max_extra_depth: int = DEFAULT_MAX_DEPTH,
        enforce_max_selectable: bool = True,
        order_number_prefix: str = DEFAULT_ORDER_NUMBER_PREFIX,
        order_number_retries: int = 3,
        timeout: Optional[float] = None
    ):
        self.catalog = catalog
        self.customers = customers
        self.store = store
        self.tax_rate = Decimal(tax_rate)
        self.max_extra_depth = max_extra_depth
        self.enforce_max_selectable = enforce_max_selectable
        self.order_number_prefix = order_number_prefix
        self.order_number_retries = order_number_retries
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "OrderAssembler":
        """
        Build with Supabase-backed providers and environment policy.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        from config import get_config
        from db import OrderRepository, get_db

        config = get_config()
        client = get_db()
        ordering = config.ordering

        return cls(
            catalog=MenuRepository(
                client,
                ttl=ordering.menu_cache_ttl,
                max_size=ordering.menu_cache_max_size
            ),
            customers=CustomerRepository(client),
            store=OrderRepository(client),
            tax_rate=ordering.tax_rate,
            max_extra_depth=ordering.max_extra_depth,
            enforce_max_selectable=ordering.enforce_max_selectable,
            order_number_prefix=ordering.order_number_prefix,
            order_number_retries=ordering.order_number_retries,
            timeout=ordering.provider_timeout
        )

    # ========================================================================
    # ASSEMBLY
    # ========================================================================

    async def assemble_order(
        self,
        customer_id: str,
        request: SelectionRequest
    ) -> OrderRecord:
        """
        Validate, price and snapshot a full order. Writes nothing.

        Raises:
            EmptyOrder: If the request has no items
            CustomerNotFound, MenuNotFound, MenuInactive
            ItemNotFound, ItemUnavailable, QuantityExceeded,
            ExtraNotFound, ExtraUnavailable, RequiredExtraMissing,
            TooManySelections, ExtraTreeTooDeep (unchanged from pricing)
            StorageError: If a provider failed or timed out
        """
        log = logger.bind(
            customer_id=customer_id,
            restaurant_id=request.restaurant_id
        )

        try:
            if not request.items:
                raise EmptyOrder()

            customer = await self._call(
                "get_customer",
                self.customers.get_customer(customer_id)
            )
            menu = await self._call(
                "get_menu",
                self.catalog.get_menu(request.restaurant_id)
            )

            if not menu.is_active:
                raise MenuInactive(menu.restaurant_name, menu.restaurant_id)

            record = self.build_record(customer, menu, request)

        except OrderError as e:
            orders_assembled.labels(result=e.kind.value).inc()
            log.warning(
                "order_rejected",
                kind=e.kind.value,
                reason=e.message
            )
            raise

        orders_assembled.labels(result='success').inc()
        log.info(
            "order_assembled",
            order_number=record.order_number,
            lines=len(record.lines),
            subtotal=str(record.subtotal),
            total=str(record.total)
        )

        return record

    def build_record(
        self,
        customer: CustomerProfile,
        menu: CatalogMenu,
        request: SelectionRequest
    ) -> OrderRecord:
        """
        Pure part of assembly: price lines and compute totals.

        Lines keep request order.
        """
        if not request.items:
            raise EmptyOrder()

        lines = []
        for line_request in request.items:
            item = find_item(menu, line_request.item_id)
            lines.append(price_item_line(
                item,
                line_request.quantity,
                line_request.selected_extras,
                max_depth=self.max_extra_depth,
                enforce_max_selectable=self.enforce_max_selectable
            ))

        subtotal = sum((line.line_subtotal for line in lines), Decimal("0"))
        tax = calculate_tax(subtotal, self.tax_rate)
        now = datetime.utcnow()

        return OrderRecord(
            order_number=generate_order_number(self.order_number_prefix, now),
            customer=create_customer_snapshot(customer),
            restaurant=create_restaurant_snapshot(menu),
            lines=tuple(lines),
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            tax_rate=self.tax_rate,
            order_datetime=now,
            pickup_time_requested=request.pickup_time_requested,
            special_instructions=request.special_instructions,
            created_at=now,
            updated_at=now
        )

    # ========================================================================
    # PLACEMENT
    # ========================================================================

    async def place_order(
        self,
        customer_id: str,
        request: SelectionRequest
    ) -> OrderRecord:
        """
        Assemble and persist an order with a single terminal write.

        Order-number collisions are retried with a fresh number. Any other
        storage failure propagates; nothing partial was written and the
        whole call is safe to retry.

        Raises:
            Every assemble_order error
            OrderNumberCollision: If retries are exhausted
            StorageError: If the write failed
        """
        if self.store is None:
            raise StorageError("No order store configured")

        record = await self.assemble_order(customer_id, request)
        log = logger.bind(customer_id=customer_id)

        attempt = 0
        while True:
            try:
                saved = await self._call("save_order", self.store.save(record))
                break

            except OrderNumberCollision:
                if attempt >= self.order_number_retries:
                    order_placements.labels(result='collision').inc()
                    log.error(
                        "order_number_retries_exhausted",
                        order_number=record.order_number,
                        attempts=attempt + 1
                    )
                    raise

                attempt += 1
                log.warning(
                    "order_number_collision",
                    order_number=record.order_number,
                    attempt=attempt
                )
                record = dataclasses.replace(
                    record,
                    order_number=generate_order_number(self.order_number_prefix)
                )

            except StorageError as e:
                order_placements.labels(result='storage_error').inc()
                log.error("order_save_failed", reason=e.message)
                raise

        order_placements.labels(result='success').inc()
        order_value.observe(float(saved.total))
        log.info(
            "order_placed",
            order_number=saved.order_number,
            total=str(saved.total)
        )

        return saved

    async def list_customer_orders(self, customer_id: str) -> List[OrderRecord]:
        """Customer's past orders, newest first."""
        if self.store is None:
            raise StorageError("No order store configured")

        return await self._call(
            "list_orders",
            self.store.list_for_customer(customer_id)
        )

    # ========================================================================
    # UTILITIES
    # ========================================================================

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """
        Await a collaborator call, bounded by the configured timeout.

        Raises:
            StorageError: On timeout
        """
        if self.timeout is None:
            return await awaitable

        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("collaborator_timeout", operation=operation, timeout=self.timeout)
            raise StorageError(f"Timed out during {operation}") from e


# ============================================================================
# PUBLIC API
# ============================================================================

_assembler: Optional[OrderAssembler] = None


def get_assembler() -> OrderAssembler:
    """Get global assembler (Supabase-backed). Initializes on first call."""
    global _assembler

    if _assembler is None:
        _assembler = OrderAssembler.from_config()

    return _assembler


async def assemble_order(customer_id: str, request: SelectionRequest) -> OrderRecord:
    """Validate, price and snapshot an order without storing it."""
    return await get_assembler().assemble_order(customer_id, request)


async def place_order(customer_id: str, request: SelectionRequest) -> OrderRecord:
    """Assemble and store an order."""
    return await get_assembler().place_order(customer_id, request)
