"""
Memory Module
=============
In-process implementations of the assembler's collaborators.

- InMemoryCatalog: menus held as parsed CatalogMenu snapshots
- InMemoryCustomers: customer profiles by id
- InMemoryOrderStore: write-once order records, unique order numbers

Used for offline quoting (main.py) and tests. Same contracts and errors as
the Supabase-backed providers.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from customers import CustomerProfile
from errors import CustomerNotFound, MenuNotFound, OrderNumberCollision
from menu import CatalogMenu
from order import OrderRecord


logger = logging.getLogger(__name__)


class InMemoryCatalog:
    """Catalog provider over a fixed set of menus."""

    def __init__(self, menus: Optional[Iterable[CatalogMenu]] = None):
        self._menus: Dict[str, CatalogMenu] = {}
        for menu in menus or []:
            self.put(menu)

    @classmethod
    def from_documents(cls, docs: Iterable[Dict[str, Any]]) -> "InMemoryCatalog":
        return cls(CatalogMenu.from_dict(doc) for doc in docs)

    def put(self, menu: CatalogMenu):
        """Replace the menu for its restaurant (catalog edit)."""
        self._menus[menu.restaurant_id] = menu

    async def get_menu(self, restaurant_id: str) -> CatalogMenu:
        menu = self._menus.get(restaurant_id)
        if menu is None:
            raise MenuNotFound(restaurant_id)
        return menu


class InMemoryCustomers:
    """Customer provider over a fixed set of profiles."""

    def __init__(self, customers: Optional[Iterable[CustomerProfile]] = None):
        self._customers: Dict[str, CustomerProfile] = {}
        for customer in customers or []:
            self.put(customer)

    def put(self, customer: CustomerProfile):
        self._customers[customer.customer_id] = customer

    async def get_customer(self, customer_id: str) -> CustomerProfile:
        customer = self._customers.get(customer_id)
        if customer is None:
            raise CustomerNotFound(customer_id)
        return customer


class InMemoryOrderStore:
    """Order store keeping records in insertion order."""

    def __init__(self):
        self._orders: Dict[str, OrderRecord] = {}

    async def save(self, record: OrderRecord) -> OrderRecord:
        if record.order_number in self._orders:
            raise OrderNumberCollision(record.order_number)

        self._orders[record.order_number] = record
        logger.debug(f"Order stored in memory: {record.order_number}")
        return record

    async def list_for_customer(self, customer_id: str) -> List[OrderRecord]:
        orders = [
            record for record in self._orders.values()
            if record.customer.customer_id == customer_id
        ]
        return sorted(orders, key=lambda r: r.created_at, reverse=True)

    def get(self, order_number: str) -> Optional[OrderRecord]:
        return self._orders.get(order_number)

    def __len__(self) -> int:
        return len(self._orders)
