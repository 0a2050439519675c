import asyncio
import sys
from typing import Any, Dict, List

import pytest
import structlog

from assembler import LineRequest, OrderAssembler, SelectionRequest
from customers import CustomerProfile
from extras import ExtraSelection
from memory import InMemoryCatalog, InMemoryCustomers, InMemoryOrderStore
from menu import CatalogMenu


RESTAURANT_ID = "rest_001"
CUSTOMER_ID = "cust_001"


def extra_doc(extra_id: str, name: str, price: Any = 0, **kwargs) -> Dict[str, Any]:
    """Stored extra document, storage field names."""
    doc = {
        "extra_id": extra_id,
        "extra_name": name,
        "price_delta": price,
        "is_available": kwargs.pop("available", True),
        "is_required": kwargs.pop("required", False),
        "max_selectable": kwargs.pop("max_selectable", 1),
        "display_order": kwargs.pop("display_order", 0),
        "extras": kwargs.pop("extras", []),
    }
    doc.update(kwargs)
    return doc


def combo_menu_doc() -> Dict[str, Any]:
    """
    Combo (10.99) with:
      Entree* → Cheeseburger → {Extra Cheese .50, Bacon 1.25, Pickles}
              → Veggie Burger
      Drink*  → Fountain Soda, Lemonade (unavailable)
      Dessert 1.50 → Flavor* → Chocolate
    (* = required)
    """
    return {
        "restaurant_id": RESTAURANT_ID,
        "restaurant_name": "Pioneer Grill",
        "restaurant_location": "Student Center",
        "restaurant_phone": "607-555-0100",
        "is_active": True,
        "groups": [
            {
                "group_id": "grp_combos",
                "group_name": "Combos",
                "display_order": 1,
                "items": [
                    {
                        "item_id": "combo",
                        "item_name": "Combo",
                        "description": "Entree and a drink",
                        "base_price": 10.99,
                        "max_per_order": 5,
                        "extras": [
                            extra_doc("entree", "Entree", required=True, extras=[
                                extra_doc(
                                    "cheeseburger", "Cheeseburger",
                                    max_selectable=2,
                                    extras=[
                                        extra_doc("extra-cheese", "Extra Cheese", 0.50),
                                        extra_doc("bacon", "Bacon", 1.25),
                                        extra_doc("pickles", "Pickles"),
                                    ]
                                ),
                                extra_doc("veggie", "Veggie Burger"),
                            ]),
                            extra_doc("drink", "Drink", required=True, extras=[
                                extra_doc("soda", "Fountain Soda"),
                                extra_doc("lemonade", "Lemonade", 0.75, available=False),
                            ]),
                            extra_doc("dessert", "Dessert", 1.50, extras=[
                                extra_doc("flavor", "Flavor", required=True, extras=[
                                    extra_doc("chocolate", "Chocolate"),
                                ]),
                            ]),
                        ],
                    },
                ],
            },
            {
                "group_id": "grp_sides",
                "group_name": "Sides",
                "display_order": 0,
                "items": [
                    {"item_id": "fries", "item_name": "Fries", "base_price": 2.99},
                    {
                        "item_id": "shake",
                        "item_name": "Milkshake",
                        "base_price": 4.50,
                        "is_available": False,
                    },
                ],
            },
        ],
    }


def sel(extra_id: str, *nested: ExtraSelection) -> ExtraSelection:
    return ExtraSelection(extra_id=extra_id, nested_selections=tuple(nested))


def combo_selection() -> List[ExtraSelection]:
    """Entree → Cheeseburger → Extra Cheese, Drink → Fountain Soda."""
    return [
        sel("entree", sel("cheeseburger", sel("extra-cheese"))),
        sel("drink", sel("soda")),
    ]


def request_for(*lines: LineRequest, restaurant_id: str = RESTAURANT_ID) -> SelectionRequest:
    return SelectionRequest(restaurant_id=restaurant_id, items=tuple(lines))


def run(coro):
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Drop logging config bound to a test's captured stream once it closes."""
    yield
    structlog.reset_defaults()
    for module in list(sys.modules.values()):
        proxy = getattr(module, "logger", None)
        if isinstance(proxy, structlog._config.BoundLoggerLazyProxy):
            proxy.__dict__.pop("bind", None)


@pytest.fixture
def menu_doc() -> Dict[str, Any]:
    return combo_menu_doc()


@pytest.fixture
def menu(menu_doc) -> CatalogMenu:
    return CatalogMenu.from_dict(menu_doc)


@pytest.fixture
def combo(menu):
    return menu.groups[1].items[0]


@pytest.fixture
def customer() -> CustomerProfile:
    return CustomerProfile(
        customer_id=CUSTOMER_ID,
        display_name="Alex Rivera",
        preferred_name="Lex",
        email="alex@example.edu",
        phone="607-555-0199",
        student_id="STU12345678",
    )


@pytest.fixture
def catalog(menu) -> InMemoryCatalog:
    return InMemoryCatalog([menu])


@pytest.fixture
def customers(customer) -> InMemoryCustomers:
    return InMemoryCustomers([customer])


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def assembler(catalog, customers, store) -> OrderAssembler:
    return OrderAssembler(catalog=catalog, customers=customers, store=store)
