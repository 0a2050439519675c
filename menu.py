"""
Menu Module
===========
Read-only catalog model and catalog lookup.

- Catalog types (CatalogMenu → CatalogGroup → CatalogItem → CatalogExtra tree)
- find_item: item lookup inside a menu's group structure
- MenuRepository: catalog provider backed by the database, with a TTL cache

Catalog objects are frozen. A menu fetched for one order is a snapshot for
the whole assembly; later catalog edits never reach it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from prometheus_client import Counter

from errors import ItemNotFound, MenuNotFound, StorageError
from policy import round_to_cents, to_money


logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

CACHE_TTL = 300  # 5 minutes
CACHE_MAX_SIZE = 100


# ============================================================================
# METRICS
# ============================================================================

menu_cache_hits = Counter('menu_cache_hits_total', 'Menu cache hits')
menu_cache_misses = Counter('menu_cache_misses_total', 'Menu cache misses')
menu_lookup_failures = Counter(
    'menu_lookup_failures_total',
    'Menu lookup failures',
    ['reason']
)


# ============================================================================
# CATALOG TYPES
# ============================================================================

def _ordered(docs: Any) -> list:
    """Sort raw child documents by display_order (stable)."""
    if not docs:
        return []
    if not isinstance(docs, (list, tuple)):
        raise ValueError(f"Expected a list, got {type(docs).__name__}")
    return sorted(docs, key=lambda d: int(d.get("display_order", 0) or 0))


def _price(value: Any, field_name: str) -> Decimal:
    """Catalog prices must be whole cents."""
    amount = to_money(value)
    if amount != round_to_cents(amount):
        raise ValueError(f"{field_name} must be whole cents, got {value!r}")
    return amount


def _positive_int(value: Any, default: int, field_name: str) -> int:
    if value is None:
        return default
    number = int(value)
    if number < 1:
        raise ValueError(f"{field_name} must be >= 1, got {value!r}")
    return number


@dataclass(frozen=True)
class CatalogExtra:
    """
    Selectable option node.

    `extras` holds the node's own nested option group: an "Entree" node's
    extras are the entree choices, a "Cheeseburger" choice's extras are its
    toppings.
    """
    extra_id: str
    name: str
    price_delta: Decimal
    is_available: bool = True
    is_required: bool = False
    max_selectable: int = 1
    display_order: int = 0
    description: Optional[str] = None
    extras: Tuple["CatalogExtra", ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CatalogExtra":
        """Build from a stored extra document (recursive)."""
        return cls(
            extra_id=str(doc["extra_id"]),
            name=str(doc.get("extra_name") or doc["name"]).strip(),
            price_delta=_price(doc.get("price_delta", 0), "price_delta"),
            is_available=bool(doc.get("is_available", True)),
            is_required=bool(doc.get("is_required", False)),
            max_selectable=_positive_int(
                doc.get("max_selectable"), 1, "max_selectable"
            ),
            display_order=int(doc.get("display_order", 0) or 0),
            description=doc.get("extra_description") or doc.get("description"),
            extras=tuple(
                cls.from_dict(child) for child in _ordered(doc.get("extras"))
            )
        )


@dataclass(frozen=True)
class CatalogItem:
    """Orderable menu item with its top-level extras."""
    item_id: str
    name: str
    base_price: Decimal
    is_available: bool = True
    max_per_order: int = 10
    description: Optional[str] = None
    extras: Tuple[CatalogExtra, ...] = field(default_factory=tuple)
    image_url: Optional[str] = None
    is_vegetarian: bool = False
    is_vegan: bool = False
    is_gluten_free: bool = False
    prep_time: Optional[int] = None

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CatalogItem":
        """Build from a stored menu item document."""
        prep_time = doc.get("prep_time")
        return cls(
            item_id=str(doc["item_id"]),
            name=str(doc.get("item_name") or doc["name"]).strip(),
            base_price=_price(doc["base_price"], "base_price"),
            is_available=bool(doc.get("is_available", True)),
            max_per_order=_positive_int(
                doc.get("max_per_order"), 10, "max_per_order"
            ),
            description=doc.get("description"),
            extras=tuple(
                CatalogExtra.from_dict(child)
                for child in _ordered(doc.get("extras"))
            ),
            image_url=doc.get("image_url"),
            is_vegetarian=bool(doc.get("is_vegetarian", False)),
            is_vegan=bool(doc.get("is_vegan", False)),
            is_gluten_free=bool(doc.get("is_gluten_free", False)),
            prep_time=int(prep_time) if prep_time is not None else None
        )


@dataclass(frozen=True)
class CatalogGroup:
    """Menu group/category (e.g. "Burgers", "Combos")."""
    group_id: str
    name: str
    display_order: int = 0
    is_active: bool = True
    items: Tuple[CatalogItem, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CatalogGroup":
        return cls(
            group_id=str(doc["group_id"]),
            name=str(doc.get("group_name") or doc["name"]).strip(),
            display_order=int(doc.get("display_order", 0) or 0),
            is_active=bool(doc.get("is_active", True)),
            items=tuple(CatalogItem.from_dict(i) for i in doc.get("items") or [])
        )


@dataclass(frozen=True)
class CatalogMenu:
    """Complete menu for one restaurant."""
    restaurant_id: str
    restaurant_name: str
    restaurant_location: str
    restaurant_phone: Optional[str] = None
    is_active: bool = True
    groups: Tuple[CatalogGroup, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CatalogMenu":
        """Build from a stored menu document."""
        return cls(
            restaurant_id=str(doc["restaurant_id"]),
            restaurant_name=str(doc["restaurant_name"]).strip(),
            restaurant_location=str(doc["restaurant_location"]).strip(),
            restaurant_phone=doc.get("restaurant_phone"),
            is_active=bool(doc.get("is_active", True)),
            groups=tuple(
                CatalogGroup.from_dict(g) for g in _ordered(doc.get("groups"))
            )
        )

    def item_count(self) -> int:
        return sum(len(group.items) for group in self.groups)


# ============================================================================
# LOOKUP
# ============================================================================

def find_item(menu: CatalogMenu, item_id: str) -> CatalogItem:
    """
    Find a menu item by id within the menu's groups.

    Groups are scanned in display order; the first match wins.

    Raises:
        ItemNotFound: If no group holds the item (client input error)
    """
    wanted = str(item_id)
    for group in menu.groups:
        for item in group.items:
            if item.item_id == wanted:
                return item

    raise ItemNotFound(wanted)


# ============================================================================
# MENU REPOSITORY (Catalog provider)
# ============================================================================

class MenuRepository:
    """
    Catalog provider backed by the `menus` table.

    Responsibilities:
    - Fetch raw menu documents
    - Parse them into frozen CatalogMenu snapshots
    - Cache parsed menus (TTL, bounded size)

    Does NOT:
    - Validate selections
    - Price anything
    """

    def __init__(
        self,
        client=None,
        ttl: int = CACHE_TTL,
        max_size: int = CACHE_MAX_SIZE
    ):
        self._client = client
        self.ttl = ttl
        self.max_size = max_size
        self.cache: Dict[str, Tuple[CatalogMenu, datetime]] = {}

    @property
    def client(self):
        if self._client is None:
            from db import get_db
            self._client = get_db()
        return self._client

    async def get_menu(self, restaurant_id: str) -> CatalogMenu:
        """
        Get menu snapshot for restaurant.

        Raises:
            MenuNotFound: If the restaurant has no menu
            StorageError: If the store failed or the document is malformed
        """
        cached = self._get_from_cache(restaurant_id)
        if cached is not None:
            return cached

        raw_menu = await self.client.fetch_menu(restaurant_id)

        if not raw_menu:
            logger.warning(f"No menu found: {restaurant_id}")
            menu_lookup_failures.labels(reason='not_found').inc()
            raise MenuNotFound(restaurant_id)

        try:
            menu = CatalogMenu.from_dict(raw_menu)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed menu document for {restaurant_id}: {e}")
            menu_lookup_failures.labels(reason='malformed').inc()
            raise StorageError(
                f"Menu document for restaurant {restaurant_id} is malformed",
                identifier=restaurant_id
            ) from e

        self._set_in_cache(restaurant_id, menu)

        logger.debug(
            f"Loaded menu {restaurant_id}: "
            f"{len(menu.groups)} groups, {menu.item_count()} items"
        )

        return menu

    def invalidate_cache(self, restaurant_id: str):
        """Invalidate cache for restaurant."""
        if restaurant_id in self.cache:
            del self.cache[restaurant_id]
            logger.info(f"Menu cache invalidated: {restaurant_id}")

    def _get_from_cache(self, restaurant_id: str) -> Optional[CatalogMenu]:
        """Get menu from cache if still fresh."""
        if self.ttl <= 0 or restaurant_id not in self.cache:
            menu_cache_misses.inc()
            return None

        menu, timestamp = self.cache[restaurant_id]

        if datetime.utcnow() - timestamp > timedelta(seconds=self.ttl):
            del self.cache[restaurant_id]
            menu_cache_misses.inc()
            return None

        menu_cache_hits.inc()
        return menu

    def _set_in_cache(self, restaurant_id: str, menu: CatalogMenu):
        """Set menu in cache, evicting the oldest entry when full."""
        if self.ttl <= 0:
            return

        if restaurant_id not in self.cache and len(self.cache) >= self.max_size:
            oldest = min(self.cache.keys(), key=lambda k: self.cache[k][1])
            del self.cache[oldest]

        self.cache[restaurant_id] = (menu, datetime.utcnow())
