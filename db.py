"""
Database Module
===============
Async storage layer over Supabase.

- DatabaseClient: timed reads and single-shot writes behind a circuit breaker
- OrderRepository: order store (one atomic insert per order)

Reads and writes run the blocking Supabase client in the default executor,
bounded by a timeout. Failures raise StorageError; nothing is retried here
except where the caller asks for it.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from postgrest.exceptions import APIError
from prometheus_client import Counter
from supabase import Client, create_client

from errors import OrderNumberCollision, StorageError
from order import OrderRecord


logger = logging.getLogger(__name__)


# Configuration
DEFAULT_TIMEOUT = 5.0  # seconds
CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_TIMEOUT = 30  # seconds
UNIQUE_VIOLATION = "23505"  # Postgres error code


storage_errors = Counter(
    'storage_errors_total',
    'Storage operation failures',
    ['operation']
)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """Circuit breaker for database operations."""

    def __init__(
        self,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        timeout: int = CIRCUIT_BREAKER_TIMEOUT
    ):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.success_count = 0

    def record_success(self):
        """Record successful operation."""
        self.failure_count = 0

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:
                self.state = CircuitState.CLOSED
                self.success_count = 0
                logger.info("Circuit breaker closed (recovered)")

    def record_failure(self):
        """Record failed operation."""
        self.failure_count += 1
        self.last_failure_time = datetime.utcnow()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.threshold:
            self.state = CircuitState.OPEN
            logger.error(
                f"Circuit breaker opened "
                f"(failures: {self.failure_count})"
            )

    def can_execute(self) -> bool:
        """Check if operation can execute."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.last_failure_time:
                elapsed = (datetime.utcnow() - self.last_failure_time).total_seconds()
                if elapsed >= self.timeout:
                    self.state = CircuitState.HALF_OPEN
                    self.success_count = 0
                    logger.info("Circuit breaker half-open (testing)")
                    return True
            return False

        # HALF_OPEN - allow test requests
        return True

    def get_state(self) -> str:
        return self.state.value


class DatabaseClient:
    """
    Supabase client with timeouts and a circuit breaker.

    Tables: menus (one row per restaurant), customers, orders.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        menus_table: str = "menus",
        customers_table: str = "customers",
        orders_table: str = "orders"
    ):
        self.client = client
        self.timeout = timeout
        self.menus_table = menus_table
        self.customers_table = customers_table
        self.orders_table = orders_table
        self.circuit_breaker = CircuitBreaker()

        # Stats
        self.read_count = 0
        self.write_count = 0
        self.error_count = 0

    @classmethod
    def from_config(cls) -> "DatabaseClient":
        """
        Build from environment configuration.

        Raises:
            ConfigurationError: If Supabase is not configured
        """
        from config import get_config

        config = get_config()
        config.supabase.require()

        client = create_client(config.supabase.url, config.supabase.key)
        logger.info("Supabase client initialized")

        return cls(
            client=client,
            timeout=config.ordering.provider_timeout,
            menus_table=config.supabase.menus_table,
            customers_table=config.supabase.customers_table,
            orders_table=config.supabase.orders_table
        )

    async def _run(self, operation: str, query: Callable[[], Any]) -> Any:
        """
        Run a blocking Supabase query with timeout and circuit breaker.

        Raises:
            StorageError: On timeout, open circuit or client error
        """
        if self.client is None:
            raise StorageError("Database client not initialized")

        if not self.circuit_breaker.can_execute():
            logger.warning(f"Circuit breaker open, rejecting {operation}")
            storage_errors.labels(operation=operation).inc()
            raise StorageError(f"Storage unavailable ({operation})")

        loop = asyncio.get_running_loop()

        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, query),
                timeout=self.timeout
            )

        except asyncio.TimeoutError as e:
            logger.error(f"{operation} timed out after {self.timeout}s")
            self._record_error(operation)
            raise StorageError(f"Storage timeout ({operation})") from e

        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                # Store is healthy; the row already exists
                self.circuit_breaker.record_success()
                raise
            logger.error(f"{operation} failed: {e.message}")
            self._record_error(operation)
            raise StorageError(f"Storage error ({operation}): {e.message}") from e

        except Exception as e:
            logger.error(f"{operation} failed: {str(e)}")
            self._record_error(operation)
            raise StorageError(f"Storage error ({operation})") from e

        self.circuit_breaker.record_success()
        return result

    def _record_error(self, operation: str):
        self.error_count += 1
        self.circuit_breaker.record_failure()
        storage_errors.labels(operation=operation).inc()

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    async def fetch_menu(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch raw menu document.

        Returns:
            Menu document or None if the restaurant has no menu
        """
        result = await self._run(
            "fetch_menu",
            lambda: self.client
                .table(self.menus_table)
                .select("*")
                .eq("restaurant_id", restaurant_id)
                .limit(1)
                .execute()
        )
        self.read_count += 1

        return result.data[0] if result.data else None

    async def fetch_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch raw customer document.

        Returns:
            Customer document or None if unknown
        """
        result = await self._run(
            "fetch_customer",
            lambda: self.client
                .table(self.customers_table)
                .select("*")
                .eq("id", customer_id)
                .limit(1)
                .execute()
        )
        self.read_count += 1

        return result.data[0] if result.data else None

    async def fetch_orders_for_customer(self, customer_id: str) -> List[Dict[str, Any]]:
        """Fetch order documents for a customer, newest first."""
        result = await self._run(
            "fetch_orders",
            lambda: self.client
                .table(self.orders_table)
                .select("*")
                .eq("customer->>customer_id", customer_id)
                .order("created_at", desc=True)
                .execute()
        )
        self.read_count += 1

        return list(result.data or [])

    # ========================================================================
    # WRITE OPERATIONS
    # ========================================================================

    async def insert_order(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert one order document (single atomic write).

        Raises:
            OrderNumberCollision: If order_number already exists
            StorageError: On any other failure
        """
        try:
            result = await self._run(
                "insert_order",
                lambda: self.client
                    .table(self.orders_table)
                    .insert(document)
                    .execute()
            )
        except APIError as e:
            logger.warning(f"Order number collision: {document.get('order_number')}")
            raise OrderNumberCollision(document.get("order_number", "")) from e

        self.write_count += 1
        return result.data[0] if result.data else document

    # ========================================================================
    # STATS & MONITORING
    # ========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        return {
            "reads": self.read_count,
            "writes": self.write_count,
            "errors": self.error_count,
            "circuit_breaker": self.circuit_breaker.get_state(),
            "circuit_failures": self.circuit_breaker.failure_count
        }

    def is_healthy(self) -> bool:
        """Check if database is healthy."""
        return (
            self.client is not None and
            self.circuit_breaker.state != CircuitState.OPEN
        )


# ============================================================================
# ORDER STORE
# ============================================================================

class OrderRepository:
    """Order store backed by the `orders` table."""

    def __init__(self, client: Optional[DatabaseClient] = None):
        self._client = client

    @property
    def client(self) -> DatabaseClient:
        if self._client is None:
            self._client = get_db()
        return self._client

    async def save(self, record: OrderRecord) -> OrderRecord:
        """
        Persist a finished order in one write.

        Raises:
            OrderNumberCollision: If the order number is taken (retryable)
            StorageError: On any other failure
        """
        await self.client.insert_order(record.to_dict())
        logger.info(f"Order stored: {record.order_number}")
        return record

    async def list_for_customer(self, customer_id: str) -> List[OrderRecord]:
        """
        Customer's orders, newest first.

        Raises:
            StorageError: On read failure or a malformed stored order
        """
        docs = await self.client.fetch_orders_for_customer(customer_id)

        try:
            return [OrderRecord.from_dict(doc) for doc in docs]
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.error(f"Malformed order document for {customer_id}: {e}")
            raise StorageError(
                f"Stored order for customer {customer_id} is malformed"
            ) from e


# ============================================================================
# GLOBAL DATABASE INSTANCE
# ============================================================================

_db: Optional[DatabaseClient] = None


def get_db() -> DatabaseClient:
    """
    Get global database client.
    Initializes on first call.

    Raises:
        ConfigurationError: If Supabase is not configured
    """
    global _db

    if _db is None:
        _db = DatabaseClient.from_config()

    return _db

