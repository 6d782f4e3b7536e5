"""
Store primitives the checkout transaction runs on.

``CheckoutStore`` is the contract; ``PostgresCheckoutStore`` is the production
implementation. One store instance serves exactly one checkout attempt.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

import psycopg
from psycopg import errors as pg_errors

from .db import connect
from .errors import TransientStoreFailure
from .settings import LOCK_TIMEOUT_MS

# deadlock_detected, serialization_failure, lock_not_available
TRANSIENT_ERRORS = (
    pg_errors.DeadlockDetected,
    pg_errors.SerializationFailure,
    pg_errors.LockNotAvailable,
)


@dataclass(frozen=True)
class StockRow:
    quantity: int
    price: Decimal


@runtime_checkable
class CheckoutStore(Protocol):
    def begin(self) -> None: ...

    def lock_for_update(self, item_id: int) -> Optional[StockRow]:
        """Read quantity and price holding an exclusive row lock; None when missing."""
        ...

    def decrement_quantity(self, item_id: int, qty: int) -> None: ...

    def insert_order(self, buyer_id: int, total: Decimal) -> int: ...

    def insert_order_line(self, order_id: int, item_id: int, qty: int, price: Decimal) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


class PostgresCheckoutStore:
    """
    Autocommit connection with explicit BEGIN/COMMIT/ROLLBACK, so that
    beginning a transaction is its own step that can fail on its own.
    """

    def __init__(self, lock_timeout_ms: int = LOCK_TIMEOUT_MS):
        self.lock_timeout_ms = lock_timeout_ms
        self.conn: Optional[psycopg.Connection] = None

    def _execute(self, sql: str, params: Optional[tuple] = None):
        try:
            return self.conn.execute(sql, params)
        except TRANSIENT_ERRORS as exc:
            raise TransientStoreFailure(type(exc).__name__) from exc

    def begin(self) -> None:
        self.conn = connect(autocommit=True)
        self._execute("BEGIN")
        if self.lock_timeout_ms > 0:
            # SET does not accept bind parameters
            self._execute(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}")

    def lock_for_update(self, item_id: int) -> Optional[StockRow]:
        row = self._execute(
            "SELECT quantity, price FROM crops WHERE id = %s FOR UPDATE",
            (item_id,),
        ).fetchone()
        if not row:
            return None
        return StockRow(quantity=row["quantity"], price=Decimal(row["price"]))

    def decrement_quantity(self, item_id: int, qty: int) -> None:
        cur = self._execute(
            "UPDATE crops SET quantity = quantity - %s WHERE id = %s AND quantity >= %s",
            (qty, item_id, qty),
        )
        if cur.rowcount != 1:
            raise RuntimeError(f"stock decrement matched {cur.rowcount} rows")

    def insert_order(self, buyer_id: int, total: Decimal) -> int:
        row = self._execute(
            "INSERT INTO orders(user_id, total) VALUES (%s, %s) RETURNING id",
            (buyer_id, total),
        ).fetchone()
        return row["id"]

    def insert_order_line(self, order_id: int, item_id: int, qty: int, price: Decimal) -> None:
        # the crop name is copied so the line outlives the crop row
        cur = self._execute(
            "INSERT INTO order_items(order_id, crop_id, crop_name, quantity, price) "
            "SELECT %s, id, crop_name, %s, %s FROM crops WHERE id = %s",
            (order_id, qty, price, item_id),
        )
        if cur.rowcount != 1:
            raise RuntimeError(f"order line insert matched {cur.rowcount} rows")

    def commit(self) -> None:
        self._execute("COMMIT")

    def rollback(self) -> None:
        if self.conn is not None and not self.conn.closed:
            self._execute("ROLLBACK")

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
