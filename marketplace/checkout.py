"""
Checkout transaction.

Verifies and reserves stock for every requested line, prices each line at the
price seen under the row lock, and records one order with its lines. All of it
happens in a single store transaction: either everything is committed or the
store is rolled back and the triggering error is raised.

Lines are locked in request order, not sorted. Two requests locking an
overlapping set of crops in different orders can deadlock; the store detects
that and the resulting ``StoreError`` is marked retryable. Retrying is left to
the caller.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Sequence

from pydantic import ValidationError

from .errors import (
    CheckoutError,
    CommitFailed,
    InsufficientStock,
    InvalidRequest,
    ItemNotFound,
    StoreError,
    TransactionStartFailed,
    TransientStoreFailure,
)
from .models import CheckoutRequest
from .store import CheckoutStore, PostgresCheckoutStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedLine:
    item_id: int
    qty: int
    price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.qty


@dataclass(frozen=True)
class CheckoutResult:
    order_id: int
    total: Decimal
    lines: List[PricedLine]


def parse_request(payload: Any) -> CheckoutRequest:
    """Validate a request body (`buyerId`/`userId`, `items: [{itemId/cropId, qty}]`)."""
    try:
        return CheckoutRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequest(_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = err["loc"]
    if not loc:
        return "Invalid request body"
    if loc[0] in ("buyer_id", "buyerId", "userId"):
        return "Invalid userId"
    if loc == ("items",):
        return "Invalid items"
    return "Invalid item in items list"


class CheckoutProcessor:
    def __init__(self, store_factory: Callable[[], CheckoutStore] = PostgresCheckoutStore):
        self.store_factory = store_factory

    def checkout(self, buyer_id: Any, lines: Sequence[Any]) -> CheckoutResult:
        request = parse_request({"buyer_id": buyer_id, "items": lines})
        return self.process(request)

    def process(self, request: CheckoutRequest) -> CheckoutResult:
        logger.debug("Checkout start buyer=%s lines=%d", request.buyer_id, len(request.items))
        store = self.store_factory()
        try:
            try:
                store.begin()
            except Exception as exc:
                logger.exception("Transaction start error")
                raise TransactionStartFailed(retryable=_is_transient(exc)) from exc

            try:
                result = self._apply(store, request)
            except CheckoutError as exc:
                self._rollback(store)
                if isinstance(exc, StoreError):
                    logger.error("Checkout aborted for buyer %s: %s", request.buyer_id, exc.message)
                else:
                    logger.info("Checkout rejected for buyer %s: %s", request.buyer_id, exc.message)
                raise

            try:
                store.commit()
            except Exception as exc:
                logger.exception("Commit error")
                self._rollback(store)
                raise CommitFailed(retryable=_is_transient(exc)) from exc
        finally:
            store.close()

        logger.info(
            "Checkout committed order=%s buyer=%s total=%s",
            result.order_id, request.buyer_id, result.total,
        )
        return result

    def _apply(self, store: CheckoutStore, request: CheckoutRequest) -> CheckoutResult:
        priced: List[PricedLine] = []
        total = Decimal("0")

        for line in request.items:
            row = _call(store.lock_for_update, "select for update", line.item_id)
            if row is None:
                raise ItemNotFound(line.item_id)
            if row.quantity < line.qty:
                raise InsufficientStock(line.item_id, row.quantity, line.qty)

            _call(store.decrement_quantity, "stock update", line.item_id, line.qty)
            priced_line = PricedLine(item_id=line.item_id, qty=line.qty, price=row.price)
            priced.append(priced_line)
            total += priced_line.subtotal

        order_id = _call(store.insert_order, "order insert", request.buyer_id, total)
        for it in priced:
            _call(store.insert_order_line, "order item insert", order_id, it.item_id, it.qty, it.price)

        return CheckoutResult(order_id=order_id, total=total, lines=priced)

    def _rollback(self, store: CheckoutStore) -> None:
        # The abort is already decided; a failing rollback must not mask its cause.
        try:
            store.rollback()
        except Exception:
            logger.warning("Rollback failed", exc_info=True)


def _call(fn: Callable[..., Any], operation: str, *args: Any) -> Any:
    try:
        return fn(*args)
    except Exception as exc:
        logger.exception("%s error", operation.capitalize())
        raise StoreError(operation, retryable=_is_transient(exc)) from exc


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientStoreFailure)
