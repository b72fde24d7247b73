"""Matching of incoming market and limit orders against the opposite side."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from decimal import Decimal

from .book import OrderBook, book_key
from .models import Order, OrderStatus, Side, Trade

log = logging.getLogger(__name__)


@dataclass
class Ledger:
    """Durable record of trades and order statuses.

    Status changes made inside ``transaction()`` are undone if the block
    raises; saved trades are kept regardless.
    """

    trades: list[Trade] = field(default_factory=list)
    statuses: dict[str, OrderStatus] = field(default_factory=dict)

    def save_trade(self, trade: Trade) -> None:
        self.trades.append(trade)

    def set_status(self, order_id: str, status: OrderStatus) -> None:
        self.statuses[order_id] = OrderStatus(status)

    @contextmanager
    def transaction(self) -> Iterator[Ledger]:
        saved = dict(self.statuses)
        try:
            yield self
        except BaseException:
            self.statuses.clear()
            self.statuses.update(saved)
            raise


def _opposite_key(order: Order, pair: str) -> str:
    opposite = Side.BID if order.order_type == Side.ASK else Side.ASK
    return book_key(opposite, pair)


def _make_trade(incoming: Order, resting: Order, amount: Decimal) -> Trade:
    if incoming.order_type == Side.ASK:
        bid_id, ask_id = resting.order_id, incoming.order_id
    else:
        bid_id, ask_id = incoming.order_id, resting.order_id
    return Trade(
        trade_id=str(uuid.uuid4()),
        bid_order_id=bid_id,
        ask_order_id=ask_id,
        price=resting.price,
        amount=amount,
    )


def _fill_level(
    book: OrderBook,
    ledger: Ledger,
    pair: str,
    key: str,
    incoming: Order,
    resting_orders: Iterable[Order],
    remaining: Decimal,
) -> Decimal:
    """Fill against one price level, earliest orders first; return what is left."""
    for resting in sorted(resting_orders, key=lambda o: o.timestamp):
        if remaining <= 0:
            break
        amount = remaining if remaining < resting.amount else resting.amount
        trade = _make_trade(incoming, resting, amount)
        ledger.save_trade(trade)
        book.publish_trade(trade)
        remaining -= amount

        book.remove_order(key, resting)
        left = resting.amount - amount
        if left > 0:
            book.add_order(replace(resting, amount=left), pair)
            ledger.set_status(resting.order_id, OrderStatus.PARTIALLY_FILLED)
        else:
            ledger.set_status(resting.order_id, OrderStatus.FILLED)
    return remaining


def match_market(book: OrderBook, ledger: Ledger, pair: str, order: Order) -> None:
    """Fill a market order at whatever the opposite side offers.

    Any unfilled remainder is dropped, never placed on the book.
    """
    key = _opposite_key(order, pair)
    remaining = order.amount
    with ledger.transaction() as tx:
        while remaining > 0:
            best = book.best_order(key)
            if best is None:
                break
            _, best_price = best
            resting = book.orders_at_price(key, best_price)
            if not resting:
                break
            remaining = _fill_level(book, tx, pair, key, order, resting, remaining)

        if remaining <= 0:
            tx.set_status(order.order_id, OrderStatus.FILLED)
        elif remaining < order.amount:
            tx.set_status(order.order_id, OrderStatus.PARTIALLY_FILLED)
        else:
            tx.set_status(order.order_id, OrderStatus.CLOSE)

        if remaining > 0:
            log.info("market order remainder %s not matched, cancelled", remaining)


def match_limit(book: OrderBook, ledger: Ledger, pair: str, order: Order) -> None:
    """Fill a limit order while prices cross, then rest the remainder on the book."""
    key = _opposite_key(order, pair)
    own_key = book_key(order.order_type, pair)
    remaining = order.amount
    with ledger.transaction() as tx:
        while remaining > 0:
            best = book.best_order(key)
            if best is None:
                log.info("no orders to match")
                break
            _, best_price = best
            if order.order_type == Side.BID and best_price > order.price:
                break
            if order.order_type == Side.ASK and best_price < order.price:
                break
            resting = book.orders_at_price(key, best_price)
            if not resting:
                break
            remaining = _fill_level(book, tx, pair, key, order, resting, remaining)

        if remaining <= 0:
            tx.set_status(order.order_id, OrderStatus.FILLED)
            return

        book.remove_order(own_key, order)
        if remaining < order.amount:
            tx.set_status(order.order_id, OrderStatus.PARTIALLY_FILLED)
        book.add_order(replace(order, amount=remaining), pair)