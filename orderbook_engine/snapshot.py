"""Aggregated order-book views and their delivery to websocket clients."""

from __future__ import annotations

import contextlib
import logging
from decimal import Decimal

import redis

from .book import book_key
from .models import Order, OrderBookLevel, OrderBookSnapshot, Side

log = logging.getLogger(__name__)


def _load_side(book, key: str) -> list[Order]:
    try:
        return book.all_orders(key)
    except redis.RedisError as exc:
        log.warning("cannot read %s: %s", key, exc)
        return []


def _aggregate(orders: list[Order], descending: bool) -> list[OrderBookLevel]:
    totals: dict[Decimal, Decimal] = {}
    for order in orders:
        price = order.price.normalize()
        totals[price] = totals.get(price, Decimal(0)) + order.amount
    levels = [OrderBookLevel(price=price, amount=amount) for price, amount in totals.items()]
    levels.sort(key=lambda level: level.price, reverse=descending)
    return levels


def order_book_snapshot(book, pair: str) -> OrderBookSnapshot:
    """Total amount per price on both sides; bids highest first, asks lowest first.

    A side that cannot be read is reported as empty.
    """
    bids = _load_side(book, book_key(Side.BID, pair))
    asks = _load_side(book, book_key(Side.ASK, pair))
    return OrderBookSnapshot(
        pair=pair,
        bids=_aggregate(bids, descending=True),
        asks=_aggregate(asks, descending=False),
    )


class Broadcaster:
    """Pushes snapshots to every registered websocket, dropping dead ones."""

    def __init__(self) -> None:
        self._clients: set = set()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, ws) -> bool:
        return ws in self._clients

    def register(self, ws) -> None:
        self._clients.add(ws)

    def unregister(self, ws) -> None:
        self._clients.discard(ws)

    async def broadcast(self, snapshot: OrderBookSnapshot) -> None:
        """Send the snapshot as JSON; a client that fails is closed and removed."""
        text = snapshot.to_json()
        for ws in list(self._clients):
            try:
                await ws.send_str(text)
            except (OSError, RuntimeError) as exc:
                log.info("dropping websocket client: %s", exc)
                self._clients.discard(ws)
                with contextlib.suppress(OSError, RuntimeError):
                    await ws.close()