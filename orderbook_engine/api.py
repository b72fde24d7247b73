"""HTTP front end: order submission and the order-book websocket."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from aiohttp import web

from .models import Order, OrderKind, Side
from .snapshot import Broadcaster

log = logging.getLogger(__name__)


class OrderRejected(ValueError):
    """An order that cannot be accepted as submitted."""


def validate_order(payload: str | bytes | Mapping[str, Any], now: int | None = None) -> Order:
    """Parse and check an order, filling in a missing id and timestamp."""
    try:
        if isinstance(payload, Mapping):
            order = Order.from_dict(payload)
        else:
            order = Order.from_json(payload)
    except ValueError as exc:
        raise OrderRejected("invalid order format") from exc

    if not order.order_id:
        order = replace(order, order_id=str(uuid.uuid4()))
    if order.order_type not in (Side.BID.value, Side.ASK.value):
        raise OrderRejected("invalid order type, must be BID or ASK")
    if order.order_kind not in (OrderKind.LIMIT.value, OrderKind.MARKET.value):
        raise OrderRejected("invalid order kind, must be LIMIT or MARKET")
    if order.order_kind == OrderKind.LIMIT.value and order.price <= 0:
        raise OrderRejected("limit order price must be greater than 0")
    if order.amount <= 0:
        raise OrderRejected("order amount must be greater than 0")
    if order.timestamp == 0:
        order = replace(order, timestamp=int(time.time()) if now is None else now)
    return order


def create_app(
    book,
    user_exists: Callable[[int], bool],
    broadcaster: Broadcaster,
) -> web.Application:
    """Routes: POST /orders and the /ws/orderbook websocket."""

    async def post_order(request: web.Request) -> web.StreamResponse:
        body = await request.read()
        try:
            order = validate_order(body)
        except OrderRejected as exc:
            log.info("rejected order: %s", exc)
            return web.Response(text=str(exc), status=400)

        try:
            known = bool(user_exists(order.user_id))
        except Exception as exc:  # the user store may fail in any way
            log.warning("user check failed: %s", exc)
            known = False
        if not known:
            return web.Response(text="user does not exist", status=400)

        try:
            await asyncio.to_thread(book.submit_order, order)
        except Exception as exc:
            log.error("cannot submit order: %s", exc)
            return web.Response(text="failed to submit order", status=500)

        return web.json_response({"message": "order submitted", "order_id": order.order_id})

    async def order_book_ws(request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        broadcaster.register(ws)
        try:
            async for _message in ws:
                pass
        finally:
            broadcaster.unregister(ws)
        return ws

    app = web.Application()
    app.router.add_post("/orders", post_order)
    app.router.add_get("/ws/orderbook", order_book_ws)
    return app