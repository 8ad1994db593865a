"""In-process doubles for the two venue clients."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping

from exchanges.base import BookTop, OrderAck, OrderDetail
from exchanges.errors import OrderNotFoundError


def book(bid: str, bid_size: str, ask: str, ask_size: str) -> BookTop:
    return BookTop(
        bid=Decimal(bid),
        bid_size=Decimal(bid_size),
        ask=Decimal(ask),
        ask_size=Decimal(ask_size),
    )


def detail(order_id: str, *, status: str = "open", total: str = "0", filled: str = "0",
           avg_price: str | None = None) -> OrderDetail:
    return OrderDetail(
        order_id=order_id,
        status=status,
        total=Decimal(total),
        filled=Decimal(filled),
        avg_price=Decimal(avg_price) if avg_price is not None else None,
    )


class _FakeVenue:
    name = "fake"

    def __init__(self) -> None:
        self.book = book("1", "1000", "1", "1000")
        self.meta: Mapping[str, Any] | Exception = {}
        self.submit_error: Exception | None = None
        self.cancel_errors: Dict[str, Exception] = {}
        self.orders: Dict[str, OrderDetail | Exception] = {}
        self.submitted: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.lookups: List[str] = []
        self._seq = 0

    async def get_order_book(self, symbol: str) -> BookTop:
        return self.book

    async def _meta(self) -> Mapping[str, Any]:
        if isinstance(self.meta, Exception):
            raise self.meta
        return self.meta

    def _ack(self, payload: Dict[str, Any]) -> OrderAck:
        if self.submit_error is not None:
            raise self.submit_error
        self._seq += 1
        order_id = str(self._seq)
        self.submitted.append({"order_id": order_id, **payload})
        self.orders.setdefault(order_id, detail(order_id))
        return OrderAck(order_id=order_id)

    async def cancel_order(self, symbol: str, order_id: str) -> Mapping[str, Any]:
        error = self.cancel_errors.get(order_id)
        if error is not None:
            raise error
        self.cancelled.append(order_id)
        return {"id": order_id}

    async def get_order_detail(self, symbol: str, order_id: str) -> OrderDetail:
        self.lookups.append(order_id)
        entry = self.orders.get(order_id)
        if entry is None:
            raise OrderNotFoundError(self.name, f"order {order_id} not found")
        if isinstance(entry, Exception):
            raise entry
        return entry


class FakeSpotClient(_FakeVenue):
    name = "gate"

    def __init__(self) -> None:
        super().__init__()
        self._seq = 1000
        self.balances: Dict[str, Dict[str, float]] | Exception = {
            "BOXCAT": {"available": 0.0, "locked": 0.0},
            "USDT": {"available": 100.0, "locked": 0.0},
        }

    async def get_pair_meta(self, symbol: str) -> Mapping[str, Any]:
        return await self._meta()

    async def submit_order(self, symbol: str, side: str, price: Decimal, amount: Decimal) -> OrderAck:
        return self._ack({"symbol": symbol, "side": side, "price": price, "amount": amount})

    async def get_balances(self, symbol: str) -> Dict[str, Dict[str, float]]:
        if isinstance(self.balances, Exception):
            raise self.balances
        return self.balances


class FakePerpClient(_FakeVenue):
    name = "mexc"

    def __init__(self) -> None:
        super().__init__()
        self._seq = 5000
        self.available: Dict[str, Any] = {"available_usdt": 1000.0}

    async def get_contract_meta(self, symbol: str) -> Mapping[str, Any]:
        return await self._meta()

    async def submit_order(
        self,
        symbol: str,
        side_code: int,
        price: Decimal,
        contracts: Decimal,
        leverage: int,
    ) -> OrderAck:
        return self._ack(
            {
                "symbol": symbol,
                "side_code": side_code,
                "price": price,
                "contracts": contracts,
                "leverage": leverage,
            }
        )

    async def get_available_usdt(self) -> Dict[str, Any]:
        return dict(self.available)
