"""Gate.io spot REST (API v4) client used for leg A."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping

import httpx

from .base import BookTop, OrderAck, OrderDetail, SpotVenueClient
from .errors import OrderNotFoundError, VenueAuthError, VenueBusinessError, VenueTransientError
from .http import DEFAULT_TIMEOUT, send_json


LOGGER = logging.getLogger(__name__)

_API_PREFIX = "/api/v4"
_VENUE = "gate"


def _dec(value: Any, default: str = "0") -> Decimal:
    if value in (None, ""):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


class GateSpotClient(SpotVenueClient):
    """Gate.io spot client with v4 HMAC-SHA512 request signing."""

    name = _VENUE

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or os.getenv("GATE_API_KEY") or None
        self.api_secret = api_secret or os.getenv("GATE_API_SECRET") or None
        self.base_url = (base_url or "https://api.gateio.ws").rstrip("/")
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _sign(self, method: str, path: str, query: str, body: str) -> Dict[str, str]:
        if not self.has_credentials:
            raise VenueAuthError(_VENUE, "credentials_missing")
        timestamp = str(int(time.time()))
        hashed_body = hashlib.sha512(body.encode("utf-8")).hexdigest()
        message = "\n".join([method.upper(), path, query, hashed_body, timestamp])
        signature = hmac.new(
            str(self.api_secret).encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha512,
        ).hexdigest()
        return {"KEY": str(self.api_key), "Timestamp": timestamp, "SIGN": signature}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        body: Dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        full_path = f"{_API_PREFIX}{path}"
        query = str(httpx.QueryParams(params)) if params else ""
        content = json.dumps(body) if body is not None else ""
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if signed:
            headers.update(self._sign(method, full_path, query, content))
        status_code, payload = await send_json(
            _VENUE,
            base_url=self.base_url,
            method=method,
            path=full_path,
            params=params,
            content=content or None,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        if status_code >= 400:
            label = str(payload.get("label") or "")
            message = str(payload.get("message") or payload.get("detail") or label or f"http_{status_code}")
            if label == "ORDER_NOT_FOUND":
                raise OrderNotFoundError(_VENUE, message, detail=payload)
            if label in {"INVALID_KEY", "INVALID_SIGNATURE", "FORBIDDEN", "MISSING_REQUIRED_HEADER"}:
                raise VenueAuthError(_VENUE, message, detail=payload)
            raise VenueBusinessError(_VENUE, message, detail=payload)
        return payload

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def get_order_book(self, symbol: str) -> BookTop:
        payload = await self._request(
            "GET", "/spot/order_book", params={"currency_pair": symbol, "limit": 5}
        )
        try:
            best_ask = payload["asks"][0]
            best_bid = payload["bids"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise VenueTransientError(_VENUE, "empty_order_book", detail=payload) from exc
        return BookTop(
            bid=_dec(best_bid[0]),
            bid_size=_dec(best_bid[1]),
            ask=_dec(best_ask[0]),
            ask_size=_dec(best_ask[1]),
        )

    async def get_pair_meta(self, symbol: str) -> Mapping[str, Any]:
        payload = await self._request("GET", f"/spot/currency_pairs/{symbol}")
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, Mapping) or not payload:
            raise VenueTransientError(_VENUE, "empty_pair_meta", detail=payload)
        return payload

    async def submit_order(
        self, symbol: str, side: str, price: Decimal, amount: Decimal
    ) -> OrderAck:
        side_lower = str(side).lower()
        if side_lower not in {"buy", "sell"}:
            raise ValueError("side must be buy or sell")
        body = {
            "currency_pair": symbol,
            "type": "limit",
            "account": "spot",
            "side": side_lower,
            "price": format(price, "f"),
            "amount": format(amount, "f"),
        }
        LOGGER.info("gate order submit", extra={"order": body})
        payload = await self._request("POST", "/spot/orders", body=body, signed=True)
        order_id = payload.get("id") if isinstance(payload, Mapping) else None
        if order_id in (None, ""):
            raise VenueBusinessError(_VENUE, "order_id_missing", detail=payload)
        LOGGER.info("gate order created", extra={"order_id": str(order_id), "symbol": symbol})
        return OrderAck(order_id=str(order_id), raw=payload)

    async def cancel_order(self, symbol: str, order_id: str) -> Mapping[str, Any]:
        LOGGER.info("gate order cancel", extra={"order_id": order_id, "symbol": symbol})
        return await self._request(
            "DELETE",
            f"/spot/orders/{order_id}",
            params={"currency_pair": symbol},
            signed=True,
        )

    async def get_order_detail(self, symbol: str, order_id: str) -> OrderDetail:
        payload = await self._request(
            "GET",
            f"/spot/orders/{order_id}",
            params={"currency_pair": symbol},
            signed=True,
        )
        if not isinstance(payload, Mapping):
            raise VenueTransientError(_VENUE, "unexpected_order_payload", detail=payload)
        total = _dec(payload.get("amount"))
        left_raw = payload.get("left")
        filled = _dec(payload.get("filled_amount"), default="-1")
        if filled < 0:
            filled = total - _dec(left_raw) if left_raw not in (None, "") else Decimal("0")
        avg_raw = payload.get("avg_deal_price")
        avg_price = _dec(avg_raw) if avg_raw not in (None, "") else None
        if avg_price is None and filled > 0 and payload.get("filled_total") not in (None, ""):
            avg_price = _dec(payload.get("filled_total")) / filled
        return OrderDetail(
            order_id=str(payload.get("id") or order_id),
            status=str(payload.get("status") or ""),
            total=total,
            filled=max(filled, Decimal("0")),
            remaining=_dec(left_raw) if left_raw not in (None, "") else None,
            avg_price=avg_price or None,
            raw=payload,
        )

    async def get_balances(self, symbol: str) -> dict[str, dict[str, float]]:
        base, _, quote = symbol.partition("_")
        wanted = {base, quote, "USDT"}
        payload = await self._request("GET", "/spot/accounts", signed=True)
        balances: dict[str, dict[str, float]] = {}
        for entry in payload if isinstance(payload, list) else []:
            currency = str(entry.get("currency") or "").upper()
            if currency not in wanted:
                continue
            balances[currency] = {
                "available": float(_dec(entry.get("available"))),
                "locked": float(_dec(entry.get("locked"))),
            }
        return balances


__all__ = ["GateSpotClient"]
