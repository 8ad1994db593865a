"""MEXC USDT-margined perpetual futures client used for leg B."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping

import httpx

from .base import BookTop, OrderAck, OrderDetail, PerpVenueClient
from .errors import (
    InvalidInputError,
    OrderNotFoundError,
    VenueAuthError,
    VenueBusinessError,
    VenueError,
    VenueTransientError,
)
from .http import DEFAULT_TIMEOUT, send_json


LOGGER = logging.getLogger(__name__)

_VENUE = "mexc"

SIDE_OPEN_SHORT = 3
SIDE_CLOSE_SHORT = 4
ORDER_TYPE_LIMIT = 1
OPEN_TYPE_ISOLATED = 1

# MEXC business codes meaning the order id is unknown to the venue.
_NOT_FOUND_CODES = {2009, 2040, 2041}
_AUTH_CODES = {401, 402, 403, 602, 10072}


def _dec(value: Any, default: str = "0") -> Decimal:
    if value in (None, ""):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_mexc_error(payload: Any) -> str | None:
    """Collapse the venue's error messages into a few stable phrases."""

    if not isinstance(payload, Mapping):
        return None
    message = str(payload.get("message") or payload.get("msg") or "").lower()
    if "token" in message and "expire" in message:
        return "token expired"
    if "sign" in message and "invalid" in message:
        return "invalid signature"
    if "param" in message or "invalid" in message:
        return "invalid parameters"
    return message or None


class MexcFuturesClient(PerpVenueClient):
    """MEXC contract API client.

    Private calls use the web session token when one is configured and fall
    back to API key signing otherwise.
    """

    name = _VENUE

    def __init__(
        self,
        web_auth_token: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        *,
        supported_symbols: Iterable[str] | None = None,
        open_type: int = OPEN_TYPE_ISOLATED,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.web_auth_token = web_auth_token or os.getenv("MEXC_WEB_TOKEN") or None
        self.api_key = api_key or os.getenv("MEXC_API_KEY") or None
        self.api_secret = api_secret or os.getenv("MEXC_API_SECRET") or None
        self.base_url = (base_url or "https://contract.mexc.com").rstrip("/")
        self.supported_symbols = {str(s).upper() for s in (supported_symbols or [])}
        self.open_type = int(open_type)
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @property
    def has_credentials(self) -> bool:
        return bool(self.web_auth_token or (self.api_key and self.api_secret))

    def _auth_headers(self, param_string: str) -> Dict[str, str]:
        if self.web_auth_token:
            return {"Authorization": str(self.web_auth_token)}
        if not (self.api_key and self.api_secret):
            raise VenueAuthError(_VENUE, "credentials_missing")
        request_time = str(int(time.time() * 1000))
        message = f"{self.api_key}{request_time}{param_string}"
        signature = hmac.new(
            str(self.api_secret).encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return {"ApiKey": str(self.api_key), "Request-Time": request_time, "Signature": signature}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        body: Any = None,
        signed: bool = False,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        content = json.dumps(body, separators=(",", ":")) if body is not None else None
        if signed:
            if content is not None:
                param_string = content
            elif params:
                param_string = "&".join(f"{k}={params[k]}" for k in sorted(params))
            else:
                param_string = ""
            headers.update(self._auth_headers(param_string))
        status_code, payload = await send_json(
            _VENUE,
            base_url=self.base_url,
            method=method,
            path=path,
            params=params,
            content=content,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        if not isinstance(payload, Mapping):
            raise VenueTransientError(_VENUE, "unexpected_payload", detail=payload)
        if status_code >= 400 or payload.get("success") is False:
            self._raise_for_payload(payload)
        return payload.get("data")

    @staticmethod
    def _raise_for_payload(payload: Mapping[str, Any]) -> None:
        try:
            code = int(payload.get("code"))
        except (TypeError, ValueError):
            code = None
        message = normalize_mexc_error(payload) or f"code_{code}"
        if code in _NOT_FOUND_CODES:
            raise OrderNotFoundError(_VENUE, message, detail=dict(payload))
        if code in _AUTH_CODES or message in {"token expired", "invalid signature"}:
            LOGGER.error("mexc authentication rejected", extra={"code": code, "error": message})
            raise VenueAuthError(_VENUE, message, detail=dict(payload))
        raise VenueBusinessError(_VENUE, message, detail=dict(payload))

    def _check_symbol(self, symbol: str) -> None:
        if self.supported_symbols and symbol.upper() not in self.supported_symbols:
            LOGGER.warning("mexc symbol not supported", extra={"symbol": symbol})
            raise InvalidInputError(f"symbol not supported on mexc: {symbol}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def get_order_book(self, symbol: str) -> BookTop:
        data = await self._request("GET", f"/api/v1/contract/depth/{symbol}", params={"limit": 5})
        try:
            best_bid = data["bids"][0]
            best_ask = data["asks"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise VenueTransientError(_VENUE, "empty_order_book", detail=data) from exc
        # sizes are contract counts; partial contracts are not tradable
        return BookTop(
            bid=_dec(best_bid[0]),
            bid_size=_dec(best_bid[1]).to_integral_value(rounding=ROUND_FLOOR),
            ask=_dec(best_ask[0]),
            ask_size=_dec(best_ask[1]).to_integral_value(rounding=ROUND_FLOOR),
        )

    async def get_contract_meta(self, symbol: str) -> Mapping[str, Any]:
        data = await self._request("GET", "/api/v1/contract/detail", params={"symbol": symbol})
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, Mapping) or not data:
            raise VenueTransientError(_VENUE, "empty_contract_meta", detail=data)
        return data

    async def submit_order(
        self,
        symbol: str,
        side_code: int,
        price: Decimal,
        contracts: Decimal,
        leverage: int,
    ) -> OrderAck:
        if int(side_code) not in (1, 2, 3, 4):
            raise InvalidInputError(f"invalid side code: {side_code}")
        body = {
            "symbol": symbol,
            "price": float(price),
            "vol": float(contracts),
            "leverage": int(leverage),
            "side": int(side_code),
            "type": ORDER_TYPE_LIMIT,
            "openType": self.open_type,
        }
        LOGGER.info("mexc order submit", extra={"order": body})
        data = await self._request("POST", "/api/v1/private/order/submit", body=body, signed=True)
        if isinstance(data, Mapping):
            order_id = _first(data, "orderId", "order_id", "id")
        else:
            order_id = data
        if order_id in (None, ""):
            raise VenueBusinessError(_VENUE, "order_id_missing", detail=data)
        LOGGER.info("mexc order created", extra={"order_id": str(order_id), "symbol": symbol})
        return OrderAck(order_id=str(order_id), raw=data if isinstance(data, Mapping) else {"data": data})

    async def cancel_order(self, symbol: str, order_id: str) -> Mapping[str, Any]:
        LOGGER.info("mexc order cancel", extra={"order_id": order_id, "symbol": symbol})
        data = await self._request(
            "POST", "/api/v1/private/order/cancel", body=[str(order_id)], signed=True
        )
        # per-order results carry their own error code
        for entry in data if isinstance(data, list) else []:
            if isinstance(entry, Mapping) and entry.get("errorCode") not in (None, 0):
                self._raise_for_payload(
                    {"code": entry.get("errorCode"), "message": entry.get("errorMsg")}
                )
        return {"data": data}

    async def get_order_detail(self, symbol: str, order_id: str) -> OrderDetail:
        order_str = str(order_id)
        if not order_str.isdigit():
            raise InvalidInputError(f"mexc order id must be numeric: {order_id}")
        self._check_symbol(symbol)
        data = await self._request("GET", f"/api/v1/private/order/get/{order_str}", signed=True)
        if not isinstance(data, Mapping) or not data:
            raise OrderNotFoundError(_VENUE, "order_not_found", detail=data)
        filled = _dec(_first(data, "dealVol", "filledQty", "cumQty"))
        total = _dec(_first(data, "vol", "volume", "origQty"))
        remain_raw = _first(data, "remainVol", "remaining_volume")
        if remain_raw is not None:
            remaining: Decimal | None = _dec(remain_raw)
        elif total > 0:
            remaining = max(total - filled, Decimal("0"))
        else:
            remaining = None
        avg_raw = _first(data, "dealAvgPrice", "priceAvg", "avgPrice")
        return OrderDetail(
            order_id=order_str,
            status=str(_first(data, "state", "status") or ""),
            total=total,
            filled=max(filled, Decimal("0")),
            remaining=remaining,
            avg_price=_dec(avg_raw) if avg_raw is not None else None,
            raw=data,
        )

    async def get_available_usdt(self) -> dict[str, Any]:
        if not self.has_credentials:
            return {"unknown": True, "reason": "no_credentials"}
        try:
            data = await self._request("GET", "/api/v1/private/account/assets", signed=True)
        except VenueError as exc:
            LOGGER.warning("mexc balance lookup failed", extra={"error": exc.message})
            return {"unknown": True, "reason": "request_error", "detail": exc.message}
        for entry in data if isinstance(data, list) else []:
            if str(entry.get("currency") or "").upper() != "USDT":
                continue
            value = _first(entry, "availableBalance", "availableCash", "availableOpen", "available")
            if value is not None:
                return {"available_usdt": float(_dec(value))}
        return {"unknown": True, "reason": "not_found"}


__all__ = [
    "MexcFuturesClient",
    "ORDER_TYPE_LIMIT",
    "OPEN_TYPE_ISOLATED",
    "SIDE_CLOSE_SHORT",
    "SIDE_OPEN_SHORT",
    "normalize_mexc_error",
]
