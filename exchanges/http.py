"""Thin async HTTP helper mapping transport failures onto the venue error taxonomy."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .errors import VenueAuthError, VenueBusinessError, VenueTransientError


LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0


async def send_json(
    venue: str,
    *,
    base_url: str,
    method: str,
    path: str,
    params: Mapping[str, Any] | None = None,
    content: str | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[int, Any]:
    """Issue one request and return ``(status_code, decoded_json)``.

    4xx responses other than 401/403 are returned to the caller so that the
    venue specific client can interpret the error body.
    """

    try:
        async with httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        ) as client:
            response = await client.request(
                method,
                path,
                params=dict(params) if params else None,
                content=content,
                headers=dict(headers or {}),
            )
    except httpx.TimeoutException as exc:
        LOGGER.warning("venue request timed out", extra={"venue": venue, "path": path})
        raise VenueTransientError(venue, "timeout", detail=str(exc)) from exc
    except httpx.HTTPError as exc:
        LOGGER.warning(
            "venue request failed", extra={"venue": venue, "path": path, "error": str(exc)}
        )
        raise VenueTransientError(venue, "network_error", detail=str(exc)) from exc

    status_code = response.status_code
    try:
        payload = response.json()
    except ValueError as exc:
        content_type = response.headers.get("content-type", "")
        LOGGER.warning(
            "venue returned non-JSON body",
            extra={"venue": venue, "path": path, "status": status_code, "content_type": content_type},
        )
        if status_code in (401, 403):
            raise VenueAuthError(venue, f"http_{status_code}", detail=response.text[:200]) from exc
        raise VenueTransientError(venue, "non_json_body", detail=response.text[:200]) from exc

    if status_code in (401, 403):
        LOGGER.error(
            "venue authentication rejected",
            extra={"venue": venue, "path": path, "status": status_code},
        )
        raise VenueAuthError(venue, f"http_{status_code}", detail=payload)
    if status_code >= 500:
        raise VenueTransientError(venue, f"http_{status_code}", detail=payload)
    if status_code >= 400 and not isinstance(payload, Mapping):
        raise VenueBusinessError(venue, f"http_{status_code}", detail=payload)
    return status_code, payload


__all__ = ["DEFAULT_TIMEOUT", "send_json"]
