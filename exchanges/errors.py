"""Error taxonomy shared by the venue clients."""

from __future__ import annotations

from typing import Any


class VenueError(RuntimeError):
    """Base class for failures reported by (or while talking to) a venue."""

    def __init__(self, venue: str, message: str, *, detail: Any | None = None) -> None:
        super().__init__(f"{venue}: {message}")
        self.venue = venue
        self.message = message
        self.detail = detail

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"venue": self.venue, "error": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class VenueAuthError(VenueError):
    """HTTP 401/403 from the venue. Never retried."""


class VenueTransientError(VenueError):
    """Timeout, network failure, 5xx or a body that is not JSON."""


class VenueBusinessError(VenueError):
    """The venue understood the request and refused it."""


class OrderNotFoundError(VenueBusinessError):
    """The venue does not know the requested order id."""


class InvalidInputError(ValueError):
    """Malformed operator input; rejected before any venue is contacted."""


__all__ = [
    "InvalidInputError",
    "OrderNotFoundError",
    "VenueAuthError",
    "VenueBusinessError",
    "VenueError",
    "VenueTransientError",
]
