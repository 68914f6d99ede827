# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors.

Services raise these; routes translate them into JSON responses using
`status_code` and `to_dict()`. Nothing here knows about Flask.

    InvalidInputError  400  malformed or inventory-exceeding requests
    ForbiddenError     403  actor is not a party to the resource
    NotFoundError      404  absent or soft-deleted resource
    ConflictError      409  invalid state transition
    RateLimitedError   429  too many requests in the current window
    InternalError      500  storage failure, order-number exhaustion
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInputError(MarketError):
    status_code = 400


class ForbiddenError(MarketError):
    status_code = 403


class NotFoundError(MarketError):
    status_code = 404


class ConflictError(MarketError):
    status_code = 409


class RateLimitedError(MarketError):
    status_code = 429

    def __init__(self, message: str, limit: str | None = None):
        super().__init__(message, details={"limit": limit} if limit else None)


class InternalError(MarketError):
    status_code = 500
