# cashpoint/errors.py
from __future__ import annotations

from typing import Any, Dict


class ServiceError(Exception):
    """Domain failure that maps onto an HTTP status and an ``{"error": ...}`` body."""

    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class InvalidRequest(ServiceError):
    status_code = 400


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409
