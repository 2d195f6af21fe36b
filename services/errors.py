# services/errors.py
from __future__ import annotations
from enum import Enum
from typing import Any

from tortoise.exceptions import DoesNotExist, IntegrityError


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL"


class ServiceError(Exception):
    """
    Base error raised by the service layer.
    Every error carries a stable kind plus a message safe to show to the caller.
    """
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(ServiceError):
    """Entity absent OR outside the caller's scope. The two are never told apart."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is not None:
            super().__init__(f"{entity} with id '{entity_id}' not found")
        else:
            super().__init__(f"{entity} not found")


class InvalidInputError(ServiceError):
    kind = ErrorKind.INVALID_INPUT


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


def map_db_error(error: Exception) -> ServiceError:
    """Translate ORM errors into service errors; service errors pass through."""
    if isinstance(error, ServiceError):
        return error
    if isinstance(error, IntegrityError):
        return ConflictError("Unique or referential constraint violated")
    if isinstance(error, DoesNotExist):
        return NotFoundError("Record")
    return ServiceError("An unexpected error occurred")
