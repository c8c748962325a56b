"""Error taxonomy shared by services and the API layer.

Services raise these instead of ``HTTPException`` so they stay usable
outside a request. ``main.py`` maps them to status codes.
"""

from __future__ import annotations

import functools
from typing import Awaitable, Callable, TypeVar

from splitledger.core.logging_utils import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class DatabaseError(AppError):
    status_code = 500

    def __init__(self, message: str = "Database error"):
        super().__init__(message)


def wrap_errors(failure_message: str):
    """Let ``AppError`` through untouched, wrap anything else in ``DatabaseError``."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except AppError:
                raise
            except Exception as err:
                LOGGER.exception(failure_message)
                raise DatabaseError(failure_message) from err

        return wrapper

    return decorator
