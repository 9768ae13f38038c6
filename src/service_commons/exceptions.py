"""
Shared service error type and exception handler registration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Typed, caller-reportable failure.

    Attributes:
        error: Machine-readable error code (e.g. "FORBIDDEN").
        message: Human-readable description.
        status_code: HTTP status the HTTP layer should answer with.
        details: Extra structured context for the caller.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    def __repr__(self) -> str:
        return f"ServiceError({self.error!r}, {self.message!r}, {self.status_code})"


def register_exception_handlers(
    app: FastAPI,
    error_type: type[ServiceError],
    service_error_handler: Callable[[Request, Any], Awaitable[JSONResponse]],
    unhandled_exception_handler: Callable[[Request, Exception], Awaitable[JSONResponse]],
) -> None:
    """
    Register the service error handler and the catch-all handler on an app.

    Args:
        app: FastAPI application
        error_type: ServiceError (or subclass) to route to service_error_handler
        service_error_handler: Renders typed errors
        unhandled_exception_handler: Renders anything else as a 500
    """
    app.add_exception_handler(error_type, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, cast("ExceptionHandler", unhandled_exception_handler))
