"""Unified exception hierarchy for accesscore.

This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- gRPC error handler decorator for unary handlers

Usage in services:
    from accesscore.exceptions import (
        AccessCoreError,
        AccessDeniedError,
        MissingTenantError,
        grpc_error_handler,
    )

Denials always carry the generic public message; the internal reason code
travels in ``details`` and is only ever logged.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AccessCoreError",
    "ConfigurationError",
    "AuthenticationError",
    "AccessDeniedError",
    "MissingTenantError",
    "TenantNotFoundError",
    "RestrictionValidationError",
    "StorageError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # gRPC helpers
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "access denied"


# ---- Exception Hierarchy ----------------------------------------------------


class AccessCoreError(Exception):
    """Base exception for accesscore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "PERMISSION_DENIED").
        message: Human-readable error description, safe to return to callers.
        details: Additional context as keyword arguments (logged, never returned).
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AccessCoreError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class AuthenticationError(AccessCoreError):
    """No principal on the request."""

    code: str = "UNAUTHENTICATED"
    message: str = "authentication required"


class AccessDeniedError(AccessCoreError):
    """Authorization failure.

    The message is fixed to the generic boundary text; pass the internal
    reason as ``reason=...`` so it lands in ``details``.
    """

    code: str = "PERMISSION_DENIED"
    message: str = ACCESS_DENIED_MESSAGE

    def __init__(self, reason: str | None = None, **kwargs: Any) -> None:
        super().__init__(ACCESS_DENIED_MESSAGE, reason=reason, **kwargs)

    @property
    def reason(self) -> str | None:
        return self.details.get("reason")


class MissingTenantError(AccessCoreError):
    """Request carries no tenant context (client error, not a denial)."""

    code: str = "MISSING_TENANT"
    message: str = "tenant not specified"


class TenantNotFoundError(AccessCoreError):
    """Tenant alias could not be resolved to a canonical tenant id."""

    code: str = "TENANT_NOT_FOUND"
    message: str = ACCESS_DENIED_MESSAGE


class RestrictionValidationError(AccessCoreError):
    """Restriction payload targets neither or both of principal and role."""

    code: str = "INVALID_RESTRICTION"


class StorageError(AccessCoreError):
    """Backing store read or write failed."""

    code: str = "STORAGE_ERROR"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AccessCoreError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AccessCoreError]] = {}

    def register(self, code: str, error_cls: type[AccessCoreError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AccessCoreError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AccessCoreError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("AGENT_LOCKED")
        class AgentLockedError(AccessCoreError):
            code = "AGENT_LOCKED"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


error_registry.register("INTERNAL_ERROR", AccessCoreError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("UNAUTHENTICATED", AuthenticationError)
error_registry.register("PERMISSION_DENIED", AccessDeniedError)
error_registry.register("MISSING_TENANT", MissingTenantError)
error_registry.register("TENANT_NOT_FOUND", TenantNotFoundError)
error_registry.register("INVALID_RESTRICTION", RestrictionValidationError)
error_registry.register("STORAGE_ERROR", StorageError)


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: AccessCoreError) -> Any:
    """Map AccessCoreError to gRPC status code.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "UNAUTHENTICATED": grpc.StatusCode.UNAUTHENTICATED,
        "PERMISSION_DENIED": grpc.StatusCode.PERMISSION_DENIED,
        "TENANT_NOT_FOUND": grpc.StatusCode.PERMISSION_DENIED,
        "MISSING_TENANT": grpc.StatusCode.INVALID_ARGUMENT,
        "INVALID_RESTRICTION": grpc.StatusCode.INVALID_ARGUMENT,
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "STORAGE_ERROR": grpc.StatusCode.UNAVAILABLE,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods with proper error handling.

    Catches AccessCoreError and aborts with the mapped status code and the
    error's public message. Details are logged only.

    Usage:
        @grpc_error_handler
        async def RunAgent(self, request, context):
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except AccessCoreError as e:
            status_code = get_grpc_status_code(e)

            logger.error(
                "%s failed: [%s] %s",
                method.__name__,
                e.code,
                e.message,
                extra={
                    "error_code": e.code,
                    "error_details": e.details,
                },
            )

            context.set_trailing_metadata([("error-code", e.code)])
            await context.abort(status_code, e.message)
            return

        except Exception as e:
            import grpc

            logger.exception("%s unexpected error: %s", method.__name__, e)
            await context.abort(grpc.StatusCode.INTERNAL, "internal error")
            return

    return wrapper
