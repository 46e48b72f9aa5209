"""gRPC server interceptor running the authorization gate.

Provides:
- ``AccessInterceptor``: maps each RPC to a ``Requirement`` and runs the
  gate before the handler.
- ``current_decision``: the gate decision bound to the running RPC.
- ``_extract_rpc_name``, ``_should_skip``: helper utilities.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from contextvars import ContextVar
from typing import Any, Optional

import grpc

from ..config import EnforcementMode
from ..exceptions import (
    ACCESS_DENIED_MESSAGE,
    AccessCoreError,
    AccessDeniedError,
    AuthenticationError,
    MissingTenantError,
    get_grpc_status_code,
)
from ..gate import AuthorizationGate, GateDecision, Requirement
from ..permissions.constants import DenialReason

logger = logging.getLogger(__name__)

PRINCIPAL_HEADER = "x-principal-id"
TENANT_HEADER = "x-tenant-id"
SCHOOL_HEADER = "x-school-id"

# Method prefixes that bypass the gate
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)

_current_decision: ContextVar[Optional[GateDecision]] = ContextVar("accesscore_decision", default=None)


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """Extract RPC name from fully-qualified method string.

    ``/agents.AgentService/RunAgent`` → ``RunAgent``
    """
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    """Check if this method should skip the gate."""
    return any(prefix in method for prefix in _SKIP_PREFIXES)


def current_decision() -> Optional[GateDecision]:
    """Gate decision of the RPC being handled (None outside the interceptor)."""
    return _current_decision.get()


def _bind_decision(handler: Any, decision: GateDecision) -> Any:
    """Wrap a method handler so the decision is visible inside it."""
    if not isinstance(handler, grpc.RpcMethodHandler):
        return handler

    def _unary_response(inner):
        async def call(request_or_iterator, context):
            _current_decision.set(decision)
            result = inner(request_or_iterator, context)
            if inspect.isawaitable(result):
                result = await result
            return result

        return call

    def _streaming_response(inner):
        async def call(request_or_iterator, context):
            _current_decision.set(decision)
            result = inner(request_or_iterator, context)
            if inspect.isasyncgen(result):
                async for response in result:
                    yield response
            elif inspect.isawaitable(result):
                await result
            else:
                for response in result:
                    yield response

        return call

    kwargs = {
        "request_deserializer": handler.request_deserializer,
        "response_serializer": handler.response_serializer,
    }
    if handler.unary_unary:
        return grpc.unary_unary_rpc_method_handler(_unary_response(handler.unary_unary), **kwargs)
    if handler.unary_stream:
        return grpc.unary_stream_rpc_method_handler(_streaming_response(handler.unary_stream), **kwargs)
    if handler.stream_unary:
        return grpc.stream_unary_rpc_method_handler(_unary_response(handler.stream_unary), **kwargs)
    if handler.stream_stream:
        return grpc.stream_stream_rpc_method_handler(_streaming_response(handler.stream_stream), **kwargs)
    return handler


def _denied_handler(status: grpc.StatusCode, code: str) -> grpc.RpcMethodHandler:
    async def _denied(request, context):
        context.set_trailing_metadata([("error-code", code)])
        await context.abort(status, ACCESS_DENIED_MESSAGE)

    return grpc.unary_unary_rpc_method_handler(_denied)


# ── Interceptor ─────────────────────────────────────────────────


class AccessInterceptor(grpc.aio.ServerInterceptor):
    """gRPC server interceptor enforcing tenant-scoped authorization.

    Sits before all handlers and:
    1. Logs caller identity (always, even when enforcement is off)
    2. Reads principal, tenant and school from invocation metadata
    3. Maps the RPC method to its ``Requirement`` via ``rpc_requirements``
    4. Runs the authorization gate
    5. Aborts with ``UNAUTHENTICATED`` / ``PERMISSION_DENIED`` /
       ``INVALID_ARGUMENT`` if the gate says no

    Unmapped RPCs are **denied** (fail-closed). Abort messages are always the
    generic "access denied"; the internal reason is only logged.

    Args:
        gate: Authorization gate shared with the service.
        rpc_requirements: Mapping of RPC name → Requirement.
        service_name: Human-readable service name for log messages.
        enforcement: Three-state mode (off / warn / enforce).

    Usage::

        interceptor = AccessInterceptor(
            service.gate,
            {"RunAgent": Requirement("agents", "execute")},
            service_name="Agents",
            enforcement=EnforcementMode.WARN,   # safe rollout
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        rpc_requirements: Mapping[str, Requirement],
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode = EnforcementMode.WARN,
    ) -> None:
        self._gate = gate
        self._rpc_map = dict(rpc_requirements)
        self._service_name = service_name
        self._mode = enforcement

        if self._mode != EnforcementMode.OFF:
            logger.info("%s interceptor mode: %s", self._service_name, self._mode.value)

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        """Run the gate for one incoming call."""
        method = handler_call_details.method or ""

        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])
        principal_id = (metadata.get(PRINCIPAL_HEADER) or "").strip() or None
        tenant = (metadata.get(TENANT_HEADER) or "").strip() or None
        school = (metadata.get(SCHOOL_HEADER) or "").strip() or None

        logger.info(
            "%s RPC %s | caller=%s tenant=%s",
            self._service_name,
            rpc_name,
            principal_id or "anonymous",
            tenant or "-",
        )

        if self._mode == EnforcementMode.OFF:
            return await continuation(handler_call_details)

        requirement = self._rpc_map.get(rpc_name)
        decision: Optional[GateDecision] = None
        error: Optional[AccessCoreError] = None

        if requirement is None:
            error = AccessDeniedError(reason="rpc_not_mapped")
        else:
            try:
                decision = await self._gate.authorize(principal_id, tenant, school, requirement)
            except MissingTenantError as e:
                error = e
            else:
                if not decision.allowed:
                    if decision.reason == DenialReason.UNAUTHENTICATED:
                        error = AuthenticationError()
                    else:
                        error = AccessDeniedError(reason=decision.reason)

        if error is not None:
            reason = getattr(error, "reason", None) or error.code
            if self._mode == EnforcementMode.WARN:
                logger.warning(
                    "%s WARN_DENIED '%s': %s (would block in enforce mode)",
                    self._service_name,
                    rpc_name,
                    reason,
                )
                handler = await continuation(handler_call_details)
                return _bind_decision(handler, decision) if decision is not None else handler

            logger.warning("%s DENIED '%s': %s", self._service_name, rpc_name, reason)
            return _denied_handler(get_grpc_status_code(error), error.code)

        logger.debug("%s ALLOWED '%s' for %s", self._service_name, rpc_name, principal_id)
        handler = await continuation(handler_call_details)
        return _bind_decision(handler, decision)


__all__ = [
    "PRINCIPAL_HEADER",
    "SCHOOL_HEADER",
    "TENANT_HEADER",
    "AccessInterceptor",
    "_extract_rpc_name",
    "_should_skip",
    "current_decision",
]
