"""gRPC integration for the authorization gate.

Usage (in any service)::

    from accesscore.security import get_access_interceptors

    server = grpc.aio.server(
        interceptors=get_access_interceptors(service, RPC_REQUIREMENTS, config),
    )

    # Inside a handler, reuse the resolved context:
    from accesscore.security import current_decision

    async def RunAgent(self, request, context):
        decision = current_decision()
        ...

Configuration (env vars)::

    SECURITY_ENFORCEMENT=off|warn|enforce   # default: warn
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Optional

import grpc

from ..config import AccessConfig, EnforcementMode
from ..gate import Requirement
from .interceptors import (
    PRINCIPAL_HEADER,
    SCHOOL_HEADER,
    TENANT_HEADER,
    AccessInterceptor,
    _extract_rpc_name,
    _should_skip,
    current_decision,
)

if TYPE_CHECKING:
    from ..service import AccessService


def get_access_interceptors(
    service: AccessService,
    rpc_requirements: Mapping[str, Requirement],
    config: Optional[AccessConfig] = None,
) -> list[grpc.aio.ServerInterceptor]:
    """Get gRPC server interceptors for a service.

    Returns an empty list when enforcement is ``off`` so that no per-call
    work is done at all.

    Args:
        service: Access service providing the gate.
        rpc_requirements: Mapping of RPC name → Requirement.
        config: Settings (defaults to the service's own).

    Returns:
        List of gRPC interceptors.
    """
    cfg = config or service.config
    if cfg.enforcement == EnforcementMode.OFF:
        return []
    return [
        AccessInterceptor(
            service.gate,
            rpc_requirements,
            service_name=cfg.service_name or "Service",
            enforcement=cfg.enforcement,
        )
    ]


__all__ = [
    "PRINCIPAL_HEADER",
    "SCHOOL_HEADER",
    "TENANT_HEADER",
    "AccessInterceptor",
    "_extract_rpc_name",
    "_should_skip",
    "current_decision",
    "get_access_interceptors",
]
