"""Identity resolution: external principal id → internal id + version token."""

from __future__ import annotations

import logging
from typing import Optional

from .models import Principal
from .stores.base import IdentityBackend

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Maps an external (IdP) identifier to the internal principal record.

    A principal that has not been provisioned yet resolves to ``None``;
    callers treat that as "no permissions", never as an error.
    """

    def __init__(self, backend: IdentityBackend) -> None:
        self._backend = backend

    async def resolve(self, external_id: str) -> Optional[Principal]:
        if not external_id:
            return None
        principal = await self._backend.get_by_external_id(external_id)
        if principal is None:
            logger.debug("Principal %s not provisioned yet", external_id)
        return principal


__all__ = ["IdentityResolver"]
