from __future__ import annotations

import logging
from typing import Callable, Iterable

from docket.models import DEFAULT_SYNC_ROLES


logger = logging.getLogger(__name__)

RoleLookup = Callable[[str], "str | None"]


class PermissionGate:
    """Decides whether a principal may trigger remote calendar calls.

    Only the remote half of an operation is gated; local writes never
    consult this. Unknown principals and lookup failures are denied.
    """

    def __init__(
        self,
        role_lookup: RoleLookup,
        sync_roles: Iterable[str] = DEFAULT_SYNC_ROLES,
        default_role: str = "ABOGADO",
    ) -> None:
        self.role_lookup = role_lookup
        self.sync_roles = {str(role).strip().upper() for role in sync_roles if str(role).strip()}
        self.default_role = default_role

    def _lookup(self, principal_id: str) -> str | None:
        if not principal_id:
            return None
        try:
            role = self.role_lookup(principal_id)
        except Exception:
            logger.warning("Role lookup failed for principal %s", principal_id, exc_info=True)
            return None
        text = str(role or "").strip().upper()
        return text or None

    def role_for(self, principal_id: str) -> str:
        return self._lookup(principal_id) or self.default_role

    def can_sync(self, principal_id: str) -> bool:
        role = self._lookup(principal_id)
        if role is None:
            return False
        return role in self.sync_roles
