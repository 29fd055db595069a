from __future__ import annotations

from enum import StrEnum

from salesflow.core.auth import AuthUser


class SalesOperation(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TRANSITION = "transition"


class AccessGate:
    """Role based yes/no gate consulted before a sales operation is invoked.

    Grants are strings like ``quote.update``, ``quote.*`` or ``*``. A grant
    suffixed with ``:own`` only matches records owned by the caller.
    """

    def __init__(self, role_permissions: dict[str, set[str]] | None = None, *, default_allow: bool = True) -> None:
        self._role_permissions = role_permissions or {}
        self._default_allow = default_allow

    def is_allowed(
        self,
        user: AuthUser,
        entity_type: str,
        operation: SalesOperation | str,
        owner_id: str | None = None,
    ) -> bool:
        if self._default_allow:
            return True

        required = f"{entity_type}.{SalesOperation(operation).value}"
        grants: set[str] = set()
        for role in user.roles:
            grants.update(self._role_permissions.get(role, set()))

        for grant in grants:
            if grant.endswith(":own"):
                if owner_id is not None and owner_id == user.sub and self._matches(grant[: -len(":own")], required):
                    return True
                continue
            if self._matches(grant, required):
                return True
        return False

    @staticmethod
    def _matches(grant: str, required: str) -> bool:
        if grant in {"*", required}:
            return True

        if grant.endswith(".*"):
            return required.startswith(grant[:-1])

        return False
