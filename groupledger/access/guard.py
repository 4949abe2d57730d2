"""
Group Role Authorization

Every group-scoped operation names the roles it allows and asks this module
whether the acting user may proceed.

Two modes:
1. check_role - gate: raises NotAMemberError / InsufficientRoleError
2. attach_context_if_member - enrich: never raises, returns an empty
   context when the user is not a member or the group can't be resolved

On success the caller gets the resolved group and role back, so it does not
have to fetch the group a second time.
"""

from collections.abc import Iterable
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel

from groupledger.audit import AuditLogger
from groupledger.models.group import Group, Role
from groupledger.services.storage import (
    GroupStorageInterface,
    NotFoundError,
    StorageError,
)


ALL_ROLES = frozenset(Role)
WRITE_ROLES = frozenset({Role.OWNER, Role.EDITOR})
OWNER_ONLY = frozenset({Role.OWNER})

RoleSpec = Union[Role, str, Iterable[Union[Role, str]]]


class AccessDeniedError(Exception):
    """Base exception for authorization failures."""

    http_status = 403


class NotAMemberError(AccessDeniedError):
    """The user has no membership record in the group."""

    def __init__(self, group_id: UUID, user_id: str):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__("Not a member of this group")


class InsufficientRoleError(AccessDeniedError):
    """The user is a member, but their role is not allowed for the action."""

    def __init__(
        self,
        group_id: UUID,
        user_id: str,
        role: Role,
        allowed_roles: frozenset[Role],
    ):
        self.group_id = group_id
        self.user_id = user_id
        self.role = role
        self.allowed_roles = allowed_roles
        super().__init__(
            "This action requires one of these roles: "
            + ", ".join(_role_names(allowed_roles))
        )


class AccessContext(BaseModel):
    """Resolved group and role for the acting user."""

    group: Optional[Group] = None
    role: Optional[Role] = None

    @property
    def is_member(self) -> bool:
        return self.role is not None


def _role_names(roles: Iterable[Role]) -> list[str]:
    # Owner, Editor, Viewer order
    order = list(Role)
    return [r.value for r in sorted(roles, key=order.index)]


def normalize_roles(allowed_roles: RoleSpec) -> frozenset[Role]:
    """
    Coerce allowed roles to a set of Role values.

    Accepts a single role or an iterable of roles/role names.

    Raises:
        ValueError: a role name is not Owner, Editor or Viewer
    """
    if isinstance(allowed_roles, str):
        allowed_roles = [allowed_roles]
    return frozenset(Role(r) for r in allowed_roles)


def authorize(
    group: Group,
    user_id: str,
    allowed_roles: RoleSpec,
) -> AccessContext:
    """
    Decide whether user_id may act in group with one of allowed_roles.

    Raises:
        NotAMemberError: no membership record for the user
        InsufficientRoleError: member's role is not in allowed_roles
    """
    roles = normalize_roles(allowed_roles)
    member = group.get_member(user_id)
    if member is None:
        raise NotAMemberError(group.id, user_id)
    if member.role not in roles:
        raise InsufficientRoleError(group.id, user_id, member.role, roles)
    return AccessContext(group=group, role=member.role)


class GroupAccessGuard:
    """
    Resolves groups through storage and applies authorize().

    Denials are written to the audit log before being re-raised.
    """

    def __init__(
        self,
        group_storage: GroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = group_storage
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger("groupledger.access")

    async def check_role(
        self,
        group_id: Union[UUID, str],
        user_id: str,
        allowed_roles: RoleSpec,
        correlation_id: Optional[UUID] = None,
    ) -> AccessContext:
        """
        Gate an action on the user's role in the group.

        Raises:
            NotFoundError: group doesn't exist
            NotAMemberError: user is not a member
            InsufficientRoleError: role not allowed
            ValueError: group_id is malformed or a role name is unknown
        """
        roles = normalize_roles(allowed_roles)
        group_uuid = group_id if isinstance(group_id, UUID) else UUID(str(group_id))

        group = await self._storage.get_group_by_id(group_uuid)
        if group is None:
            raise NotFoundError(f"Group not found: {group_uuid}")

        try:
            return authorize(group, user_id, roles)
        except AccessDeniedError as e:
            if self._audit_logger:
                await self._audit_logger.log_access_denied(
                    group_id=group_uuid,
                    user_id=user_id,
                    reason=str(e),
                    allowed_roles=_role_names(roles),
                    correlation_id=correlation_id,
                )
            raise

    async def attach_context_if_member(
        self,
        group_id: Optional[Union[UUID, str]],
        user_id: str,
    ) -> AccessContext:
        """
        Look up the user's role without gating.

        Returns an empty context when group_id is missing or malformed, the
        group doesn't exist, the user isn't a member, or storage fails.
        """
        if not group_id:
            return AccessContext()

        try:
            group_uuid = group_id if isinstance(group_id, UUID) else UUID(str(group_id))
        except ValueError:
            return AccessContext()

        try:
            group = await self._storage.get_group_by_id(group_uuid)
        except StorageError as e:
            self._logger.warning(
                "attach_group_context_failed",
                group_id=str(group_uuid),
                error=str(e),
            )
            return AccessContext()

        if group is None:
            return AccessContext()

        member = group.get_member(user_id)
        if member is None:
            return AccessContext()
        return AccessContext(group=group, role=member.role)
