"""
Group Service

Group lifecycle and membership operations:
- create, update, delete a group
- join by invite key, leave
- change a member's role, remove a member
- regenerate the invite key

Every mutating operation except join/leave is Owner-only and goes through
GroupAccessGuard. Membership invariants (owner always present as Owner, one
record per user) are kept by the Group model itself.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from groupledger.access import ALL_ROLES, OWNER_ONLY, GroupAccessGuard, NotAMemberError
from groupledger.audit import AuditLogger, create_correlation_id
from groupledger.config import get_settings
from groupledger.groups.invite import allocate_invite_key
from groupledger.models.group import Currency, Group, MemberNotFoundError, Role
from groupledger.services.storage import GroupStorageInterface, NotFoundError


class GroupError(Exception):
    """Base exception for group operations."""

    http_status = 400


class InvalidInviteKeyError(GroupError):
    """No group uses the given invite key."""

    http_status = 404

    def __init__(self):
        super().__init__("Invalid invite key")


class AlreadyMemberError(GroupError):
    """The user tried to join a group they already belong to."""

    http_status = 409

    def __init__(self, group_id: UUID, user_id: str):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__("You are already a member of this group")


class InvalidRoleChangeError(GroupError):
    """The requested role change is not allowed."""


class OwnerCannotLeaveError(GroupError):
    """The owner must delete the group instead of leaving it."""

    def __init__(self):
        super().__init__("Owner cannot leave the group, delete it instead")


class GroupSummary(BaseModel):
    """A group as listed for one user."""

    id: UUID
    name: str
    currency: Currency
    tax_rate: Decimal
    owner_id: str
    role: Role
    member_count: int
    # Only shown to the owner; it is the credential for joining.
    invite_key: Optional[str] = None
    created_at: datetime

    @classmethod
    def for_user(cls, group: Group, user_id: str) -> 'GroupSummary':
        role = group.role_of(user_id)
        return cls(
            id=group.id,
            name=group.name,
            currency=group.currency,
            tax_rate=group.tax_rate,
            owner_id=group.owner_id,
            role=role,
            member_count=group.member_count,
            invite_key=group.invite_key if role == Role.OWNER else None,
            created_at=group.created_at,
        )


class GroupService:
    """Group and membership management."""

    def __init__(
        self,
        group_storage: GroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = group_storage
        self._audit_logger = audit_logger
        self._guard = GroupAccessGuard(group_storage, audit_logger)

    async def create_group(
        self,
        owner_id: str,
        name: str,
        currency: Optional[Union[Currency, str]] = None,
        tax_rate: Union[Decimal, int, str] = 0,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Create a group owned by owner_id.

        The owner becomes the first member with the Owner role.

        Raises:
            ValueError: invalid name, currency or tax rate
            KeyGenerationExhaustedError: no free invite key found
            DuplicateError: a concurrent create took the same invite key
        """
        correlation_id = correlation_id or create_correlation_id()

        if currency is None:
            currency = get_settings().app.default_currency

        invite_key = await allocate_invite_key(self._storage)
        group = Group(
            name=name,
            currency=currency,
            tax_rate=tax_rate,
            owner_id=owner_id,
            invite_key=invite_key,
        )

        await self._storage.save_group(group)

        if self._audit_logger:
            await self._audit_logger.log_group_created(
                group_id=group.id,
                owner_id=owner_id,
                name=group.name,
                correlation_id=correlation_id,
            )

        return group

    async def join_group(
        self,
        user_id: str,
        invite_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Join the group an invite key belongs to, as a Viewer.

        The key is matched case-insensitively, ignoring surrounding spaces.

        Raises:
            InvalidInviteKeyError: no group uses the key
            AlreadyMemberError: user is already a member
        """
        correlation_id = correlation_id or create_correlation_id()

        key = (invite_key or "").strip().upper()
        if not key:
            raise InvalidInviteKeyError()

        group = await self._storage.get_group_by_invite_key(key)
        if group is None:
            raise InvalidInviteKeyError()
        if group.is_member(user_id):
            raise AlreadyMemberError(group.id, user_id)

        member = group.add_member(user_id, Role.VIEWER)
        await self._storage.update_group(group)

        if self._audit_logger:
            await self._audit_logger.log_member_joined(
                group_id=group.id,
                user_id=user_id,
                role=member.role.value,
                correlation_id=correlation_id,
            )

        return group

    async def list_groups_for_user(self, user_id: str) -> list[GroupSummary]:
        """Groups the user belongs to, newest first."""
        groups = await self._storage.list_groups_for_user(user_id)
        return [GroupSummary.for_user(g, user_id) for g in groups]

    async def get_group(self, group_id: Union[UUID, str], user_id: str) -> Group:
        context = await self._guard.check_role(group_id, user_id, ALL_ROLES)
        return context.group

    async def update_group(
        self,
        group_id: Union[UUID, str],
        acting_user_id: str,
        name: Optional[str] = None,
        currency: Optional[Union[Currency, str]] = None,
        tax_rate: Optional[Union[Decimal, int, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Change group settings. Owner only.

        Arguments left as None are not changed.
        """
        correlation_id = correlation_id or create_correlation_id()

        context = await self._guard.check_role(
            group_id, acting_user_id, OWNER_ONLY, correlation_id
        )
        group = context.group

        changes = {
            field: value
            for field, value in (
                ("name", name),
                ("currency", currency),
                ("tax_rate", tax_rate),
            )
            if value is not None
        }
        if not changes:
            return group

        data = group.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.utcnow()
        updated = Group.model_validate(data)

        await self._storage.update_group(updated)

        if self._audit_logger:
            new_values = {
                "name": updated.name,
                "currency": updated.currency.value,
                "tax_rate": str(updated.tax_rate),
            }
            await self._audit_logger.log_group_updated(
                group_id=updated.id,
                actor_id=acting_user_id,
                changes={k: new_values[k] for k in changes},
                correlation_id=correlation_id,
            )

        return updated

    async def update_member_role(
        self,
        group_id: Union[UUID, str],
        acting_user_id: str,
        target_user_id: str,
        role: Union[Role, str],
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Set a member's role to Editor or Viewer. Owner only.

        Raises:
            InvalidRoleChangeError: role is not Editor/Viewer, or target is the owner
            MemberNotFoundError: target is not a member
        """
        correlation_id = correlation_id or create_correlation_id()

        context = await self._guard.check_role(
            group_id, acting_user_id, OWNER_ONLY, correlation_id
        )
        group = context.group

        try:
            new_role = Role(role)
        except ValueError:
            new_role = None
        if new_role not in (Role.EDITOR, Role.VIEWER):
            raise InvalidRoleChangeError("Invalid role. Must be Editor or Viewer")
        if target_user_id == group.owner_id:
            raise InvalidRoleChangeError("Cannot change owner's role")

        old_role = group.role_of(target_user_id)
        if old_role is None:
            raise MemberNotFoundError(target_user_id)

        group.set_role(target_user_id, new_role)
        await self._storage.update_group(group)

        if self._audit_logger:
            await self._audit_logger.log_member_role_changed(
                group_id=group.id,
                actor_id=acting_user_id,
                target_user_id=target_user_id,
                old_role=old_role.value,
                new_role=new_role.value,
                correlation_id=correlation_id,
            )

        return group

    async def remove_member(
        self,
        group_id: Union[UUID, str],
        acting_user_id: str,
        target_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Remove a member. Owner only; the owner cannot be removed.

        Raises:
            MemberNotFoundError: target is not a member
            MembershipError: target is the owner
        """
        correlation_id = correlation_id or create_correlation_id()

        context = await self._guard.check_role(
            group_id, acting_user_id, OWNER_ONLY, correlation_id
        )
        group = context.group

        group.remove_member(target_user_id)
        await self._storage.update_group(group)

        if self._audit_logger:
            await self._audit_logger.log_member_removed(
                group_id=group.id,
                actor_id=acting_user_id,
                target_user_id=target_user_id,
                correlation_id=correlation_id,
            )

        return group

    async def leave_group(
        self,
        group_id: Union[UUID, str],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Leave a group.

        Raises:
            NotFoundError: group doesn't exist
            NotAMemberError: user is not a member
            OwnerCannotLeaveError: user owns the group
        """
        correlation_id = correlation_id or create_correlation_id()

        group_uuid = group_id if isinstance(group_id, UUID) else UUID(str(group_id))
        group = await self._storage.get_group_by_id(group_uuid)
        if group is None:
            raise NotFoundError(f"Group not found: {group_uuid}")
        if not group.is_member(user_id):
            raise NotAMemberError(group.id, user_id)
        if user_id == group.owner_id:
            raise OwnerCannotLeaveError()

        group.remove_member(user_id)
        await self._storage.update_group(group)

        if self._audit_logger:
            await self._audit_logger.log_member_left(
                group_id=group.id,
                user_id=user_id,
                correlation_id=correlation_id,
            )

    async def regenerate_invite_key(
        self,
        group_id: Union[UUID, str],
        acting_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """Replace the group's invite key with a fresh unique one. Owner only."""
        correlation_id = correlation_id or create_correlation_id()

        context = await self._guard.check_role(
            group_id, acting_user_id, OWNER_ONLY, correlation_id
        )
        group = context.group

        group.invite_key = await allocate_invite_key(self._storage)
        group.touch()
        await self._storage.update_group(group)

        if self._audit_logger:
            await self._audit_logger.log_invite_key_regenerated(
                group_id=group.id,
                actor_id=acting_user_id,
                correlation_id=correlation_id,
            )

        return group.invite_key

    async def delete_group(
        self,
        group_id: Union[UUID, str],
        acting_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a group. Owner only."""
        correlation_id = correlation_id or create_correlation_id()

        context = await self._guard.check_role(
            group_id, acting_user_id, OWNER_ONLY, correlation_id
        )

        await self._storage.delete_group(context.group.id)

        if self._audit_logger:
            await self._audit_logger.log_group_deleted(
                group_id=context.group.id,
                actor_id=acting_user_id,
                correlation_id=correlation_id,
            )
