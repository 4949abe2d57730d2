"""
Group and Membership Models

A group is the tenant boundary: every transaction, budget and recurring
obligation belongs to exactly one group, and every group-scoped action is
gated on the caller's membership role.

DESIGN DECISION: Members are stored in a map keyed by user id rather than
an ordered list. The key makes a duplicate membership impossible to
represent, so "which record wins" never has to be answered. Python dicts
keep insertion order, so members still list in join order.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from groupledger.models.timestamps import to_naive_utc


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Role(str, Enum):
    """
    Membership roles.

    DESIGN DECISION: A closed enum instead of free text. An unknown role
    string fails at the boundary instead of silently never matching an
    allowed-roles check.
    """
    OWNER = "Owner"
    EDITOR = "Editor"
    VIEWER = "Viewer"


_CURRENCY_CODES = [
    "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "INR", "BRL", "MXN", "CHF",
    "SEK", "NOK", "DKK", "PLN", "CZK", "HUF", "RUB", "CNY", "KRW", "SGD",
    "HKD", "NZD", "ZAR", "TRY", "ILS", "AED", "SAR", "QAR", "KWD", "BHD",
    "OMR", "JOD", "LBP", "EGP", "MAD", "TND", "DZD", "LYD", "SDG", "ETB",
    "KES", "UGX", "TZS", "ZMW", "BWP", "SZL", "LSL", "NAD", "AOA", "MZN",
    "MWK", "ZWL", "GHS", "NGN", "XOF", "XAF", "CDF", "RWF", "BIF", "DJF",
    "KMF", "MGA", "SCR", "MUR", "SLL", "GMD", "GNF", "LRD", "CVE", "STN",
    "XPF", "TOP", "WST", "VUV", "SBD", "PGK", "FJD", "NPR", "BTN", "LKR",
    "MVR", "AFN", "PKR", "BDT", "MMK", "LAK", "KHR", "VND", "THB", "MYR",
    "PHP", "IDR", "BND", "KZT", "UZS", "KGS", "TJS", "TMT", "AZN", "GEL",
    "AMD", "BYN", "MDL", "UAH", "BGN", "RON", "HRK", "RSD", "MKD", "ALL",
    "BAM", "MNT", "KPW", "MOP", "TWD", "HNL", "GTQ", "BZD", "SVC", "NIO",
    "CRC", "PAB", "PEN", "BOB", "CLP", "COP", "ARS", "UYU", "PYG", "VES",
    "GYD", "SRD", "TTD", "BBD", "JMD", "XCD", "AWG", "ANG", "BMD", "KYD",
    "FKP", "SHP",
]

# ISO 4217 codes accepted for a group's reporting currency.
Currency = Enum("Currency", {code: code for code in _CURRENCY_CODES}, type=str)


# =============================================================================
# ERRORS
# =============================================================================

class MembershipError(Exception):
    """Base exception for membership changes that break group invariants."""

    http_status = 400


class DuplicateMemberError(MembershipError):
    """The user already has a membership record in this group."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} is already a member of this group")


class MemberNotFoundError(MembershipError):
    """No membership record exists for the user."""

    http_status = 404

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Member not found: {user_id}")


# =============================================================================
# MODELS
# =============================================================================

class GroupMember(BaseModel):
    """One user's membership in a group."""

    user_id: str = Field(
        ...,
        min_length=1,
        description="Member's user identifier"
    )
    role: Role = Field(
        default=Role.VIEWER,
        description="Member's role within the group"
    )
    joined_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the user joined the group"
    )

    @field_validator('joined_at')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class Group(BaseModel):
    """
    A group of users sharing financial records.

    INVARIANTS (checked on construction):
    - The owner is always a member with role Owner
    - Nobody but the owner holds the Owner role
    - Each member map key equals that member's user_id

    Mutate membership only through add_member/remove_member/set_role,
    which keep these invariants.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique group ID"
    )
    name: str = Field(
        ...,
        min_length=2,
        max_length=100,
        description="Group name"
    )
    currency: Currency = Field(
        default=Currency.USD,
        description="Reporting currency for the group"
    )
    tax_rate: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Tax rate applied to the group's invoices, in percent"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="User who owns the group"
    )
    members: dict[str, GroupMember] = Field(
        default_factory=dict,
        description="Memberships keyed by user id, in join order"
    )
    invite_key: str = Field(
        ...,
        min_length=6,
        max_length=10,
        description="Unique code other users join with"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('members', mode='before')
    @classmethod
    def members_from_list(cls, v):
        """Accept a list of memberships (storage shape) and key it by user."""
        if not isinstance(v, (list, tuple)):
            return v
        keyed = {}
        for item in v:
            member = item if isinstance(item, GroupMember) else GroupMember.model_validate(item)
            if member.user_id in keyed:
                raise ValueError(f"Duplicate membership for user {member.user_id}")
            keyed[member.user_id] = member
        return keyed

    @field_validator('invite_key')
    @classmethod
    def normalize_invite_key(cls, v: str) -> str:
        return v.upper()

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode='after')
    def validate_membership(self) -> 'Group':
        """Seed the owner membership and check role invariants."""
        if not self.members:
            self.members = {
                self.owner_id: GroupMember(user_id=self.owner_id, role=Role.OWNER)
            }

        for user_id, member in self.members.items():
            if user_id != member.user_id:
                raise ValueError(
                    f"Member key {user_id} does not match member user {member.user_id}"
                )
            if member.role == Role.OWNER and user_id != self.owner_id:
                raise ValueError("Only the group owner can hold the Owner role")

        owner = self.members.get(self.owner_id)
        if owner is None or owner.role != Role.OWNER:
            raise ValueError("Group owner must be a member with the Owner role")

        return self

    # -------------------------------------------------------------------------
    # Membership queries
    # -------------------------------------------------------------------------

    def get_member(self, user_id: str) -> Optional[GroupMember]:
        return self.members.get(user_id)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def role_of(self, user_id: str) -> Optional[Role]:
        member = self.members.get(user_id)
        return member.role if member else None

    @property
    def member_list(self) -> list[GroupMember]:
        """Members in join order."""
        return list(self.members.values())

    @property
    def member_count(self) -> int:
        return len(self.members)

    # -------------------------------------------------------------------------
    # Membership changes
    # -------------------------------------------------------------------------

    def add_member(
        self,
        user_id: str,
        role: Role = Role.VIEWER,
        joined_at: Optional[datetime] = None,
    ) -> GroupMember:
        """
        Add a new member.

        Raises:
            DuplicateMemberError: user already belongs to the group
            ValueError: role is Owner (ownership is not granted by joining)
        """
        role = Role(role)
        if user_id in self.members:
            raise DuplicateMemberError(user_id)
        if role == Role.OWNER:
            raise ValueError("Members cannot be added with the Owner role")

        member = GroupMember(
            user_id=user_id,
            role=role,
            joined_at=joined_at or datetime.utcnow(),
        )
        self.members[user_id] = member
        self.touch()
        return member

    def remove_member(self, user_id: str) -> GroupMember:
        """
        Remove a member.

        Raises:
            MemberNotFoundError: user is not a member
            MembershipError: user is the owner
        """
        member = self.members.get(user_id)
        if member is None:
            raise MemberNotFoundError(user_id)
        if user_id == self.owner_id:
            raise MembershipError("Cannot remove group owner")

        del self.members[user_id]
        self.touch()
        return member

    def set_role(self, user_id: str, role: Role) -> GroupMember:
        """
        Change a non-owner member's role to Editor or Viewer.

        Raises:
            MemberNotFoundError: user is not a member
            MembershipError: user is the owner, or role is Owner
        """
        role = Role(role)
        member = self.members.get(user_id)
        if member is None:
            raise MemberNotFoundError(user_id)
        if user_id == self.owner_id:
            raise MembershipError("Cannot change owner's role")
        if role == Role.OWNER:
            raise MembershipError("Invalid role. Must be Editor or Viewer")

        member.role = role
        self.touch()
        return member

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()
