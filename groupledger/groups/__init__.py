"""Group management package: invite keys and membership operations."""

from groupledger.groups.invite import (
    INVITE_KEY_ALPHABET,
    InviteKeyCollision,
    InviteKeyError,
    KeyGenerationExhaustedError,
    allocate_invite_key,
    generate_invite_key,
    generate_unique_invite_key,
)
from groupledger.groups.service import (
    AlreadyMemberError,
    GroupError,
    GroupService,
    GroupSummary,
    InvalidInviteKeyError,
    InvalidRoleChangeError,
    OwnerCannotLeaveError,
)

__all__ = [
    # Invite keys
    "INVITE_KEY_ALPHABET",
    "InviteKeyCollision",
    "InviteKeyError",
    "KeyGenerationExhaustedError",
    "allocate_invite_key",
    "generate_invite_key",
    "generate_unique_invite_key",
    # Service
    "AlreadyMemberError",
    "GroupError",
    "GroupService",
    "GroupSummary",
    "InvalidInviteKeyError",
    "InvalidRoleChangeError",
    "OwnerCannotLeaveError",
]
