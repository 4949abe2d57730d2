"""Group role authorization package."""

from groupledger.access.guard import (
    ALL_ROLES,
    OWNER_ONLY,
    WRITE_ROLES,
    AccessContext,
    AccessDeniedError,
    GroupAccessGuard,
    InsufficientRoleError,
    NotAMemberError,
    authorize,
    normalize_roles,
)

__all__ = [
    "ALL_ROLES",
    "OWNER_ONLY",
    "WRITE_ROLES",
    "AccessContext",
    "AccessDeniedError",
    "GroupAccessGuard",
    "InsufficientRoleError",
    "NotAMemberError",
    "authorize",
    "normalize_roles",
]
