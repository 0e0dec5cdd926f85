from dataclasses import dataclass
from enum import Enum
from salescredit.core.errors import AuthorizationError
from salescredit.schemas.credit import MemberTier


class Role(str, Enum):
    MEMBER = "member"
    STAFF = "staff"
    ADMIN = "admin"


ELEVATED_ROLES = (Role.STAFF, Role.ADMIN)


@dataclass(frozen=True)
class Principal:
    """Caller identity as supplied by the upstream identity provider."""

    member_id: str
    role: Role = Role.MEMBER
    tier: MemberTier = MemberTier.BASIC

    @property
    def is_staff(self) -> bool:
        return self.role in ELEVATED_ROLES


def require_staff(principal: Principal):
    if not principal.is_staff:
        raise AuthorizationError("Staff or admin role required")


def require_owner_or_staff(principal: Principal, owner_id: str):
    if principal.member_id != owner_id and not principal.is_staff:
        raise AuthorizationError("Cannot access another member's records")
