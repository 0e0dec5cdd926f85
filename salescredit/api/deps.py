from typing import Optional
from fastapi import Header, HTTPException
from salescredit.core.identity import Principal, Role
from salescredit.schemas.credit import MemberTier


async def get_principal(
    x_member_id: Optional[str] = Header(default=None),
    x_member_role: str = Header(default=Role.MEMBER.value),
    x_member_tier: str = Header(default=MemberTier.BASIC.value),
) -> Principal:
    """Identity forwarded by the authenticating gateway."""
    if not x_member_id or not x_member_id.strip():
        raise HTTPException(status_code=401, detail="Missing member identity")
    try:
        role = Role(x_member_role.strip().lower())
        tier = MemberTier(x_member_tier.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid member identity")
    return Principal(member_id=x_member_id.strip(), role=role, tier=tier)
