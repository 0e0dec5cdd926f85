from enum import Enum
from pydantic import BaseModel


class MemberTier(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    VIP = "vip"


class CustomerType(str, Enum):
    NEW = "new"
    RETURNING = "returning"
    MEMBER = "member"


class CreditModifiers(BaseModel):
    member_tier: MemberTier = MemberTier.BASIC
    customer_type: CustomerType = CustomerType.MEMBER
