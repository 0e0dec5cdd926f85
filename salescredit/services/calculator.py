"""Store-credit calculation.

Pure and synchronous: the same (category, modifiers, sale value, confidence)
always yields the same amount. All arithmetic is done in ``Decimal`` and the
result is rounded to cents exactly once, after the multipliers, the
confidence scaling and the cap have been applied.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
from salescredit.core.config import settings
from salescredit.core.errors import ValidationError
from salescredit.schemas.credit import CreditModifiers, CustomerType, MemberTier
from salescredit.schemas.extraction import AssistanceCategory, clamp_confidence

CENT = Decimal("0.01")

CATEGORY_RATES: Dict[AssistanceCategory, Decimal] = {
    AssistanceCategory.RECOMMENDATION: Decimal("0.03"),
    AssistanceCategory.ASSISTANCE: Decimal("0.07"),
    AssistanceCategory.CONSULTATION: Decimal("0.12"),
    AssistanceCategory.PROBLEM_SOLVING: Decimal("0.18"),
}

# Used when no sale value is known, e.g. a voice claim with no POS record.
DEFAULT_BASE_AMOUNTS: Dict[AssistanceCategory, Decimal] = {
    AssistanceCategory.RECOMMENDATION: Decimal("2.00"),
    AssistanceCategory.ASSISTANCE: Decimal("5.00"),
    AssistanceCategory.CONSULTATION: Decimal("10.00"),
    AssistanceCategory.PROBLEM_SOLVING: Decimal("15.00"),
}

TIER_MULTIPLIERS: Dict[MemberTier, Decimal] = {
    MemberTier.BASIC: Decimal("1.0"),
    MemberTier.PREMIUM: Decimal("1.2"),
    MemberTier.VIP: Decimal("1.5"),
}

CUSTOMER_MULTIPLIERS: Dict[CustomerType, Decimal] = {
    CustomerType.NEW: Decimal("1.3"),
    CustomerType.RETURNING: Decimal("1.1"),
    CustomerType.MEMBER: Decimal("1.0"),
}

HIGH_VALUE_THRESHOLD = Decimal("200")
HIGH_VALUE_MULTIPLIER = Decimal("1.4")


@dataclass(frozen=True)
class CreditBreakdown:
    category: AssistanceCategory
    base: Decimal
    multipliers: Dict[str, Decimal]
    confidence: float
    unrounded: Decimal
    capped: bool
    amount: Decimal = field(default=Decimal("0.00"))

    def as_audit_detail(self) -> dict:
        return {
            "category": self.category.value,
            "base": str(self.base),
            "multipliers": {name: str(value) for name, value in self.multipliers.items()},
            "confidence": self.confidence,
            "unrounded": str(self.unrounded),
            "capped": self.capped,
            "amount": str(self.amount),
        }


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 45.1 from turning into 45.0999999...
    return Decimal(str(value))


def calculate_breakdown(
    category: AssistanceCategory,
    modifiers: Optional[CreditModifiers] = None,
    sale_value=None,
    confidence: float = 1.0,
    cap: Optional[Decimal] = None,
) -> CreditBreakdown:
    category = AssistanceCategory(category)
    modifiers = modifiers or CreditModifiers()
    cap = settings.credit_cap if cap is None else _to_decimal(cap)
    confidence = clamp_confidence(confidence)

    value = _to_decimal(sale_value) if sale_value is not None else None
    if value is not None and value < 0:
        raise ValidationError("Sale value cannot be negative")

    if value:
        base = value * CATEGORY_RATES[category]
    else:
        base = DEFAULT_BASE_AMOUNTS[category]

    multipliers = {
        "member_tier": TIER_MULTIPLIERS[modifiers.member_tier],
        "customer_type": CUSTOMER_MULTIPLIERS[modifiers.customer_type],
    }
    if value is not None and value > HIGH_VALUE_THRESHOLD:
        multipliers["high_value_sale"] = HIGH_VALUE_MULTIPLIER

    amount = base
    for multiplier in multipliers.values():
        amount *= multiplier
    amount *= _to_decimal(confidence)

    capped = amount > cap
    unrounded = min(cap, amount)

    return CreditBreakdown(
        category=category,
        base=base,
        multipliers=multipliers,
        confidence=confidence,
        unrounded=unrounded,
        capped=capped,
        amount=unrounded.quantize(CENT, rounding=ROUND_HALF_UP),
    )


def calculate_credit(
    category: AssistanceCategory,
    modifiers: Optional[CreditModifiers] = None,
    sale_value=None,
    confidence: float = 1.0,
    cap: Optional[Decimal] = None,
) -> Decimal:
    """Credit amount in cents precision for one claim."""
    return calculate_breakdown(category, modifiers, sale_value, confidence, cap).amount
