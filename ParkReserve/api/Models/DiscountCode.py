from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator
import logging
import random

from ..clock import to_local_naive
from .Pricing import MembershipTier
from .Spot import SpotType

logger = logging.getLogger(__name__)


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class DiscountCode:
    CODE_CHARS = '23456789ABCDEFGHJKLMNPQRSTUVWXYZ'
    CODE_LENGTH = 10

    def __init__(
        self,
        id: Optional[int],
        code: str = None,
        discount_type: DiscountType = DiscountType.PERCENTAGE,
        value: float = 0.0,
        min_amount: Optional[float] = None,
        max_discount: Optional[float] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        usage_limit: Optional[int] = None,
        used_count: int = 0,
        applicable_spot_types: Optional[List[SpotType]] = None,
        membership_tiers_only: Optional[List[MembershipTier]] = None,
        is_active: bool = True,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.code = code.upper() if code else self.generate_code()
        self.discount_type = DiscountType(discount_type)
        self.value = max(0.0, float(value))
        if self.discount_type == DiscountType.PERCENTAGE:
            self.value = min(100.0, self.value)
        self.min_amount = min_amount
        self.max_discount = max_discount
        self.valid_from = valid_from
        self.valid_until = valid_until
        self.usage_limit = usage_limit
        self.used_count = used_count or 0
        self.applicable_spot_types = [SpotType.parse(t) for t in applicable_spot_types] if applicable_spot_types else None
        self.membership_tiers_only = [MembershipTier(t) for t in membership_tiers_only] if membership_tiers_only else None
        self.is_active = is_active
        self.created_at = created_at or datetime.now()

    @classmethod
    def generate_code(cls) -> str:
        """Generate a random alphanumeric code without ambiguous characters"""
        return ''.join(random.choices(cls.CODE_CHARS, k=cls.CODE_LENGTH))

    def check_validity(self, now: datetime) -> Tuple[bool, Optional[str]]:
        """Existence-independent checks: active flag, validity window and usage limit."""
        if not self.is_active:
            return False, "Discount code is inactive"
        if self.valid_from and now < self.valid_from:
            return False, "Discount code is not valid yet"
        if self.valid_until and now > self.valid_until:
            return False, "Discount code has expired"
        if self.usage_limit is not None and self.used_count >= self.usage_limit:
            return False, "Discount code usage limit reached"
        return True, None

    def discount_for(self,
                     rate: float,
                     now: datetime,
                     spot_type: Optional[SpotType] = None,
                     membership_tier: Optional[MembershipTier] = None) -> float:
        """
        Amount this code takes off an hourly rate.

        Returns 0.0 whenever the code does not apply; never raises.
        """
        valid, reason = self.check_validity(now)
        if not valid:
            logger.debug("Discount code %s ignored: %s", self.code, reason)
            return 0.0

        if self.applicable_spot_types and spot_type and SpotType.parse(spot_type) not in self.applicable_spot_types:
            return 0.0

        if self.membership_tiers_only and membership_tier and MembershipTier(membership_tier) not in self.membership_tiers_only:
            return 0.0

        if self.min_amount and rate < self.min_amount:
            return 0.0

        if self.discount_type == DiscountType.PERCENTAGE:
            amount = rate * (self.value / 100)
        else:
            amount = self.value

        if self.max_discount is not None:
            amount = min(amount, self.max_discount)

        return max(0.0, amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'code': self.code,
            'discount_type': self.discount_type.value,
            'value': self.value,
            'min_amount': self.min_amount,
            'max_discount': self.max_discount,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'usage_limit': self.usage_limit,
            'used_count': self.used_count,
            'applicable_spot_types': [t.value for t in self.applicable_spot_types] if self.applicable_spot_types else None,
            'membership_tiers_only': [t.value for t in self.membership_tiers_only] if self.membership_tiers_only else None,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DiscountCode {self.code}>"


class DiscountCodeCreate(BaseModel):
    code: Optional[str] = Field(
        None,
        min_length=4,
        max_length=16,
        description="Optional code. If not provided, one will be generated"
    )
    discount_type: DiscountType = DiscountType.PERCENTAGE
    value: float = Field(..., gt=0)
    min_amount: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, gt=0)
    applicable_spot_types: Optional[List[SpotType]] = None
    membership_tiers_only: Optional[List[MembershipTier]] = None
    is_active: bool = True

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        if v is not None:
            v = ''.join(c.upper() for c in v if not c.isspace())
            if not v.isalnum():
                raise ValueError("Code can only contain letters and numbers")
        return v

    @field_validator('applicable_spot_types', mode='before')
    @classmethod
    def parse_spot_types(cls, v):
        if v is None:
            return v
        return [SpotType.parse(t) for t in v]

    @field_validator('valid_from', 'valid_until')
    @classmethod
    def local_validity(cls, v):
        return to_local_naive(v)

    @model_validator(mode='after')
    def validate_rules(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class DiscountValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    discount: Optional[Dict[str, Any]] = None
