"""
Domain models for stored payment methods and checkout coupons.

Neither is persisted locally; both are read from the payment processor on
demand.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from common.core.time import UtcDatetime


class PaymentMethod(BaseModel):
    """A card saved on the account's processor customer."""

    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool = False


class PaymentMethodList(BaseModel):
    payment_methods: list[PaymentMethod] = Field(default_factory=list)
    default_payment_method_id: Optional[str] = None

    def find(self, payment_method_id: str) -> Optional[PaymentMethod]:
        return next(
            (pm for pm in self.payment_methods if pm.id == payment_method_id), None
        )


class Coupon(BaseModel):
    """
    A customer-facing promotion code and the discount behind it.

    ``applicable_plans`` empty means the code is valid for every paid plan.
    """

    code: str
    promotion_code_id: str
    coupon_id: str
    active: bool = True

    percent_off: Optional[float] = None
    amount_off_cents: Optional[int] = None
    currency: Optional[str] = None
    duration: str = "once"  # once, repeating, forever
    duration_in_months: Optional[int] = None

    expires_at: Optional[UtcDatetime] = None
    max_redemptions: Optional[int] = None
    times_redeemed: int = 0
    applicable_plans: list[str] = Field(default_factory=list)

    def rejection_reason(self, plan_id: str, now: datetime) -> Optional[str]:
        """Why the coupon cannot be used for ``plan_id`` right now, or None."""
        if not self.active:
            return "inactive"
        if self.expires_at is not None and self.expires_at <= now:
            return "expired"
        if (
            self.max_redemptions is not None
            and self.times_redeemed >= self.max_redemptions
        ):
            return "fully redeemed"
        if self.applicable_plans and plan_id not in self.applicable_plans:
            return f"not valid for the {plan_id} plan"
        return None
