"""Domain models for plan-change previews."""

from decimal import Decimal
from typing import Union
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.enums import BillingCycle, ResourceType


class FeatureChange(BaseModel):
    """A resource whose limit differs between the two plans."""

    model_config = ConfigDict(populate_by_name=True)

    resource: ResourceType
    from_value: Union[int, str] = Field(alias="from")
    to_value: Union[int, str] = Field(alias="to")


class ProrationPreview(BaseModel):
    """
    Preview of switching plans mid-period.

    Amounts are in currency units rounded to cents. ``prorated_amount`` is
    negative when the switch leaves the account with a credit.
    """

    current_plan_id: str
    current_cycle: BillingCycle
    new_plan_id: str
    new_cycle: BillingCycle
    days_remaining: int
    credit: Decimal
    charge: Decimal
    prorated_amount: Decimal
    immediate_payment: Decimal
    next_billing_amount: Decimal
    currency: str
    changes: list[FeatureChange]
