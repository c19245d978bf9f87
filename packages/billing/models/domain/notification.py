"""Domain models for billing notifications handed to downstream delivery."""

from typing import Any
from pydantic import BaseModel, ConfigDict, Field

from common.core.time import UtcDatetime
from packages.billing.models.domain.enums import NotificationType

PAYMENT_FAILED_TITLE = "Payment Failed"
PAYMENT_FAILED_MESSAGE = (
    "We were unable to process your payment. Please update your payment method."
)
SUBSCRIPTION_EXPIRED_TITLE = "Subscription Expired"
SUBSCRIPTION_EXPIRED_MESSAGE = (
    "Your subscription has expired. "
    "Please update your payment method to continue."
)


class BillingNotification(BaseModel):
    id: int
    account_id: str
    notification_type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime

    class Config:
        from_attributes = True


class BillingNotificationCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    account_id: str
    notification_type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def payment_failed(
        cls, account_id: str, data: dict[str, Any]
    ) -> "BillingNotificationCreateModel":
        return cls(
            account_id=account_id,
            notification_type=NotificationType.PAYMENT_FAILED,
            title=PAYMENT_FAILED_TITLE,
            message=PAYMENT_FAILED_MESSAGE,
            data=data,
        )

    @classmethod
    def subscription_expired(
        cls, account_id: str, data: dict[str, Any]
    ) -> "BillingNotificationCreateModel":
        return cls(
            account_id=account_id,
            notification_type=NotificationType.SUBSCRIPTION_EXPIRED,
            title=SUBSCRIPTION_EXPIRED_TITLE,
            message=SUBSCRIPTION_EXPIRED_MESSAGE,
            data=data,
        )
