"""Delivery deadline classification for remittances."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from marketplace.database.base import as_utc, utc_now
from marketplace.database.models import Remittance
from marketplace.services.remittances.enums import AlertLevel, RemittanceStatus

WARNING_HOURS = 48
ERROR_HOURS = 24


@dataclass(frozen=True)
class DeliveryAlert:
    level: AlertLevel
    message: str
    hours_remaining: Optional[float] = None


def delivery_alert(
    remittance: Remittance, now: Optional[datetime] = None
) -> DeliveryAlert:
    """
    Classify how close a remittance is to its delivery deadline.

    Delivered or completed remittances are ``success``. Otherwise the level
    is ``error`` when overdue or under 24 hours remain, ``warning`` under 48
    hours, and ``info`` beyond that or before a deadline exists.
    """
    if remittance.status in (RemittanceStatus.DELIVERED, RemittanceStatus.COMPLETED):
        return DeliveryAlert(AlertLevel.SUCCESS, "Delivered")

    deadline = as_utc(remittance.max_delivery_date)
    if remittance.payment_validated_at is None or deadline is None:
        return DeliveryAlert(AlertLevel.INFO, "Awaiting payment validation")

    now = now or utc_now()
    hours = (deadline - now).total_seconds() / 3600

    if hours < 0:
        return DeliveryAlert(AlertLevel.ERROR, "Delivery overdue", hours)
    if hours < ERROR_HOURS:
        return DeliveryAlert(AlertLevel.ERROR, f"{round(hours)} hours left", hours)
    if hours < WARNING_HOURS:
        return DeliveryAlert(AlertLevel.WARNING, f"{round(hours / 24)} days left", hours)
    return DeliveryAlert(AlertLevel.INFO, f"{round(hours / 24)} days left", hours)
