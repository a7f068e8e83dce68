"""
Remittance quote calculation.

``calculate_quote`` is a pure function of a remittance type and an amount.
The engine calls it for price previews and again at creation time, storing
exactly what it returns; client-supplied totals are never used.

    commission      = fixed amount, or amount * rate / 100
    total_charged   = amount + commission
    delivery_amount = total_charged * exchange_rate

All money values are quantized to cents with ROUND_HALF_UP.
"""

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from marketplace.core.exceptions import ValidationError
from marketplace.database.models import RemittanceType
from marketplace.services.remittances.enums import CommissionType

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Quantize a value to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RemittanceQuote:
    """
    Computed amounts for a remittance.

    Attributes:
        remittance_type_id: Type the quote was computed for
        amount: Source amount sent
        commission: Fee added to the amount
        total_charged: What the sender pays
        exchange_rate: Rate applied to ``total_charged``
        delivery_amount: What the recipient receives, in delivery currency
        currency_code: Source currency
        delivery_currency: Destination currency
    """

    remittance_type_id: uuid.UUID
    amount: Decimal
    commission: Decimal
    total_charged: Decimal
    exchange_rate: Decimal
    delivery_amount: Decimal
    currency_code: str
    delivery_currency: str


def calculate_quote(remittance_type: RemittanceType, amount: Any) -> RemittanceQuote:
    """
    Compute commission, total and delivery amount.

    Args:
        remittance_type: Type defining bounds, commission model and rate
        amount: Source amount

    Returns:
        The quote

    Raises:
        ValidationError: If the type is inactive, the amount is not a
            positive number, or it falls outside the type's bounds
    """
    if not remittance_type.is_active:
        raise ValidationError(
            "Remittance type is not active",
            remittance_type_id=remittance_type.id,
        )

    try:
        amount = to_money(amount)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError("Amount must be a number", amount=str(amount)) from e

    if amount <= 0:
        raise ValidationError("Amount must be positive", amount=amount)

    min_amount = Decimal(remittance_type.min_amount)
    if amount < min_amount:
        raise ValidationError(
            f"Minimum amount is {min_amount} {remittance_type.currency_code}",
            amount=amount,
            min_amount=min_amount,
        )

    if remittance_type.max_amount is not None:
        max_amount = Decimal(remittance_type.max_amount)
        if amount > max_amount:
            raise ValidationError(
                f"Maximum amount is {max_amount} {remittance_type.currency_code}",
                amount=amount,
                max_amount=max_amount,
            )

    if CommissionType(remittance_type.commission_type) == CommissionType.FIXED:
        commission = to_money(remittance_type.commission_fixed)
    else:
        rate = Decimal(remittance_type.commission_percentage)
        commission = to_money(amount * rate / Decimal(100))

    exchange_rate = Decimal(remittance_type.exchange_rate)
    total_charged = to_money(amount + commission)
    delivery_amount = to_money(total_charged * exchange_rate)

    return RemittanceQuote(
        remittance_type_id=remittance_type.id,
        amount=amount,
        commission=commission,
        total_charged=total_charged,
        exchange_rate=exchange_rate,
        delivery_amount=delivery_amount,
        currency_code=remittance_type.currency_code,
        delivery_currency=remittance_type.delivery_currency,
    )
