"""
Tax Recalculator - Rebuilds tax charges from the billed amount.
"""
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from ..errors import InvalidChargeError
from .charges import HUNDRED, round2
from .models import TaxCharge, TaxEntry, to_decimal


def tax_rate_of(entry: TaxEntry) -> Decimal:
    """The entry's rate as a finite Decimal; InvalidChargeError otherwise."""
    if entry.tax_rate is None:
        raise InvalidChargeError(f"tax {entry.tax_type} has no tax_rate")
    try:
        rate = to_decimal(entry.tax_rate)
    except InvalidOperation:
        raise InvalidChargeError(f"tax {entry.tax_type} has invalid tax_rate {entry.tax_rate!r}") from None
    if not rate.is_finite():
        raise InvalidChargeError(f"tax {entry.tax_type} has non-finite tax_rate {rate}")
    return rate


def recalculate_taxes(taxes: Iterable[TaxEntry], billed_amount: Decimal) -> Optional[list[TaxCharge]]:
    """
    tax_amount = billed_amount x tax_rate / 100, per raw tax entry.

    Returns None when the transaction carries no taxes.
    """
    taxes = list(taxes or [])
    if not taxes:
        return None
    billed = to_decimal(billed_amount)
    charges = []
    for entry in taxes:
        rate = tax_rate_of(entry)
        charges.append(TaxCharge(
            tax_type=entry.tax_type,
            tax_rate=rate,
            tax_amount=round2(billed * rate / HUNDRED),
        ))
    return charges
