"""
Charge Calculator - Turns a matched rule and a base cost into billed amounts.

Three formulas:
- Shipments: base_cost and insurance_cost are marked up, surcharge is not
- Flat fees: percentage of cost, or a fixed amount added verbatim
- Credits: mirror the markup of the shipment they refund

Every persisted amount is rounded half-up to cents on its own before it
takes part in a sum.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..errors import InvalidChargeError
from .models import (
    MARKUP_FIXED,
    MARKUP_PERCENTAGE,
    ZERO,
    MarkupRule,
    PricedShipment,
    to_decimal,
)


logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
FOURPLACES = Decimal("0.0001")
HUNDRED = Decimal("100")

# Credits match a shipment when the amounts agree within a cent
CREDIT_MATCH_TOLERANCE = Decimal("0.01")


def round2(value) -> Decimal:
    """Round half-up (away from zero) to 2 decimal places."""
    return to_decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ChargeBreakdown:
    """Computed billing fields for one transaction."""
    markup_applied: Decimal
    billed_amount: Decimal
    markup_percentage: Decimal
    markup_rule_id: Optional[str] = None
    base_charge: Optional[Decimal] = None
    total_charge: Optional[Decimal] = None
    insurance_charge: Optional[Decimal] = None


def percentage_fraction(rule: Optional[MarkupRule]) -> Decimal:
    """Markup of a percentage rule as a fraction (14% -> 0.14); 0 otherwise."""
    if rule is None or rule.markup_type != MARKUP_PERCENTAGE:
        return ZERO
    return rule.markup_value / HUNDRED


def require_finite(*values: Decimal) -> None:
    """Raise InvalidChargeError if any input amount is NaN or infinite."""
    for value in values:
        if not value.is_finite():
            raise InvalidChargeError(f"non-finite amount {value}")


def check_charge(base_amount: Decimal, billed_amount: Decimal) -> None:
    """
    Reject amounts that must not be persisted.

    Raises InvalidChargeError for non-finite values, or when the billed amount
    lands on the other side of zero from the amount it was computed from.
    """
    if not base_amount.is_finite() or not billed_amount.is_finite():
        raise InvalidChargeError(f"non-finite amount (base {base_amount}, billed {billed_amount})")
    if base_amount >= ZERO and billed_amount < ZERO:
        raise InvalidChargeError(f"billed amount {billed_amount} is negative for base {base_amount}")
    if base_amount < ZERO and billed_amount > ZERO:
        raise InvalidChargeError(f"billed amount {billed_amount} is positive for credit/refund {base_amount}")


def calculate_markup(base_amount, rule: Optional[MarkupRule]) -> ChargeBreakdown:
    """
    Calculate markup for a flat-fee amount using a single matching rule.

    No rule means 0% markup and the cost passes through unchanged.
    """
    base = to_decimal(base_amount)
    require_finite(base)
    if rule is None:
        billed = round2(base)
        check_charge(base, billed)
        return ChargeBreakdown(markup_applied=round2(ZERO), billed_amount=billed, markup_percentage=ZERO)

    if rule.markup_type == MARKUP_FIXED:
        markup = round2(rule.markup_value)
        effective = (markup / base).quantize(FOURPLACES, rounding=ROUND_HALF_UP) if base != ZERO else ZERO
    else:
        effective = percentage_fraction(rule)
        markup = round2(base * effective)

    billed = round2(base + markup)
    check_charge(base, billed)
    return ChargeBreakdown(
        markup_applied=markup,
        billed_amount=billed,
        markup_percentage=effective,
        markup_rule_id=rule.id,
    )


def calculate_shipment_charges(
    base_cost,
    surcharge,
    insurance_cost,
    rule: Optional[MarkupRule]
) -> ChargeBreakdown:
    """
    Calculate the shipment breakdown.

        base_charge      = base_cost x (1 + markup%)
        insurance_charge = insurance_cost x (1 + markup%)
        total_charge     = base_charge + surcharge
        billed_amount    = base_charge + surcharge + insurance_charge

    Fixed rules have no meaning for the decomposed formula and price at 0%.
    """
    base_cost = to_decimal(base_cost)
    surcharge = to_decimal(surcharge if surcharge is not None else ZERO)
    insurance_cost = to_decimal(insurance_cost if insurance_cost is not None else ZERO)
    require_finite(base_cost, surcharge, insurance_cost)

    if rule is not None and rule.markup_type == MARKUP_FIXED:
        logger.warning("Fixed markup rule %s matched a shipment; pricing it at 0%%", rule.id)

    pct = percentage_fraction(rule)
    multiplier = Decimal(1) + pct

    base_charge = round2(base_cost * multiplier)
    insurance_charge = round2(insurance_cost * multiplier)
    total_charge = round2(base_charge + surcharge)
    billed = round2(base_charge + surcharge + insurance_charge)
    markup = round2(base_cost * pct + insurance_cost * pct)

    check_charge(base_cost + surcharge + insurance_cost, billed)
    return ChargeBreakdown(
        markup_applied=markup,
        billed_amount=billed,
        markup_percentage=pct,
        markup_rule_id=rule.id if rule else None,
        base_charge=base_charge,
        total_charge=total_charge,
        insurance_charge=insurance_charge,
    )


def credit_matches_shipment(
    credit_amount,
    shipment: Optional[PricedShipment],
    client_id: Optional[str] = None
) -> bool:
    """A credit mirrors a shipment when it refunds exactly its base cost."""
    if shipment is None:
        return False
    if client_id is not None and shipment.client_id is not None and shipment.client_id != client_id:
        return False
    credit = to_decimal(credit_amount)
    return abs(abs(credit) - shipment.base_cost) < CREDIT_MATCH_TOLERANCE


def calculate_credit_charges(credit_amount, shipment: Optional[PricedShipment]) -> ChargeBreakdown:
    """
    Price a credit.

    A credit that mirrors a priced shipment inherits that shipment's exact
    markup percentage and rule; anything else is billed at 0%.
    """
    credit = to_decimal(credit_amount)
    require_finite(credit)
    if shipment is None:
        return calculate_markup(credit, None)

    pct = shipment.markup_percentage
    markup = round2(credit * pct)
    billed = round2(credit + markup)
    check_charge(credit, billed)
    return ChargeBreakdown(
        markup_applied=markup,
        billed_amount=billed,
        markup_percentage=pct,
        markup_rule_id=shipment.markup_rule_id,
    )
