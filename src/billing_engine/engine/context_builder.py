"""
Context Builder - Derives the attributes markup rules match on.

Every function here is pure: a transaction plus its looked-up shipment
context in, a flat MatchContext out.
"""
from typing import Iterable, Mapping, Optional

from .models import (
    MatchContext,
    OrderContext,
    ShipmentContext,
    Transaction,
)


# Billing categories
SHIPMENTS = 'shipments'
SHIPMENT_FEES = 'shipment_fees'
STORAGE = 'storage'
CREDITS = 'credits'
RETURNS = 'returns'
RECEIVING = 'receiving'

BILLING_CATEGORIES = (SHIPMENTS, SHIPMENT_FEES, STORAGE, CREDITS, RETURNS, RECEIVING)

DEFAULT_BILLING_CATEGORY = SHIPMENT_FEES

FEE_TYPE_TO_CATEGORY = {
    # Shipment fees
    'Shipping': SHIPMENTS,
    'Per Pick Fee': SHIPMENT_FEES,
    'B2B - Label Fee': SHIPMENT_FEES,
    'B2B - Each Pick Fee': SHIPMENT_FEES,
    'B2B - Case Pick Fee': SHIPMENT_FEES,
    'B2B - Order Fee': SHIPMENT_FEES,
    'B2B - Supplies': SHIPMENT_FEES,
    'B2B - Pallet Material Charge': SHIPMENT_FEES,
    'B2B - Pallet Pack Fee': SHIPMENT_FEES,
    'B2B - ShipBob Freight Fee': SHIPMENT_FEES,
    'Address Correction': SHIPMENT_FEES,
    'Inventory Placement Program Fee': SHIPMENT_FEES,
    'Kitting Fee': SHIPMENT_FEES,
    'VAS - Paid Requests': SHIPMENT_FEES,
    'Others': SHIPMENT_FEES,

    # Storage
    'Warehousing Fee': STORAGE,
    'URO Storage Fee': STORAGE,

    # Returns
    'Return to sender - Processing Fees': RETURNS,
    'Return Processed by Operations Fee': RETURNS,
    'Return Label': RETURNS,

    # Receiving
    'WRO Receiving Fee': RECEIVING,
    'WRO Label Fee': RECEIVING,

    # Credits
    'Credit': CREDITS,
}

# Order types that price like a regular D2C shipment
STANDARD_ORDER_TYPES = {'dtc', 'standard'}

STANDARD_FEE_TYPE = 'Standard'


def billing_category_for(fee_type: Optional[str]) -> str:
    """Map a raw fee label to its billing category."""
    return FEE_TYPE_TO_CATEGORY.get(fee_type or '', DEFAULT_BILLING_CATEGORY)


def order_category_for(order_type: Optional[str]) -> Optional[str]:
    """
    Normalize an order type to a rule order category.

    DTC / standard / missing order types are the standard category (None);
    anything else (FBA, VAS, B2B, ...) is passed through.
    """
    if not order_type:
        return None
    if order_type.strip().lower() in STANDARD_ORDER_TYPES:
        return None
    return order_type.strip()


def shipment_fee_type(order_category: Optional[str]) -> str:
    """
    Rule-space fee type for a shipment charge.

    FBA and VAS shipments get their own fee type; everything else is Standard.
    This applies to both charges and refunds.
    """
    if order_category == 'FBA':
        return 'FBA'
    if order_category == 'VAS':
        return 'VAS'
    return STANDARD_FEE_TYPE


def lookup_shipment_context(
    transaction: Transaction,
    shipment_contexts: Mapping[str, ShipmentContext]
) -> Optional[ShipmentContext]:
    """Find the shipment context for transactions that reference a shipment."""
    if not transaction.references_shipment:
        return None
    return shipment_contexts.get(str(transaction.reference_id))


def build_match_context(
    transaction: Transaction,
    shipment_context: Optional[ShipmentContext] = None
) -> MatchContext:
    """Build the flat match context for one transaction."""
    billing_category = billing_category_for(transaction.fee_type)
    ctx = shipment_context or ShipmentContext()
    order_category = order_category_for(ctx.order_type)

    if transaction.is_shipment:
        fee_type = shipment_fee_type(order_category)
    else:
        fee_type = transaction.fee_type or ''

    return MatchContext(
        client_id=transaction.client_id,
        billing_category=billing_category,
        fee_type=fee_type,
        order_category=order_category,
        ship_option_id=ctx.ship_option_id,
        weight_oz=ctx.weight_oz,
        state=ctx.state,
        country=ctx.destination_country,
    )


def build_shipment_contexts(
    shipments: Mapping[str, ShipmentContext],
    orders: Mapping[str, OrderContext],
    shipment_orders: Mapping[str, str],
) -> dict[str, ShipmentContext]:
    """
    Merge shipment and order projections into one flat lookup map.

    Args:
        shipments: shipment id -> shipment projection
        orders: order id -> order projection
        shipment_orders: shipment id -> order id
    """
    merged = {}
    for shipment_id, shipment in shipments.items():
        order_id = shipment_orders.get(shipment_id)
        order = orders.get(order_id) if order_id is not None else None
        merged[str(shipment_id)] = shipment.with_order(order)
    return merged


def shipment_reference_ids(transactions: Iterable[Transaction]) -> list[str]:
    """Distinct shipment ids referenced by the given transactions, in order."""
    seen = {}
    for tx in transactions:
        if tx.references_shipment:
            seen.setdefault(str(tx.reference_id), None)
    return list(seen)
