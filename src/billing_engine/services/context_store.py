"""
Shipment context provider backed by shipment and order tables.

Shipments: shipment_id, ship_option_id, billable_weight_oz, destination_country, order_id
Orders:    order_id, order_type, state
"""
import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..engine.context_builder import build_shipment_contexts
from ..engine.models import OrderContext, ShipmentContext, to_optional_decimal
from .transaction_store import is_missing


logger = logging.getLogger(__name__)

SHIPMENT_COLUMNS = ['shipment_id', 'ship_option_id', 'billable_weight_oz', 'destination_country', 'order_id']
ORDER_COLUMNS = ['order_id', 'order_type', 'state']


def _text(value) -> Optional[str]:
    return None if is_missing(value) else str(value).strip()


def _read_table(path: Optional[Path], columns: list[str]) -> pd.DataFrame:
    if path is None or not Path(path).exists():
        logger.warning("Context table not found: %s (contexts will be empty)", path)
        return pd.DataFrame(columns=columns)
    return pd.read_csv(path, dtype=str)


def _with_columns(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    df = df.copy()
    for column in columns:
        if column not in df.columns:
            df[column] = None
    return df


class DataFrameContextProvider:
    """Answers shipment id -> ShipmentContext lookups for the engine."""

    def __init__(self, shipments: pd.DataFrame, orders: Optional[pd.DataFrame] = None):
        self.shipments = _with_columns(shipments, SHIPMENT_COLUMNS).astype(object)
        self.orders = _with_columns(
            orders if orders is not None else pd.DataFrame(columns=ORDER_COLUMNS), ORDER_COLUMNS
        ).astype(object)
        self.shipments['shipment_id'] = self.shipments['shipment_id'].map(_text)
        self.orders['order_id'] = self.orders['order_id'].map(_text)

    @classmethod
    def from_csv(cls, shipments_csv: Path, orders_csv: Optional[Path] = None) -> 'DataFrameContextProvider':
        return cls(_read_table(shipments_csv, SHIPMENT_COLUMNS), _read_table(orders_csv, ORDER_COLUMNS))

    def fetch_contexts(self, shipment_ids: Iterable[str]) -> dict[str, ShipmentContext]:
        """Merged shipment/order context for each known shipment id."""
        ids = {str(s) for s in shipment_ids}
        if not ids:
            return {}

        rows = self.shipments[self.shipments['shipment_id'].isin(ids)]
        shipments = {}
        shipment_orders = {}
        for _, row in rows.iterrows():
            shipment_id = row['shipment_id']
            shipments[shipment_id] = ShipmentContext(
                ship_option_id=_text(row['ship_option_id']),
                weight_oz=to_optional_decimal(_text(row['billable_weight_oz'])),
                destination_country=_text(row['destination_country']),
            )
            order_id = _text(row['order_id'])
            if order_id is not None:
                shipment_orders[shipment_id] = order_id

        order_rows = self.orders[self.orders['order_id'].isin(set(shipment_orders.values()))]
        orders = {
            row['order_id']: OrderContext(order_type=_text(row['order_type']), state=_text(row['state']))
            for _, row in order_rows.iterrows()
        }

        missing = len(ids) - len(shipments)
        if missing:
            logger.debug("No shipment context for %d of %d shipments", missing, len(ids))
        return build_shipment_contexts(shipments, orders, shipment_orders)
