"""
Transaction Store - pandas-backed table of billing transactions.

Cells are kept as text so money values round-trip through Decimal without
float drift. The store answers the engine's three questions: which rows need
pricing, which shipments are already priced, and where to write results.
"""
import json
import logging
import math
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..engine.models import (
    SHIPMENT_FEE_TYPE,
    SHIPMENT_REFERENCE_TYPE,
    PricedShipment,
    TaxCharge,
    TaxEntry,
    Transaction,
    to_optional_decimal,
)
from ..errors import PersistenceError


logger = logging.getLogger(__name__)

INPUT_COLUMNS = [
    'id', 'client_id', 'fee_type', 'cost', 'base_cost', 'surcharge', 'insurance_cost',
    'charge_date', 'reference_id', 'reference_type', 'invoiced_status', 'taxes',
]

DERIVED_COLUMNS = [
    'markup_applied', 'billed_amount', 'markup_percentage', 'markup_rule_id',
    'base_charge', 'total_charge', 'insurance_charge', 'taxes_charge', 'markup_is_preview',
]

BOOL_TRUE = ('true', '1', 'yes', 't')
BOOL_FALSE = ('false', '0', 'no', 'f')


def is_missing(value) -> bool:
    """True for None, NaN and empty strings."""
    if value is None or value is pd.NA:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ''


def parse_optional_bool(value) -> Optional[bool]:
    if is_missing(value):
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in BOOL_TRUE:
        return True
    if text in BOOL_FALSE:
        return False
    return None


def parse_optional_date(value) -> Optional[date]:
    if is_missing(value):
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_taxes(value) -> list[TaxEntry]:
    """Raw taxes cell: JSON list of {tax_type, tax_rate[, tax_amount]}."""
    if is_missing(value):
        return []
    entries = json.loads(value) if isinstance(value, str) else value
    return [
        TaxEntry(tax_type=str(e['tax_type']), tax_rate=to_optional_decimal(e.get('tax_rate')))
        for e in entries or []
    ]


def parse_taxes_charge(value) -> Optional[list[TaxCharge]]:
    if is_missing(value):
        return None
    entries = json.loads(value) if isinstance(value, str) else value
    return [
        TaxCharge(
            tax_type=str(e['tax_type']),
            tax_rate=to_optional_decimal(e['tax_rate']),
            tax_amount=to_optional_decimal(e['tax_amount']),
        )
        for e in entries
    ]


def to_cell(value):
    """Serialize a Python value into the text form stored in the frame."""
    if is_missing(value):
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (Decimal, int, float)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return json.dumps([v.to_dict() if isinstance(v, TaxCharge) else v for v in value], default=str)
    return str(value)


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Text-typed copy of the frame with every known column present."""
    df = df.copy().astype(object)
    for column in INPUT_COLUMNS + DERIVED_COLUMNS:
        if column not in df.columns:
            df[column] = None
    for column in df.columns:
        df[column] = df[column].map(to_cell).astype(object)
    return df


def row_to_transaction(row: pd.Series) -> Transaction:
    """Build a Transaction from one frame row."""
    def text(column):
        value = row.get(column)
        return None if is_missing(value) else str(value)

    def money(column):
        return to_optional_decimal(text(column))

    return Transaction(
        id=text('id'),
        fee_type=text('fee_type') or '',
        cost=money('cost'),
        client_id=text('client_id'),
        reference_type=text('reference_type'),
        reference_id=text('reference_id'),
        base_cost=money('base_cost'),
        surcharge=money('surcharge'),
        insurance_cost=money('insurance_cost'),
        taxes=parse_taxes(row.get('taxes')),
        charge_date=parse_optional_date(row.get('charge_date')),
        invoiced_status=parse_optional_bool(row.get('invoiced_status')) is True,
        markup_applied=money('markup_applied'),
        billed_amount=money('billed_amount'),
        markup_percentage=money('markup_percentage'),
        markup_rule_id=text('markup_rule_id'),
        base_charge=money('base_charge'),
        total_charge=money('total_charge'),
        insurance_charge=money('insurance_charge'),
        taxes_charge=parse_taxes_charge(row.get('taxes_charge')),
        markup_is_preview=parse_optional_bool(row.get('markup_is_preview')),
    )


# Malformed money, date or taxes cells
ROW_ERRORS = (InvalidOperation, ValueError, KeyError, TypeError)


def rows_to_transactions(rows: pd.DataFrame) -> list[Transaction]:
    """Convert frame rows, logging and leaving out rows that cannot be read."""
    transactions = []
    for _, row in rows.iterrows():
        try:
            transactions.append(row_to_transaction(row))
        except ROW_ERRORS as e:
            logger.warning("Skipping unreadable transaction %s: %s", row.get('id'), e)
    return transactions


@dataclass
class CandidateFilter:
    """Which transactions a pricing run should pick up."""
    transaction_ids: Optional[list[str]] = None
    fee_types: Optional[list[str]] = None
    exclude_fee_types: Optional[list[str]] = None
    client_id: Optional[str] = None
    force_recalc: bool = False
    limit: Optional[int] = 1000


class DataFrameTransactionStore:
    """
    Transaction table held in a pandas DataFrame, optionally backed by CSV.

    Updates are serialized with a lock so the writer can fan out over threads.
    """

    def __init__(self, df: pd.DataFrame, path: Optional[Path] = None):
        self.df = normalize_frame(df)
        self.path = Path(path) if path else None
        self._lock = threading.Lock()

    @classmethod
    def from_csv(cls, path: Path) -> 'DataFrameTransactionStore':
        df = pd.read_csv(path, dtype=str)
        return cls(df, path=path)

    @classmethod
    def from_records(cls, records: list[dict]) -> 'DataFrameTransactionStore':
        if not records:
            return cls(pd.DataFrame(columns=INPUT_COLUMNS))
        return cls(pd.DataFrame.from_records(records))

    def __len__(self) -> int:
        return len(self.df)

    def _bool_column(self, column: str) -> pd.Series:
        return self.df[column].map(parse_optional_bool)

    def fetch_candidates(self, filters: Optional[CandidateFilter] = None) -> list[Transaction]:
        """
        Transactions needing pricing, newest charge date first.

        Must be attributed and not invoiced; unless force_recalc, must not
        carry a preview markup yet.
        """
        filters = filters or CandidateFilter()
        df = self.df

        mask = df['client_id'].map(lambda v: not is_missing(v))
        mask &= self._bool_column('invoiced_status').map(lambda v: v is not True)

        if filters.transaction_ids:
            mask &= df['id'].isin([str(i) for i in filters.transaction_ids])
        if filters.fee_types:
            mask &= df['fee_type'].isin(filters.fee_types)
        if filters.exclude_fee_types:
            mask &= ~df['fee_type'].isin(filters.exclude_fee_types)
        if filters.client_id:
            mask &= df['client_id'] == str(filters.client_id)
        if not filters.force_recalc:
            mask &= self._bool_column('markup_is_preview').map(lambda v: v is None)

        selected = df[mask.astype(bool)].sort_values(
            'charge_date', ascending=False, na_position='last', kind='stable'
        )
        if filters.limit:
            selected = selected.head(filters.limit)

        return rows_to_transactions(selected)

    def fetch_priced_shipments(self, reference_ids: Iterable[str]) -> dict[str, PricedShipment]:
        """Shipment charges already carrying a markup, keyed by shipment id."""
        ids = {str(r) for r in reference_ids if not is_missing(r)}
        if not ids:
            return {}

        df = self.df
        mask = (
            (df['fee_type'] == SHIPMENT_FEE_TYPE)
            & (df['reference_type'] == SHIPMENT_REFERENCE_TYPE)
            & df['reference_id'].isin(ids)
            & df['markup_percentage'].map(lambda v: not is_missing(v))
            & df['base_cost'].map(lambda v: not is_missing(v))
        )

        priced = {}
        for _, row in df[mask.astype(bool)].iterrows():
            try:
                base_cost = to_optional_decimal(row['base_cost'])
                markup_percentage = to_optional_decimal(row['markup_percentage'])
            except InvalidOperation as e:
                logger.warning("Skipping unreadable priced shipment %s: %s", row['id'], e)
                continue
            # Refund rows share the shipment id
            if base_cost <= 0:
                continue
            reference_id = str(row['reference_id'])
            priced[reference_id] = PricedShipment(
                reference_id=reference_id,
                base_cost=base_cost,
                markup_percentage=markup_percentage,
                markup_rule_id=None if is_missing(row['markup_rule_id']) else str(row['markup_rule_id']),
                client_id=None if is_missing(row['client_id']) else str(row['client_id']),
            )
        return priced

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        match = self.df[self.df['id'] == str(transaction_id)]
        if match.empty:
            return None
        return row_to_transaction(match.iloc[0])

    def update_transaction(self, transaction_id: str, fields: dict) -> None:
        """Write computed fields onto one transaction row."""
        with self._lock:
            index = self.df.index[self.df['id'] == str(transaction_id)]
            if len(index) == 0:
                raise PersistenceError(f"Transaction {transaction_id} not found")
            for column, value in fields.items():
                if column not in self.df.columns:
                    self.df[column] = None
                for i in index:
                    self.df.at[i, column] = to_cell(value)

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the table back to CSV."""
        target = Path(path) if path else self.path
        if target is None:
            raise PersistenceError("No path to save transactions to")
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            self.df.to_csv(target, index=False)
        logger.info("Saved %d transactions to %s", len(self.df), target)
        return target
