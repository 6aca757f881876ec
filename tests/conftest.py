import csv
import os
import sys
from decimal import Decimal

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from billing_engine.engine.models import (
    MarkupConditions,
    MarkupRule,
    ShipmentContext,
    TaxEntry,
    Transaction,
)
from billing_engine.rules.compile_rules import CSV_COLUMNS

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))


def D(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def make_rule():
    """Factory for MarkupRule with percentage markup by default."""
    def _make(rule_id, markup_value, conditions=None, **kwargs):
        if isinstance(conditions, dict):
            conditions = MarkupConditions(**conditions)
        return MarkupRule(
            id=rule_id,
            name=kwargs.pop('name', rule_id),
            markup_value=D(markup_value),
            conditions=conditions or MarkupConditions(),
            **kwargs
        )
    return _make


@pytest.fixture
def make_shipment():
    """Factory for a Shipping charge that references shipment S-<id>."""
    def _make(tx_id, base_cost, surcharge=0, insurance_cost=0, client_id='100', shipment_id=None, **kwargs):
        base = D(base_cost) if base_cost is not None else None
        return Transaction(
            id=tx_id,
            fee_type='Shipping',
            cost=(base or D(0)) + D(surcharge) + D(insurance_cost),
            client_id=client_id,
            reference_type='Shipment',
            reference_id=shipment_id or f"S-{tx_id}",
            base_cost=base,
            surcharge=D(surcharge),
            insurance_cost=D(insurance_cost),
            **kwargs
        )
    return _make


@pytest.fixture
def make_fee():
    """Factory for a flat-fee transaction."""
    def _make(tx_id, fee_type, cost, client_id='100', taxes=None, **kwargs):
        return Transaction(
            id=tx_id,
            fee_type=fee_type,
            cost=D(cost),
            client_id=client_id,
            taxes=[TaxEntry(t, D(r)) for t, r in (taxes or [])],
            **kwargs
        )
    return _make


@pytest.fixture
def dtc_context():
    def _make(ship_option_id='146', weight_oz=None, order_type='DTC', **kwargs):
        return ShipmentContext(
            ship_option_id=ship_option_id,
            weight_oz=D(weight_oz) if weight_oz is not None else None,
            order_type=order_type,
            **kwargs
        )
    return _make


@pytest.fixture
def rules_csv(tmp_path):
    """Write rule rows (dicts keyed by CSV column) to a temp markup_rules.csv."""
    def _write(rows, name='markup_rules.csv'):
        path = tmp_path / name
        with open(path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for row in rows:
                writer.writerow({col: row.get(col, '') for col in CSV_COLUMNS})
        return path
    return _write
