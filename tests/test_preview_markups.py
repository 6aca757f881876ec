from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from billing_engine.errors import PersistenceError, RuleStoreError
from billing_engine.rules.store import RuleStore
from billing_engine.services.context_store import DataFrameContextProvider
from billing_engine.services.preview_markups import (
    PreviewMarkupJob,
    PreviewMarkupOptions,
    calculate_preview_markups,
)
from billing_engine.services.transaction_store import DataFrameTransactionStore
from billing_engine.services.writer import MarkupWriter

D = Decimal

AS_OF = date(2025, 3, 1)


@pytest.fixture
def rule_store(rules_csv):
    return RuleStore(rules_csv([
        {'id': 'STD', 'billing_category': 'shipments', 'markup_value': '14'},
        {'id': 'HEAVY', 'billing_category': 'shipments', 'ship_option_id': '146',
         'weight_min_oz': '80', 'weight_max_oz': '160', 'markup_value': '40'},
        {'id': 'PICK', 'fee_type': 'Per Pick Fee', 'markup_value': '20'},
    ]))


@pytest.fixture
def transaction_store():
    return DataFrameTransactionStore.from_records([
        {'id': 'T1', 'client_id': '100', 'fee_type': 'Shipping', 'cost': '17.22', 'base_cost': '15.22',
         'surcharge': '2.00', 'insurance_cost': '0', 'reference_type': 'Shipment', 'reference_id': 'S1',
         'charge_date': '2025-02-01'},
        {'id': 'T2', 'client_id': '100', 'fee_type': 'Per Pick Fee', 'cost': '0.50', 'charge_date': '2025-02-02',
         'reference_type': 'Shipment', 'reference_id': 'S1'},
        {'id': 'T3', 'client_id': '100', 'fee_type': 'Credit', 'cost': '-20.00', 'charge_date': '2025-02-03',
         'reference_type': 'Shipment', 'reference_id': 'S0'},
        {'id': 'T0', 'client_id': '100', 'fee_type': 'Shipping', 'cost': '20.00', 'base_cost': '20.00',
         'reference_type': 'Shipment', 'reference_id': 'S0', 'charge_date': '2025-01-15',
         'invoiced_status': True, 'markup_percentage': '0.25', 'markup_rule_id': 'OLD', 'billed_amount': '25.00'},
        {'id': 'T4', 'client_id': '100', 'fee_type': 'Shipping', 'cost': '9.00', 'reference_type': 'Shipment',
         'reference_id': 'S2', 'charge_date': '2025-02-04'},
    ])


@pytest.fixture
def context_provider():
    shipments = pd.DataFrame([
        {'shipment_id': 'S1', 'ship_option_id': '146', 'billable_weight_oz': '100', 'order_id': 'O1'},
    ])
    orders = pd.DataFrame([{'order_id': 'O1', 'order_type': 'DTC', 'state': 'CA'}])
    return DataFrameContextProvider(shipments, orders)


@pytest.fixture
def job(rule_store, transaction_store, context_provider):
    return PreviewMarkupJob(rule_store, transaction_store, context_provider)


def test_run_prices_and_writes(job, transaction_store):
    result = job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF))

    assert result.candidates == 4
    assert result.updated == 3
    assert result.skipped == 1  # T4 has no base_cost yet
    assert result.failed == 0

    shipment = transaction_store.get_transaction('T1')
    assert shipment.markup_rule_id == 'HEAVY'
    assert shipment.billed_amount == D('23.31')
    assert shipment.markup_is_preview is True

    pick = transaction_store.get_transaction('T2')
    assert pick.billed_amount == D('0.60')

    # Credit mirrors the invoiced shipment priced in an earlier run
    credit = transaction_store.get_transaction('T3')
    assert credit.markup_rule_id == 'OLD'
    assert credit.billed_amount == D('-25.00')

    assert transaction_store.get_transaction('T4').billed_amount is None


def test_second_run_finds_nothing_to_do(job):
    job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF))
    result = job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF))

    assert result.candidates == 1
    assert result.updated == 0


def test_dry_run_writes_nothing(job, transaction_store):
    result = job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF, dry_run=True))

    assert result.updated == 0
    assert sum(1 for r in result.results if r.is_priced) == 3
    assert transaction_store.get_transaction('T1').billed_amount is None


def test_rule_store_failure_aborts_before_fetch(tmp_path, context_provider):
    class ExplodingStore:
        def fetch_candidates(self, filters):
            raise AssertionError("transactions must not be fetched")

    job = PreviewMarkupJob(RuleStore(tmp_path / 'missing.json'), ExplodingStore(), context_provider)

    with pytest.raises(RuleStoreError):
        job.calculate_preview_markups()


def test_persistence_failure_is_isolated(rule_store, transaction_store, context_provider):
    original = transaction_store.update_transaction

    def flaky_update(transaction_id, fields):
        if transaction_id == 'T2':
            raise PersistenceError("database unavailable")
        original(transaction_id, fields)

    transaction_store.update_transaction = flaky_update

    result = calculate_preview_markups(
        rule_store, transaction_store, context_provider, PreviewMarkupOptions(as_of=AS_OF),
        writer=MarkupWriter(transaction_store, max_workers=2),
    )

    assert result.updated == 2
    assert result.failed == 1
    assert result.errors == ["T2: database unavailable"]
    assert transaction_store.get_transaction('T1').billed_amount == D('23.31')


def test_shipment_only_run(job, transaction_store):
    result = job.calculate_shipment_preview_markups(as_of=AS_OF)

    assert result.candidates == 2
    assert result.updated == 1
    assert transaction_store.get_transaction('T2').billed_amount is None


def test_non_shipment_run_by_ids(job, transaction_store):
    result = job.calculate_non_shipment_preview_markups(transaction_ids=['T2', 'T1'], as_of=AS_OF)

    assert result.candidates == 1
    assert transaction_store.get_transaction('T2').billed_amount == D('0.60')
    assert transaction_store.get_transaction('T1').billed_amount is None


def test_final_run_marks_invoiced(job, transaction_store):
    job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF))
    result = job.calculate_preview_markups(PreviewMarkupOptions(as_of=AS_OF, final=True, fee_types=['Per Pick Fee']))

    assert result.updated == 1
    pick = transaction_store.get_transaction('T2')
    assert pick.markup_is_preview is False
    assert pick.invoiced_status is True
