from decimal import Decimal

import pytest

from billing_engine.engine.charges import (
    calculate_credit_charges,
    calculate_markup,
    calculate_shipment_charges,
    credit_matches_shipment,
    round2,
)
from billing_engine.engine.models import PricedShipment
from billing_engine.errors import InvalidChargeError

D = Decimal


@pytest.mark.parametrize("value, expected", [
    ('0.125', '0.13'),
    ('-0.125', '-0.13'),
    ('2.004', '2.00'),
    ('21.308', '21.31'),
    ('19.025', '19.03'),
])
def test_round2_half_up(value, expected):
    assert round2(D(value)) == D(expected)


def test_shipment_breakdown(make_rule):
    """base 15.22, surcharge 2.00, no insurance, 40% markup."""
    result = calculate_shipment_charges(D('15.22'), D('2.00'), D('0'), make_rule('R40', 40))

    assert result.base_charge == D('21.31')
    assert result.total_charge == D('23.31')
    assert result.billed_amount == D('23.31')
    assert result.insurance_charge == D('0.00')
    assert result.markup_applied == D('6.09')
    assert result.markup_percentage == D('0.4')
    assert result.markup_rule_id == 'R40'


def test_shipment_surcharge_not_marked_up(make_rule):
    result = calculate_shipment_charges(D('10.00'), D('1.00'), D('5.00'), make_rule('R10', 10))

    assert result.base_charge == D('11.00')
    assert result.insurance_charge == D('5.50')
    assert result.total_charge == D('12.00')
    assert result.billed_amount == D('17.50')
    assert result.markup_applied == D('1.50')


def test_shipment_without_rule_bills_at_cost():
    result = calculate_shipment_charges(D('10.00'), None, None, None)

    assert result.billed_amount == D('10.00')
    assert result.markup_applied == D('0.00')
    assert result.markup_percentage == D('0')
    assert result.markup_rule_id is None


def test_fixed_rule_on_shipment_prices_at_zero(make_rule):
    result = calculate_shipment_charges(D('10.00'), D('0'), D('0'), make_rule('FLAT', 3, markup_type='fixed'))

    assert result.markup_percentage == D('0')
    assert result.billed_amount == D('10.00')
    assert result.markup_rule_id == 'FLAT'


def test_flat_fee_without_rule():
    result = calculate_markup(D('50.00'), None)

    assert result.billed_amount == D('50.00')
    assert result.markup_applied == D('0.00')
    assert result.markup_percentage == D('0')
    assert result.markup_rule_id is None


def test_flat_fee_percentage(make_rule):
    result = calculate_markup(D('10.01'), make_rule('P', '12.5'))

    assert result.markup_applied == D('1.25')
    assert result.billed_amount == D('11.26')
    assert result.markup_percentage == D('0.125')


def test_flat_fee_fixed(make_rule):
    result = calculate_markup(D('20.00'), make_rule('F', '2.50', markup_type='fixed'))

    assert result.markup_applied == D('2.50')
    assert result.billed_amount == D('22.50')
    assert result.markup_percentage == D('0.125')


def test_flat_fee_fixed_amount_rounded_to_cents(make_rule):
    result = calculate_markup(D('10.00'), make_rule('F', '0.125', markup_type='fixed'))

    assert result.markup_applied == D('0.13')
    assert result.billed_amount == D('10.13')
    assert result.markup_percentage == D('0.013')


def test_flat_fee_fixed_on_zero_cost(make_rule):
    result = calculate_markup(D('0'), make_rule('F', '2.50', markup_type='fixed'))

    assert result.billed_amount == D('2.50')
    assert result.markup_percentage == D('0')


def test_credit_mirrors_shipment_markup():
    shipment = PricedShipment(reference_id='S1', base_cost=D('100.00'), markup_percentage=D('0.14'),
                              markup_rule_id='R14', client_id='100')
    result = calculate_credit_charges(D('-100.00'), shipment)

    assert result.markup_applied == D('-14.00')
    assert result.billed_amount == D('-114.00')
    assert result.markup_percentage == D('0.14')
    assert result.markup_rule_id == 'R14'


def test_unmatched_credit_bills_at_zero():
    result = calculate_credit_charges(D('-25.00'), None)

    assert result.billed_amount == D('-25.00')
    assert result.markup_applied == D('0.00')
    assert result.markup_percentage == D('0')


@pytest.mark.parametrize("credit, client_id, matches", [
    ('-100.00', '100', True),
    ('-100.005', '100', True),
    ('-99.995', '100', True),
    ('-100.02', '100', False),
    ('-50.00', '100', False),
    ('-100.00', '200', False),
])
def test_credit_matches_shipment(credit, client_id, matches):
    shipment = PricedShipment(reference_id='S1', base_cost=D('100.00'), markup_percentage=D('0.14'), client_id='100')
    assert credit_matches_shipment(D(credit), shipment, client_id) is matches


def test_credit_matches_nothing_without_shipment():
    assert not credit_matches_shipment(D('-10'), None, '100')


def test_non_finite_amount_rejected(make_rule):
    with pytest.raises(InvalidChargeError):
        calculate_markup(D('NaN'), make_rule('R', 10))
    with pytest.raises(InvalidChargeError):
        calculate_shipment_charges(D('Infinity'), D('0'), D('0'), None)


def test_sign_flip_rejected(make_rule):
    with pytest.raises(InvalidChargeError):
        calculate_markup(D('10.00'), make_rule('NEG', -200))
