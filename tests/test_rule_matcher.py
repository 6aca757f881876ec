from decimal import Decimal

import pytest

from billing_engine.engine.models import MatchContext, RuleSnapshot
from billing_engine.engine.rule_matcher import (
    RuleMatcher,
    count_rule_conditions,
    find_matching_rule,
    rule_matches,
)
from billing_engine.engine.weights import get_weight_bracket


def shipment_ctx(client_id='100', ship_option_id='146', weight_oz=None, order_category=None, **kwargs):
    return MatchContext(
        client_id=client_id,
        billing_category='shipments',
        fee_type=kwargs.pop('fee_type', 'Standard'),
        order_category=order_category,
        ship_option_id=ship_option_id,
        weight_oz=Decimal(str(weight_oz)) if weight_oz is not None else None,
        **kwargs
    )


def test_most_conditions_wins(make_rule):
    """
    Standard (0 conditions) = 14%, + Ship 146 (1) = 18%, + 5-10lbs (2) = 25%.
    A Ship 146 shipment at 7lbs gets 25%.
    """
    rules = [
        make_rule('STD', 14, billing_category='shipments'),
        make_rule('SHIP146', 18, billing_category='shipments', ship_option_id='146'),
        make_rule('SHIP146-HEAVY', 25, billing_category='shipments', ship_option_id='146',
                  conditions={'weight_min_oz': Decimal('80'), 'weight_max_oz': Decimal('160')}),
    ]
    best = RuleMatcher(rules).find_best_rule(shipment_ctx(weight_oz=112))

    assert best.rule_id == 'SHIP146-HEAVY'
    assert best.specificity == 2


def test_matching_rules_sorted_by_specificity(make_rule):
    rules = [
        make_rule('A', 10),
        make_rule('B', 20, client_id='100', ship_option_id='146'),
        make_rule('C', 30, ship_option_id='146'),
    ]
    matched = RuleMatcher(rules).find_matching_rules(shipment_ctx())

    assert [m.rule_id for m in matched] == ['B', 'C', 'A']
    assert [m.specificity for m in matched] == [2, 1, 0]


@pytest.mark.parametrize("weight, expected", [
    (79.99, 'BASE'),
    (80, 'RANGE'),
    (159.99, 'RANGE'),
    (160, 'BASE'),
])
def test_weight_range_is_half_open(make_rule, weight, expected):
    """Weight range includes its minimum and excludes its maximum."""
    rules = [
        make_rule('BASE', 10),
        make_rule('RANGE', 20, conditions={'weight_min_oz': Decimal('80'), 'weight_max_oz': Decimal('160')}),
    ]
    assert find_matching_rule(rules, shipment_ctx(weight_oz=weight)).id == expected


def test_weight_range_ignored_when_weight_unknown(make_rule):
    rule = make_rule('RANGE', 20, conditions={'weight_min_oz': Decimal('80'), 'weight_max_oz': Decimal('160')})
    assert rule_matches(rule, shipment_ctx(weight_oz=None))


def test_equal_specificity_first_in_snapshot_wins(make_rule):
    first = make_rule('FIRST', 10, ship_option_id='146')
    second = make_rule('SECOND', 20, fee_type='Standard')

    assert find_matching_rule([first, second], shipment_ctx()).id == 'FIRST'
    assert find_matching_rule([second, first], shipment_ctx()).id == 'SECOND'


def test_no_match_returns_none(make_rule):
    rules = [make_rule('OTHER-CLIENT', 10, client_id='999')]
    assert find_matching_rule(rules, shipment_ctx()) is None
    assert RuleMatcher(RuleSnapshot()).find_best_rule(shipment_ctx()) is None


def test_client_rule_only_matches_its_client(make_rule):
    rule = make_rule('C100', 10, client_id='100')
    assert rule_matches(rule, shipment_ctx(client_id='100'))
    assert not rule_matches(rule, shipment_ctx(client_id='200'))


@pytest.mark.parametrize("rule_category, context_category, matches", [
    ('standard', None, True),
    ('FBA', None, False),
    ('FBA', 'FBA', True),
    ('FBA', 'VAS', False),
    # compared exactly
    ('Standard', None, False),
    ('fba', 'FBA', False),
])
def test_order_category_defaults_to_standard(make_rule, rule_category, context_category, matches):
    rule = make_rule('R', 10, order_category=rule_category)
    assert rule_matches(rule, shipment_ctx(order_category=context_category)) is matches


def test_null_context_fields_never_match_specified_rule_fields(make_rule):
    rule = make_rule('R', 10, ship_option_id='146')
    assert not rule_matches(rule, shipment_ctx(ship_option_id=None))


def test_state_and_country_conditions(make_rule):
    rule = make_rule('WEST', 10, conditions={'states': ('CA', 'WA'), 'countries': ('US',)})

    assert rule_matches(rule, shipment_ctx(state='CA', country='US'))
    assert not rule_matches(rule, shipment_ctx(state='NY', country='US'))
    assert not rule_matches(rule, shipment_ctx(state=None, country='US'))
    assert not rule_matches(rule, shipment_ctx(state='CA', country='CA'))


def test_ship_option_list_condition(make_rule):
    rule = make_rule('LIST', 10, conditions={'ship_option_ids': ('146', '147')})

    assert rule_matches(rule, shipment_ctx(ship_option_id='147'))
    assert not rule_matches(rule, shipment_ctx(ship_option_id='3'))
    assert count_rule_conditions(rule) == 1


def test_billing_category_and_fee_type_must_agree(make_rule):
    rule = make_rule('PICK', 10, billing_category='shipment_fees', fee_type='Per Pick Fee')
    ctx = MatchContext(client_id='100', billing_category='shipment_fees', fee_type='Per Pick Fee')

    assert rule_matches(rule, ctx)
    assert not rule_matches(rule, MatchContext(client_id='100', billing_category='shipment_fees', fee_type='Kitting Fee'))
    assert not rule_matches(rule, MatchContext(client_id='100', billing_category='storage', fee_type='Per Pick Fee'))


@pytest.mark.parametrize("fields, expected", [
    ({}, 0),
    ({'billing_category': 'shipments'}, 0),
    ({'client_id': '100'}, 1),
    ({'client_id': '100', 'ship_option_id': '146'}, 2),
    ({'fee_type': 'Standard', 'order_category': 'FBA'}, 2),
    ({'conditions': {'weight_min_oz': Decimal('0')}}, 1),
    ({'conditions': {'states': ('CA',)}}, 0),
    ({'client_id': '1', 'ship_option_id': '2', 'fee_type': 'Standard', 'order_category': 'FBA',
      'conditions': {'weight_max_oz': Decimal('16'), 'ship_option_ids': ('2',)}}, 6),
])
def test_count_rule_conditions(make_rule, fields, expected):
    assert count_rule_conditions(make_rule('R', 10, **fields)) == expected


def test_match_reason_describes_conditions(make_rule):
    rules = [
        make_rule('DEFAULT', 10),
        make_rule('HEAVY', 20, ship_option_id='146',
                  conditions={'weight_min_oz': Decimal('80'), 'weight_max_oz': Decimal('160')}),
    ]
    matched = RuleMatcher(rules).find_matching_rules(shipment_ctx(weight_oz=100))

    assert matched[0].match_reason == "ship_option=146, weight 5-10lbs"
    assert matched[1].match_reason == "default"


@pytest.mark.parametrize("weight, label", [
    ('0', '<8oz'),
    ('7.99', '<8oz'),
    ('8', '8-16oz'),
    ('80', '5-10lbs'),
    ('159.9', '5-10lbs'),
    ('500', '20+lbs'),
])
def test_weight_bracket_labels(weight, label):
    assert get_weight_bracket(Decimal(weight)) == label
