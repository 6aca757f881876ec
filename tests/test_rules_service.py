import json
from datetime import date, timedelta

import pytest

from billing_engine.errors import RuleValidationError
from billing_engine.services.rules_service import RulesService


@pytest.fixture
def service(tmp_path):
    return RulesService(
        rules_csv_path=tmp_path / 'markup_rules.csv',
        compiled_rules_path=tmp_path / 'compiled_rules.json',
        history_path=tmp_path / 'markup_rule_history.jsonl',
    )


def test_create_generates_id_and_compiles(service):
    rule = service.create_rule({'name': 'Client shipping', 'client_id': '100', 'fee_type': 'Per Pick Fee',
                                'markup_value': '12'})

    assert rule.id == 'CLIENT100-PERPICKFEE'
    assert service.get_rule(rule.id).markup_value == rule.markup_value
    compiled = json.loads(service.compiled_rules_path.read_text())
    assert compiled['rules'][0]['id'] == rule.id


def test_generated_ids_are_unique(service):
    first = service.create_rule({'markup_value': '10'}, auto_compile=False)
    second = service.create_rule({'markup_value': '12'}, auto_compile=False)

    assert first.id == 'GLOBAL'
    assert second.id == 'GLOBAL-1'


def test_create_rejects_duplicate_id(service):
    service.create_rule({'id': 'A', 'markup_value': '10'}, auto_compile=False)

    with pytest.raises(ValueError, match="already exists"):
        service.create_rule({'id': 'A', 'markup_value': '20'}, auto_compile=False)


def test_create_rejects_invalid_rule(service):
    with pytest.raises(RuleValidationError) as exc_info:
        service.create_rule({'id': 'A', 'markup_value': '10', 'markup_type': 'tiered'}, auto_compile=False)

    assert any('markup_type' in e for e in exc_info.value.errors)
    assert service.list_rules() == []


def test_update_changes_only_given_fields_and_records_history(service):
    service.create_rule({'id': 'A', 'name': 'Pick', 'markup_value': '10', 'priority': 2}, auto_compile=False)

    updated = service.update_rule('A', {'markup_value': '15'}, changed_by='ops@example.com',
                                  change_reason='rate review', auto_compile=False)

    assert str(updated.markup_value) == '15'
    assert updated.priority == 2
    assert updated.name == 'Pick'

    history = service.get_rule_history('A')
    assert [h.change_type for h in history] == ['updated', 'created']
    assert history[0].previous_values == {'markup_value': '10'}
    assert history[0].new_values == {'markup_value': '15'}
    assert history[0].changed_by == 'ops@example.com'
    assert history[0].change_reason == 'rate review'


def test_update_unknown_rule(service):
    with pytest.raises(ValueError, match="not found"):
        service.update_rule('NOPE', {'priority': 1}, auto_compile=False)


def test_update_revalidates(service):
    service.create_rule({'id': 'A', 'markup_value': '10'}, auto_compile=False)

    with pytest.raises(RuleValidationError):
        service.update_rule('A', {'billing_category': 'freight'}, auto_compile=False)
    assert service.get_rule('A').billing_category is None


def test_deactivate_is_a_soft_delete(service):
    service.create_rule({'id': 'A', 'markup_value': '10'}, auto_compile=False)

    service.deactivate_rule('A', changed_by='ops', auto_compile=False)

    assert service.get_rule('A').is_active is False
    assert service.list_rules(include_inactive=False) == []
    assert service.get_rule_history('A')[0].change_type == 'deactivated'


def test_validate_reports_schema_errors(service):
    result = service.validate_rule({'markup_value': 'lots'})

    assert not result.valid
    assert any('markup_value' in e for e in result.errors)


def test_validate_warns_on_expired_and_fixed_shipment_rules(service):
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    result = service.validate_rule({
        'name': 'Old flat shipping',
        'billing_category': 'shipments',
        'markup_type': 'fixed',
        'markup_value': '1.00',
        'effective_to': yesterday,
    })

    assert result.valid
    assert any('expired' in w for w in result.warnings)
    assert any('Fixed markups' in w for w in result.warnings)


def test_validate_warns_on_conflicts(service):
    service.create_rule({'id': 'A', 'billing_category': 'shipments', 'ship_option_id': '146',
                         'markup_value': '18'}, auto_compile=False)
    service.create_rule({'id': 'B', 'billing_category': 'shipments', 'fee_type': 'Standard',
                         'markup_value': '20'}, auto_compile=False)

    same_scope = service.validate_rule({'name': 'Dup', 'billing_category': 'shipments',
                                        'ship_option_id': '146', 'markup_value': '25'})
    assert any("Same scope as rule 'A'" in w for w in same_scope.warnings)
    assert same_scope.specificity == 1

    tie = service.validate_rule({'name': 'Tie', 'billing_category': 'shipments',
                                 'ship_option_id': '147', 'markup_value': '25'})
    assert any("Equal specificity with rule 'A'" in w for w in tie.warnings)
    assert not any("'B'" in w for w in tie.warnings)


def test_stats(service):
    service.create_rule({'id': 'A', 'client_id': '100', 'billing_category': 'storage', 'markup_value': '10'},
                        auto_compile=False)
    service.create_rule({'id': 'B', 'markup_value': '10', 'is_active': False}, auto_compile=False)

    stats = service.get_stats()

    assert stats['total'] == 2
    assert stats['active'] == 1
    assert stats['inactive'] == 1
    assert stats['by_category'] == {'storage': 1, 'all': 1}
    assert stats['by_client'] == {'100': 1, 'Global': 1}


def test_compile_reports_failure(service):
    service.rules_csv_path.write_text("id,markup_value\nA,abc\n", encoding='utf-8')

    success, output = service.compile_rules()

    assert not success
    assert 'markup_value' in output


def test_edits_refused_while_csv_has_invalid_rows(service, rules_csv):
    rules_csv([
        {'id': 'GOOD', 'markup_value': '10'},
        {'id': 'TYPO', 'markup_value': '1O'},
    ])
    before = service.rules_csv_path.read_text(encoding='utf-8')

    with pytest.raises(RuleValidationError) as exc_info:
        service.create_rule({'id': 'NEW', 'markup_value': '5'}, auto_compile=False)
    assert any('markup_value' in e for e in exc_info.value.errors)

    with pytest.raises(RuleValidationError):
        service.update_rule('GOOD', {'priority': 3}, auto_compile=False)
    with pytest.raises(RuleValidationError):
        service.deactivate_rule('GOOD', auto_compile=False)

    assert service.rules_csv_path.read_text(encoding='utf-8') == before
    assert 'TYPO' in before
    assert [r.id for r in service.list_rules()] == ['GOOD']
