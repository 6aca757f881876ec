"""
Rule Compiler - Validates and compiles markup rules from CSV to JSON.

Reads the operator-edited markup_rules.csv, validates every row against the
rule schema, and outputs compiled_rules.json for the Rule Store.
"""
import csv
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .schema import MarkupRuleSchema


CSV_COLUMNS = [
    'id', 'name', 'client_id', 'billing_category', 'fee_type', 'order_category',
    'ship_option_id', 'weight_min_oz', 'weight_max_oz', 'states', 'countries',
    'ship_option_ids', 'markup_type', 'markup_value', 'priority', 'is_active',
    'effective_from', 'effective_to', 'description'
]

CONDITION_COLUMNS = ('weight_min_oz', 'weight_max_oz', 'states', 'countries', 'ship_option_ids')

LIST_SEPARATOR = '|'


def parse_bool(value: str) -> bool:
    """Parse a boolean from CSV string."""
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_str(value: Optional[str]) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if value is None or str(value).strip() == '':
        return None
    return str(value).strip()


def parse_list(value: Optional[str]) -> list[str]:
    """Parse a pipe-separated list cell ("CA|NY")."""
    text = parse_optional_str(value)
    if text is None:
        return []
    return [part.strip() for part in text.split(LIST_SEPARATOR) if part.strip()]


def format_validation_error(error: ValidationError) -> list[str]:
    """Flatten a pydantic error into one message per field."""
    messages = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get('loc', ())) or "rule"
        messages.append(f"{location}: {err.get('msg')}")
    return messages


def rule_from_csv_row(row: dict, line_num: int) -> tuple[Optional[MarkupRuleSchema], list[str]]:
    """
    Validate and parse a rule from a CSV row.

    Returns (rule, errors) - rule is None if validation failed.
    """
    rule_id = parse_optional_str(row.get('id'))
    if not rule_id:
        return None, [f"Line {line_num}: id is required"]

    conditions = {}
    for column in ('weight_min_oz', 'weight_max_oz'):
        value = parse_optional_str(row.get(column))
        if value is not None:
            conditions[column] = value
    for column in ('states', 'countries', 'ship_option_ids'):
        values = parse_list(row.get(column))
        if values:
            conditions[column] = values

    markup_value = parse_optional_str(row.get('markup_value'))
    if markup_value is None:
        return None, [f"Line {line_num}: markup_value is required"]

    data = {
        'id': rule_id,
        'name': parse_optional_str(row.get('name')) or rule_id,
        'client_id': row.get('client_id'),
        'billing_category': row.get('billing_category'),
        'fee_type': row.get('fee_type'),
        'order_category': row.get('order_category'),
        'ship_option_id': row.get('ship_option_id'),
        'conditions': conditions or None,
        'markup_type': parse_optional_str(row.get('markup_type')) or 'percentage',
        'markup_value': markup_value,
        'priority': parse_optional_str(row.get('priority')) or 0,
        'is_active': parse_bool(row.get('is_active', 'true') or 'true'),
        'effective_from': parse_optional_str(row.get('effective_from')),
        'effective_to': parse_optional_str(row.get('effective_to')),
        'description': row.get('description'),
    }

    try:
        return MarkupRuleSchema(**data), []
    except ValidationError as e:
        return None, [f"Line {line_num} ({rule_id}): {msg}" for msg in format_validation_error(e)]


def rule_to_csv_row(rule: MarkupRuleSchema) -> dict:
    """Convert to CSV row format."""
    conditions = rule.conditions
    return {
        'id': rule.id,
        'name': rule.name,
        'client_id': rule.client_id or '',
        'billing_category': rule.billing_category or '',
        'fee_type': rule.fee_type or '',
        'order_category': rule.order_category or '',
        'ship_option_id': rule.ship_option_id or '',
        'weight_min_oz': str(conditions.weight_min_oz) if conditions and conditions.weight_min_oz is not None else '',
        'weight_max_oz': str(conditions.weight_max_oz) if conditions and conditions.weight_max_oz is not None else '',
        'states': LIST_SEPARATOR.join(conditions.states) if conditions else '',
        'countries': LIST_SEPARATOR.join(conditions.countries) if conditions else '',
        'ship_option_ids': LIST_SEPARATOR.join(conditions.ship_option_ids) if conditions else '',
        'markup_type': rule.markup_type,
        'markup_value': str(rule.markup_value),
        'priority': str(rule.priority),
        'is_active': 'true' if rule.is_active else 'false',
        'effective_from': rule.effective_from.isoformat() if rule.effective_from else '',
        'effective_to': rule.effective_to.isoformat() if rule.effective_to else '',
        'description': rule.description or '',
    }


def load_rules_csv(rules_csv: Path) -> tuple[list[MarkupRuleSchema], list[str]]:
    """Read and validate every rule in a CSV file, in file order."""
    rules = []
    all_errors = []
    with open(rules_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for line_num, row in enumerate(reader, start=2):  # +2 for 1-indexed header row
            if not any((v or '').strip() for v in row.values() if isinstance(v, str)):
                continue
            rule, errors = rule_from_csv_row(row, line_num)
            if errors:
                all_errors.extend(errors)
            elif rule:
                rules.append(rule)

    seen = set()
    for rule in rules:
        if rule.id in seen:
            all_errors.append(f"Duplicate rule id '{rule.id}'")
        seen.add(rule.id)

    return rules, all_errors


def write_compiled_rules(rules: list[MarkupRuleSchema], output_json: Path, source: Optional[Path] = None) -> dict:
    """Write the compiled JSON document and return it."""
    output_data = {
        "compiled_at": datetime.now().isoformat(),
        "source_file": str(source) if source else None,
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r.is_active),
        "rules": [rule.model_dump(mode='json', exclude_none=True) for rule in rules],
    }

    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w', encoding='utf-8') as f:
        json.dump(output_data, f, indent=2)
    return output_data


def compile_rules(
    rules_csv: Path,
    output_json: Path,
    verbose: bool = True
) -> tuple[bool, list[MarkupRuleSchema], list[str]]:
    """
    Compile rules from CSV to JSON.

    File order is preserved: it is the tie-break order for equally
    specific rules.

    Returns (success, rules, errors).
    """
    if not rules_csv.exists():
        return False, [], [f"Rules file not found: {rules_csv}"]

    rules, all_errors = load_rules_csv(rules_csv)

    if all_errors:
        if verbose:
            print("Validation errors:")
            for err in all_errors:
                print(f"  ❌ {err}")
        return False, rules, all_errors

    output_data = write_compiled_rules(rules, output_json, rules_csv)

    if verbose:
        print(f"✅ Compiled {len(rules)} rules ({output_data['active_rules']} active)")
        print(f"   Output: {output_json}")

    return True, rules, []


def main():
    """CLI entry point."""
    from ..config.settings import get_settings

    settings = get_settings()

    print("Compiling markup rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)

    if not success:
        print(f"\n❌ Compilation failed with {len(errors)} errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
