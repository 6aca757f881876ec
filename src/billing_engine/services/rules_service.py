"""
Rules Service - CRUD operations for markup rules.

Handles reading/writing markup_rules.csv, auto-compiling to JSON, and
keeping an append-only change history (markup_rule_history.jsonl).
Rules are never hard-deleted; deleting deactivates.
"""
import csv
import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..engine.context_builder import SHIPMENTS
from ..engine.models import MARKUP_FIXED
from ..engine.rule_matcher import count_rule_conditions
from ..errors import RuleValidationError
from ..rules.compile_rules import (
    CSV_COLUMNS,
    compile_rules as compile_rules_csv,
    format_validation_error,
    load_rules_csv,
    rule_to_csv_row,
)
from ..rules.schema import MarkupRuleSchema


logger = logging.getLogger(__name__)

SHIPMENT_RULE_FEE_TYPES = ('Standard', 'FBA', 'VAS')

# Fields compared when deciding if two rules target the same transactions
SCOPE_FIELDS = ('client_id', 'billing_category', 'fee_type', 'order_category', 'ship_option_id', 'conditions')


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    specificity: int = 0


@dataclass
class RuleChange:
    """One entry of the rule change history."""
    id: str
    markup_rule_id: str
    change_type: str
    previous_values: Optional[dict]
    new_values: Optional[dict]
    changed_by: Optional[str]
    change_reason: Optional[str]
    changed_at: str


class RulesService:
    """Service for managing markup rules."""

    def __init__(self, rules_csv_path: Path, compiled_rules_path: Path, history_path: Optional[Path] = None):
        self.rules_csv_path = Path(rules_csv_path)
        self.compiled_rules_path = Path(compiled_rules_path)
        self.history_path = Path(history_path) if history_path else None

    def list_rules(self, include_inactive: bool = True) -> list[MarkupRuleSchema]:
        """List all rules from CSV, in file order."""
        if not self.rules_csv_path.exists():
            return []

        rules, errors = load_rules_csv(self.rules_csv_path)
        for err in errors:
            logger.warning("Skipping invalid rule row: %s", err)
        if include_inactive:
            return rules
        return [r for r in rules if r.is_active]

    def _editable_rules(self) -> list[MarkupRuleSchema]:
        """
        All rules, for a read-modify-write of the CSV.

        Raises RuleValidationError while any row is invalid, since rewriting
        the file from the valid rows alone would drop the others.
        """
        if not self.rules_csv_path.exists():
            return []
        rules, errors = load_rules_csv(self.rules_csv_path)
        if errors:
            raise RuleValidationError(
                f"{self.rules_csv_path.name} has invalid rows; fix them before editing rules",
                errors,
            )
        return rules

    def get_rule(self, rule_id: str) -> Optional[MarkupRuleSchema]:
        """Get a single rule by ID."""
        for rule in self.list_rules():
            if rule.id == rule_id:
                return rule
        return None

    def _parse(self, data: dict) -> MarkupRuleSchema:
        try:
            return MarkupRuleSchema.model_validate(data)
        except ValidationError as e:
            errors = format_validation_error(e)
            raise RuleValidationError(f"Invalid rule: {'; '.join(errors)}", errors) from e

    def create_rule(
        self,
        data: dict,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
        auto_compile: bool = True
    ) -> MarkupRuleSchema:
        """Create a new rule. An id is generated when none is given."""
        data = dict(data)
        if not data.get('id'):
            data['id'] = self._generate_rule_id(data)
        rule = self._parse(data)

        if self.get_rule(rule.id):
            raise ValueError(f"Rule with ID '{rule.id}' already exists")

        rules = self._editable_rules()
        rules.append(rule)
        self._write_rules(rules)
        self.record_rule_change(rule.id, 'created', None, _dump(rule), changed_by, change_reason)

        if auto_compile:
            self.compile_rules()

        return rule

    def update_rule(
        self,
        rule_id: str,
        updates: dict,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
        auto_compile: bool = True
    ) -> MarkupRuleSchema:
        """Update an existing rule. Only the given fields change."""
        rules = self._editable_rules()
        for i, rule in enumerate(rules):
            if rule.id == rule_id:
                break
        else:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        previous = _dump(rule)
        merged = {**rule.model_dump(), **{k: v for k, v in updates.items() if k != 'id'}}
        updated = self._parse(merged)
        rules[i] = updated
        self._write_rules(rules)

        new = _dump(updated)
        changed = [k for k in sorted(set(previous) | set(new)) if previous.get(k) != new.get(k)]
        self.record_rule_change(
            rule_id, 'updated',
            {k: previous.get(k) for k in changed},
            {k: new.get(k) for k in changed},
            changed_by, change_reason
        )

        if auto_compile:
            self.compile_rules()

        return updated

    def deactivate_rule(
        self,
        rule_id: str,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
        auto_compile: bool = True
    ) -> MarkupRuleSchema:
        """Soft delete: mark the rule inactive, keeping it for audit."""
        rules = self._editable_rules()
        for i, rule in enumerate(rules):
            if rule.id == rule_id:
                break
        else:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        rules[i] = rule.model_copy(update={'is_active': False})
        self._write_rules(rules)
        self.record_rule_change(
            rule_id, 'deactivated', {'is_active': rule.is_active}, {'is_active': False},
            changed_by, change_reason
        )

        if auto_compile:
            self.compile_rules()

        return rules[i]

    def validate_rule(self, data: dict) -> ValidationResult:
        """Validate a rule before saving."""
        data = dict(data)
        if not data.get('id'):
            data['id'] = 'NEW'
        try:
            rule = MarkupRuleSchema.model_validate(data)
        except ValidationError as e:
            return ValidationResult(valid=False, errors=format_validation_error(e))

        result = ValidationResult(valid=True, specificity=count_rule_conditions(rule.to_rule()))

        if not rule.name:
            result.warnings.append("Rule has no name (the id will be shown instead)")

        today = date.today()
        if rule.effective_to and rule.effective_to < today:
            result.warnings.append("Rule has expired (effective_to is in the past)")
        if rule.effective_from and rule.effective_from > today:
            result.warnings.append(f"Rule is not effective until {rule.effective_from.isoformat()}")

        if rule.markup_type == MARKUP_FIXED and (
            rule.billing_category == SHIPMENTS or rule.fee_type in SHIPMENT_RULE_FEE_TYPES
        ):
            result.warnings.append("Fixed markups are not applied to shipment charges (they bill at 0%)")

        if rule.markup_value < 0:
            result.warnings.append("Negative markup value discounts the charge")

        result.warnings.extend(self._check_conflicts(rule))
        return result

    def _check_conflicts(self, rule: MarkupRuleSchema) -> list[str]:
        """Check for active rules that would compete with this one."""
        warnings = []
        specificity = count_rule_conditions(rule.to_rule())

        for existing in self.list_rules(include_inactive=False):
            if existing.id == rule.id:
                continue

            if all(getattr(existing, f) == getattr(rule, f) for f in SCOPE_FIELDS):
                warnings.append(
                    f"Same scope as rule '{existing.id}': only the one listed first will ever apply"
                )
            elif (
                count_rule_conditions(existing.to_rule()) == specificity
                and existing.client_id == rule.client_id
                and existing.billing_category == rule.billing_category
                and existing.fee_type == rule.fee_type
            ):
                warnings.append(
                    f"Equal specificity with rule '{existing.id}': if both match, list order decides"
                )

        return warnings

    def _generate_rule_id(self, data: dict) -> str:
        """Generate a unique rule ID."""
        client_id = data.get('client_id')
        base = f"CLIENT{client_id}" if client_id else "GLOBAL"

        hint = data.get('fee_type') or data.get('billing_category')
        if hint:
            base += "-" + re.sub(r'[^A-Za-z0-9]+', '', str(hint)).upper()[:10]

        existing_ids = {r.id for r in self.list_rules()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1

        return candidate

    def _write_rules(self, rules: list[MarkupRuleSchema]):
        """Write rules back to CSV."""
        self.rules_csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.rules_csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for rule in rules:
                writer.writerow(rule_to_csv_row(rule))

    def record_rule_change(
        self,
        rule_id: str,
        change_type: str,
        previous_values: Optional[dict],
        new_values: Optional[dict],
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None
    ) -> Optional[RuleChange]:
        """Append a change to the history file (no-op without a history path)."""
        if self.history_path is None:
            return None

        change = RuleChange(
            id=str(uuid.uuid4()),
            markup_rule_id=rule_id,
            change_type=change_type,
            previous_values=previous_values,
            new_values=new_values,
            changed_by=changed_by,
            change_reason=change_reason,
            changed_at=datetime.now().isoformat(),
        )
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.history_path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(asdict(change)) + "\n")
        return change

    def get_rule_history(self, rule_id: str) -> list[RuleChange]:
        """Change history for one rule, newest first."""
        if self.history_path is None or not self.history_path.exists():
            return []

        history = []
        with open(self.history_path, 'r', encoding='utf-8') as f:
            for line in f:
                if not line.strip():
                    continue
                entry = json.loads(line)
                if entry.get('markup_rule_id') == rule_id:
                    history.append(RuleChange(**entry))
        history.reverse()
        return history

    def compile_rules(self) -> tuple[bool, str]:
        """Compile the CSV to JSON for the rule store."""
        success, rules, errors = compile_rules_csv(self.rules_csv_path, self.compiled_rules_path, verbose=False)
        if success:
            output = f"Compiled {len(rules)} rules to {self.compiled_rules_path}"
            logger.info(output)
        else:
            output = "\n".join(errors)
            logger.error("Rule compilation failed: %s", output)
        return success, output

    def get_stats(self) -> dict:
        """Get statistics about rules."""
        rules = self.list_rules()
        today = date.today()

        active = [r for r in rules if r.is_active]
        expired = [r for r in rules if r.effective_to and r.effective_to < today]
        by_category = {}
        by_client = {}
        for r in rules:
            category = r.billing_category or 'all'
            by_category[category] = by_category.get(category, 0) + 1
            client = r.client_id or 'Global'
            by_client[client] = by_client.get(client, 0) + 1

        return {
            'total': len(rules),
            'active': len(active),
            'inactive': len(rules) - len(active),
            'expired': len(expired),
            'by_category': by_category,
            'by_client': by_client,
        }


def _dump(rule: MarkupRuleSchema) -> dict:
    return rule.model_dump(mode='json', exclude_none=True)
