"""
Rule Store - Loads the active markup rules as an immutable snapshot.

A failure to load rules is fatal: pricing with a partial rule set would bill
clients at the wrong markup, so every problem surfaces as RuleStoreError
before any transaction is touched.
"""
import json
import logging
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ..engine.models import MarkupRule, RuleSnapshot
from ..errors import RuleStoreError
from .compile_rules import format_validation_error, load_rules_csv
from .schema import MarkupRuleSchema


logger = logging.getLogger(__name__)


def parse_rules(data) -> list[MarkupRule]:
    """
    Parse rules from a compiled JSON document or a bare list of rule dicts.

    Raises RuleStoreError listing every invalid rule.
    """
    if isinstance(data, dict):
        data = data.get('rules')
    if not isinstance(data, list):
        raise RuleStoreError("Rule document must be a list of rules or contain a 'rules' list")

    rules = []
    errors = []
    for index, item in enumerate(data):
        try:
            rules.append(MarkupRuleSchema.model_validate(item).to_rule())
        except ValidationError as e:
            rule_id = item.get('id', f'#{index}') if isinstance(item, dict) else f'#{index}'
            errors.extend(f"{rule_id}: {msg}" for msg in format_validation_error(e))

    if errors:
        raise RuleStoreError(f"{len(errors)} invalid rule field(s): " + "; ".join(errors))
    return rules


def build_snapshot(
    rules: Iterable[MarkupRule],
    as_of: Optional[date] = None,
    client_id: Optional[str] = None
) -> RuleSnapshot:
    """
    Keep the rules in effect on as_of (today by default).

    Rules are ordered by priority, highest first; the sort is stable, so
    equal priorities keep their stored order.
    """
    as_of = as_of or date.today()
    active = [r for r in rules if r.is_effective(as_of)]
    active.sort(key=lambda r: r.priority, reverse=True)
    snapshot = RuleSnapshot(rules=tuple(active), as_of=as_of)
    return snapshot.for_client(client_id) if client_id is not None else snapshot


class RuleStore:
    """
    File-backed rule store.

    Reads compiled_rules.json, or the operator CSV directly when given a
    .csv path.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_rules(self) -> list[MarkupRule]:
        """Load every rule (active or not) in stored order."""
        if not self.path.exists():
            raise RuleStoreError(f"Rules file not found: {self.path}")

        if self.path.suffix.lower() == '.csv':
            try:
                schemas, errors = load_rules_csv(self.path)
            except (OSError, UnicodeDecodeError) as e:
                raise RuleStoreError(f"Could not read {self.path}: {e}") from e
            if errors:
                raise RuleStoreError(f"{len(errors)} invalid rule(s) in {self.path}: " + "; ".join(errors))
            return [s.to_rule() for s in schemas]

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RuleStoreError(f"Could not read {self.path}: {e}") from e
        return parse_rules(data)

    def snapshot(self, as_of: Optional[date] = None, client_id: Optional[str] = None) -> RuleSnapshot:
        """Snapshot of the rules active on as_of, optionally for one client."""
        snapshot = build_snapshot(self.load_rules(), as_of=as_of, client_id=client_id)
        logger.info("Loaded %d active markup rules from %s (as of %s)", len(snapshot), self.path, snapshot.as_of)
        return snapshot
