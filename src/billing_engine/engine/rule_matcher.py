"""
Rule Matcher - Picks the single most specific markup rule for a context.

Rule selection is "most conditions wins":
- Each rule is standalone (no inheritance or stacking)
- A rule matches only if every field it specifies agrees with the context
- Among matches, the rule constraining the most dimensions wins
- Equally specific rules keep snapshot order, so the first one wins

Example:
- "Standard" (0 conditions) = 14%
- "Standard + Ship 146" (1 condition) = 18%
- "Standard + Ship 146 + 5-10lbs" (2 conditions) = 25%

A shipment with Ship 146 at 7lbs gets 25%.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .models import MarkupRule, MatchContext, RuleSnapshot
from .weights import describe_weight_range


STANDARD_ORDER_CATEGORY = 'standard'


@dataclass(frozen=True)
class MatchedRule:
    """A rule that matched with context."""
    rule: MarkupRule
    specificity: int
    match_reason: str

    @property
    def rule_id(self) -> str:
        return self.rule.id


def _order_category_or_standard(value: Optional[str]) -> str:
    return value or STANDARD_ORDER_CATEGORY


def _match_reasons(rule: MarkupRule, context: MatchContext) -> Optional[list[str]]:
    """
    Check every specified field of the rule against the context.

    Returns the list of satisfied conditions, or None on the first mismatch.
    """
    reasons = []

    # Client: global (None) or the context's client
    if rule.client_id is not None:
        if rule.client_id != context.client_id:
            return None
        reasons.append(f"client={rule.client_id}")

    if rule.billing_category is not None:
        if rule.billing_category != context.billing_category:
            return None
        reasons.append(f"category={rule.billing_category}")

    if rule.fee_type is not None:
        if rule.fee_type != context.fee_type:
            return None
        reasons.append(f"fee_type={rule.fee_type}")

    # Missing order category in the context means standard
    if rule.order_category is not None:
        if rule.order_category != _order_category_or_standard(context.order_category):
            return None
        reasons.append(f"order_category={rule.order_category}")

    if rule.ship_option_id is not None:
        if rule.ship_option_id != context.ship_option_id:
            return None
        reasons.append(f"ship_option={rule.ship_option_id}")

    conditions = rule.conditions

    # Weight range [min, max), only checked when the weight is known
    if context.weight_oz is not None and conditions.has_weight_range:
        if conditions.weight_min_oz is not None and context.weight_oz < conditions.weight_min_oz:
            return None
        if conditions.weight_max_oz is not None and context.weight_oz >= conditions.weight_max_oz:
            return None
        reasons.append(f"weight {describe_weight_range(conditions.weight_min_oz, conditions.weight_max_oz)}")

    if conditions.states:
        if not context.state or context.state not in conditions.states:
            return None
        reasons.append(f"state={context.state}")

    if conditions.countries:
        if not context.country or context.country not in conditions.countries:
            return None
        reasons.append(f"country={context.country}")

    # List form of the ship option condition
    if conditions.ship_option_ids:
        if not context.ship_option_id or context.ship_option_id not in conditions.ship_option_ids:
            return None
        reasons.append(f"ship_option in {','.join(conditions.ship_option_ids)}")

    return reasons


def rule_matches(rule: MarkupRule, context: MatchContext) -> bool:
    """Check if a rule matches the transaction context."""
    return _match_reasons(rule, context) is not None


def count_rule_conditions(rule: MarkupRule) -> int:
    """
    Count how many dimensions a rule constrains. More = more specific.

    Counted: client-specific, ship_option_id, fee_type, order_category,
    weight range present, ship_option_ids list non-empty.
    """
    count = 0
    if rule.client_id is not None:
        count += 1
    if rule.ship_option_id is not None:
        count += 1
    if rule.fee_type is not None:
        count += 1
    if rule.order_category is not None:
        count += 1
    if rule.conditions.has_weight_range:
        count += 1
    if rule.conditions.ship_option_ids:
        count += 1
    return count


class RuleMatcher:
    """
    Matches markup rules against transaction contexts.

    Holds one immutable rule snapshot for the duration of a run.
    """

    def __init__(self, rules: Union[RuleSnapshot, Iterable[MarkupRule]]):
        if isinstance(rules, RuleSnapshot):
            self.snapshot = rules
        else:
            self.snapshot = RuleSnapshot(rules=tuple(rules))

    @property
    def rules(self) -> tuple[MarkupRule, ...]:
        return self.snapshot.rules

    def find_matching_rules(self, context: MatchContext) -> list[MatchedRule]:
        """
        Find all rules that match the given context.

        Returns rules sorted by specificity, most specific first. The sort is
        stable, so equally specific rules keep snapshot order.
        """
        matched = []
        for rule in self.snapshot.rules:
            reasons = _match_reasons(rule, context)
            if reasons is None:
                continue
            matched.append(MatchedRule(
                rule=rule,
                specificity=count_rule_conditions(rule),
                match_reason=", ".join(reasons) if reasons else "default",
            ))

        matched.sort(key=lambda m: m.specificity, reverse=True)
        return matched

    def find_best_rule(self, context: MatchContext) -> Optional[MatchedRule]:
        """Return the single winning rule, or None if nothing matches."""
        matched = self.find_matching_rules(context)
        return matched[0] if matched else None


def find_matching_rule(
    rules: Union[RuleSnapshot, Iterable[MarkupRule]],
    context: MatchContext
) -> Optional[MarkupRule]:
    """Find the best matching rule for a context, or None."""
    best = RuleMatcher(rules).find_best_rule(context)
    return best.rule if best else None
