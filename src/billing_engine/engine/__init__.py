"""Engine subpackage - rule resolution and charge calculation."""
from .pricing_engine import PricingEngine, resolve_and_price
from .rule_matcher import RuleMatcher
from .models import MarkupRule, PricedTransaction, RuleSnapshot, Transaction

__all__ = [
    'PricingEngine',
    'resolve_and_price',
    'RuleMatcher',
    'MarkupRule',
    'PricedTransaction',
    'RuleSnapshot',
    'Transaction',
]
