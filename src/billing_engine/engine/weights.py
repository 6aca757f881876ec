"""
Weight bracket definitions used to describe weight conditions.
"""
from decimal import Decimal
from typing import NamedTuple, Optional


class WeightBracket(NamedTuple):
    label: str
    min_oz: Decimal
    max_oz: Optional[Decimal]


WEIGHT_BRACKETS = (
    WeightBracket('<8oz', Decimal(0), Decimal(8)),
    WeightBracket('8-16oz', Decimal(8), Decimal(16)),
    WeightBracket('1-5lbs', Decimal(16), Decimal(80)),
    WeightBracket('5-10lbs', Decimal(80), Decimal(160)),
    WeightBracket('10-15lbs', Decimal(160), Decimal(240)),
    WeightBracket('15-20lbs', Decimal(240), Decimal(320)),
    WeightBracket('20+lbs', Decimal(320), None),
)


def get_weight_bracket(weight_oz) -> str:
    """Find the bracket label for a weight in ounces."""
    weight = Decimal(str(weight_oz))
    for bracket in WEIGHT_BRACKETS:
        if weight >= bracket.min_oz and (bracket.max_oz is None or weight < bracket.max_oz):
            return bracket.label
    return WEIGHT_BRACKETS[-1].label


def describe_weight_range(min_oz: Optional[Decimal], max_oz: Optional[Decimal]) -> Optional[str]:
    """Label a [min, max) range, using the bracket name when it is an exact bracket."""
    if min_oz is None and max_oz is None:
        return None
    for bracket in WEIGHT_BRACKETS:
        if bracket.min_oz == (min_oz or Decimal(0)) and bracket.max_oz == max_oz:
            return bracket.label
    low = f"{min_oz}oz" if min_oz is not None else "0oz"
    high = f"{max_oz}oz" if max_oz is not None else "∞"
    return f"[{low}, {high})"
