"""
Rule schema - validated wire/file representation of markup rules.

Conditions are a closed structure: unknown keys are rejected when the rules
are loaded rather than silently ignored at match time.
"""
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..engine.context_builder import BILLING_CATEGORIES
from ..engine.models import MarkupConditions, MarkupRule


def _blank_to_none(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    # ids arrive as ints from some exports
    return str(value)


class MarkupConditionsSchema(BaseModel):
    """Optional match conditions. Weight range is [min, max)."""
    model_config = ConfigDict(extra="forbid")

    weight_min_oz: Optional[Decimal] = Field(default=None, ge=0)
    weight_max_oz: Optional[Decimal] = Field(default=None, ge=0)
    states: list[str] = Field(default_factory=list)
    countries: list[str] = Field(default_factory=list)
    ship_option_ids: list[str] = Field(default_factory=list)

    @field_validator('states', 'countries', 'ship_option_ids', mode='before')
    @classmethod
    def _coerce_list(cls, value):
        if value is None:
            return []
        return [str(v).strip() for v in value if str(v).strip()]

    @model_validator(mode='after')
    def _check_weight_range(self):
        if (
            self.weight_min_oz is not None
            and self.weight_max_oz is not None
            and self.weight_min_oz >= self.weight_max_oz
        ):
            raise ValueError("weight_min_oz must be less than weight_max_oz")
        return self

    def to_conditions(self) -> MarkupConditions:
        return MarkupConditions(
            weight_min_oz=self.weight_min_oz,
            weight_max_oz=self.weight_max_oz,
            states=tuple(self.states),
            countries=tuple(self.countries),
            ship_option_ids=tuple(self.ship_option_ids),
        )

    @classmethod
    def from_conditions(cls, conditions: MarkupConditions) -> Optional['MarkupConditionsSchema']:
        if conditions.is_empty:
            return None
        return cls(
            weight_min_oz=conditions.weight_min_oz,
            weight_max_oz=conditions.weight_max_oz,
            states=list(conditions.states),
            countries=list(conditions.countries),
            ship_option_ids=list(conditions.ship_option_ids),
        )


class MarkupRuleSchema(BaseModel):
    """A markup rule as stored in compiled JSON or posted to the API."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    client_id: Optional[str] = None
    billing_category: Optional[str] = None
    fee_type: Optional[str] = None
    order_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    conditions: Optional[MarkupConditionsSchema] = None
    markup_type: Literal["percentage", "fixed"] = "percentage"
    markup_value: Decimal
    priority: int = 0
    is_active: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    description: Optional[str] = None

    @field_validator(
        'client_id', 'billing_category', 'fee_type', 'order_category', 'ship_option_id', 'description',
        mode='before'
    )
    @classmethod
    def _optional_text(cls, value):
        return _blank_to_none(value)

    @field_validator('billing_category')
    @classmethod
    def _known_category(cls, value):
        if value is not None and value not in BILLING_CATEGORIES:
            raise ValueError(f"unknown billing_category '{value}', must be one of: {', '.join(BILLING_CATEGORIES)}")
        return value

    @model_validator(mode='after')
    def _check_dates(self):
        if self.effective_from and self.effective_to and self.effective_from > self.effective_to:
            raise ValueError("effective_from must be on or before effective_to")
        return self

    def to_rule(self) -> MarkupRule:
        return MarkupRule(
            id=self.id,
            name=self.name or self.id,
            client_id=self.client_id,
            billing_category=self.billing_category,
            fee_type=self.fee_type,
            order_category=self.order_category,
            ship_option_id=self.ship_option_id,
            conditions=self.conditions.to_conditions() if self.conditions else MarkupConditions(),
            markup_type=self.markup_type,
            markup_value=self.markup_value,
            priority=self.priority,
            is_active=self.is_active,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            description=self.description,
        )

    @classmethod
    def from_rule(cls, rule: MarkupRule) -> 'MarkupRuleSchema':
        return cls(
            id=rule.id,
            name=rule.name,
            client_id=rule.client_id,
            billing_category=rule.billing_category,
            fee_type=rule.fee_type,
            order_category=rule.order_category,
            ship_option_id=rule.ship_option_id,
            conditions=MarkupConditionsSchema.from_conditions(rule.conditions),
            markup_type=rule.markup_type,
            markup_value=rule.markup_value,
            priority=rule.priority,
            is_active=rule.is_active,
            effective_from=rule.effective_from,
            effective_to=rule.effective_to,
            description=rule.description,
        )
