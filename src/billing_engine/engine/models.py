"""
Data models for the billing engine.

Uses dataclasses for structured, type-safe data representation. Rules and
contexts are frozen: they are read-only for the duration of a pricing run.
"""
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Optional


SHIPMENT_FEE_TYPE = "Shipping"
SHIPMENT_REFERENCE_TYPE = "Shipment"

MARKUP_PERCENTAGE = "percentage"
MARKUP_FIXED = "fixed"
MARKUP_TYPES = (MARKUP_PERCENTAGE, MARKUP_FIXED)

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce incoming values to Decimal safely."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_optional_decimal(value) -> Optional[Decimal]:
    """Coerce to Decimal, keeping None (and blank strings) as None."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == '':
        return None
    return to_decimal(value)


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass(frozen=True)
class MarkupConditions:
    """Optional match conditions of a rule beyond its scalar fields."""
    weight_min_oz: Optional[Decimal] = None
    weight_max_oz: Optional[Decimal] = None
    states: tuple[str, ...] = ()
    countries: tuple[str, ...] = ()
    ship_option_ids: tuple[str, ...] = ()

    @property
    def has_weight_range(self) -> bool:
        return self.weight_min_oz is not None or self.weight_max_oz is not None

    @property
    def is_empty(self) -> bool:
        return not (self.has_weight_range or self.states or self.countries or self.ship_option_ids)


@dataclass(frozen=True)
class MarkupRule:
    """A configured pricing policy with zero or more matching conditions."""
    id: str
    name: str = ""
    client_id: Optional[str] = None
    billing_category: Optional[str] = None
    fee_type: Optional[str] = None
    order_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    conditions: MarkupConditions = field(default_factory=MarkupConditions)
    markup_type: str = MARKUP_PERCENTAGE
    markup_value: Decimal = ZERO
    priority: int = 0
    is_active: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    description: Optional[str] = None

    def is_effective(self, as_of: date) -> bool:
        """Active and inside the inclusive effective date range."""
        if not self.is_active:
            return False
        if self.effective_from is not None and as_of < self.effective_from:
            return False
        if self.effective_to is not None and as_of > self.effective_to:
            return False
        return True

    def applies_to_client(self, client_id: Optional[str]) -> bool:
        return self.client_id is None or self.client_id == client_id


@dataclass(frozen=True)
class TaxEntry:
    """A raw tax line from the source transaction."""
    tax_type: str
    tax_rate: Decimal


@dataclass(frozen=True)
class TaxCharge:
    """A tax line recomputed against the billed amount."""
    tax_type: str
    tax_rate: Decimal
    tax_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "tax_type": self.tax_type,
            "tax_rate": float(self.tax_rate),
            "tax_amount": float(self.tax_amount),
        }


@dataclass
class Transaction:
    """
    A raw cost transaction plus whatever pricing was previously written to it.

    Only the cost fields are pricing inputs; the derived fields are carried so
    that a priced row can be fed back through the engine unchanged.
    """
    id: str
    fee_type: str
    cost: Optional[Decimal] = None
    client_id: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    base_cost: Optional[Decimal] = None
    surcharge: Optional[Decimal] = None
    insurance_cost: Optional[Decimal] = None
    taxes: list[TaxEntry] = field(default_factory=list)
    charge_date: Optional[date] = None
    invoiced_status: bool = False

    # Derived fields
    markup_applied: Optional[Decimal] = None
    billed_amount: Optional[Decimal] = None
    markup_percentage: Optional[Decimal] = None
    markup_rule_id: Optional[str] = None
    base_charge: Optional[Decimal] = None
    total_charge: Optional[Decimal] = None
    insurance_charge: Optional[Decimal] = None
    taxes_charge: Optional[list[TaxCharge]] = None
    markup_is_preview: Optional[bool] = None

    @property
    def is_shipment(self) -> bool:
        return self.fee_type == SHIPMENT_FEE_TYPE

    @property
    def references_shipment(self) -> bool:
        return self.reference_type == SHIPMENT_REFERENCE_TYPE and bool(self.reference_id)


@dataclass(frozen=True)
class OrderContext:
    """Order projection supplied by the order provider."""
    order_type: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class ShipmentContext:
    """Shipment projection, merged with its order, keyed by shipment id."""
    ship_option_id: Optional[str] = None
    weight_oz: Optional[Decimal] = None
    destination_country: Optional[str] = None
    order_type: Optional[str] = None
    state: Optional[str] = None

    def with_order(self, order: Optional[OrderContext]) -> 'ShipmentContext':
        if order is None:
            return self
        return replace(self, order_type=order.order_type, state=order.state)


@dataclass(frozen=True)
class MatchContext:
    """Flat attributes a markup rule can match on."""
    client_id: Optional[str]
    billing_category: str
    fee_type: str
    order_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    weight_oz: Optional[Decimal] = None
    state: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class PricedShipment:
    """An already priced shipment that a credit can mirror."""
    reference_id: str
    base_cost: Decimal
    markup_percentage: Decimal
    markup_rule_id: Optional[str] = None
    client_id: Optional[str] = None


PRICED = "priced"
SKIPPED = "skipped"
REJECTED = "rejected"


@dataclass
class PricedTransaction:
    """Result of pricing a single transaction."""
    transaction_id: str
    status: str = PRICED
    markup_applied: Optional[Decimal] = None
    billed_amount: Optional[Decimal] = None
    markup_percentage: Optional[Decimal] = None
    markup_rule_id: Optional[str] = None
    base_charge: Optional[Decimal] = None
    total_charge: Optional[Decimal] = None
    insurance_charge: Optional[Decimal] = None
    taxes_charge: Optional[list[TaxCharge]] = None
    markup_is_preview: bool = True
    reason: Optional[str] = None
    trace: list[TraceStep] = field(default_factory=list)

    @property
    def is_priced(self) -> bool:
        return self.status == PRICED

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this transaction."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)

    def to_update(self) -> dict:
        """Fields persisted back onto the transaction record."""
        update = {
            "markup_applied": self.markup_applied,
            "billed_amount": self.billed_amount,
            "markup_percentage": self.markup_percentage,
            "markup_rule_id": self.markup_rule_id,
            "markup_is_preview": self.markup_is_preview,
        }
        # Breakdown fields only exist for shipments
        if self.base_charge is not None:
            update["base_charge"] = self.base_charge
            update["total_charge"] = self.total_charge
            update["insurance_charge"] = self.insurance_charge
        if self.taxes_charge is not None:
            update["taxes_charge"] = self.taxes_charge
        return update

    def apply_to(self, transaction: Transaction) -> Transaction:
        """Return a copy of the transaction carrying this pricing."""
        return replace(transaction, **self.to_update())


@dataclass(frozen=True)
class RuleSnapshot:
    """
    Immutable rule set for one resolution run.

    Rule order is significant: it breaks ties between equally specific rules.
    """
    rules: tuple[MarkupRule, ...] = ()
    as_of: Optional[date] = None

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def get(self, rule_id: str) -> Optional[MarkupRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def for_client(self, client_id: Optional[str]) -> 'RuleSnapshot':
        """Global rules plus the given client's own rules, order kept."""
        return RuleSnapshot(
            rules=tuple(r for r in self.rules if r.applies_to_client(client_id)),
            as_of=self.as_of,
        )
