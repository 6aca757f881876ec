"""
Pricing Engine - Resolves a markup rule per transaction and prices it.

Resolution order for each transaction:
1. Invoiced transactions are never repriced (filtered out)
2. Unattributed transactions and shipments without base_cost are skipped
3. Build the match context from the transaction and its shipment
4. Pick the most specific matching rule (or none = 0% markup)
5. Apply the category formula (shipment / flat fee / credit)
6. Recompute tax charges from the billed amount

Credits are priced after everything else so that they can mirror shipments
priced in the same run.
"""
import logging
from typing import Iterable, Mapping, Optional, Union

from ..errors import InvalidChargeError
from .charges import (
    ChargeBreakdown,
    calculate_credit_charges,
    calculate_markup,
    calculate_shipment_charges,
    credit_matches_shipment,
)
from .context_builder import (
    CREDITS,
    billing_category_for,
    build_match_context,
    lookup_shipment_context,
)
from .models import (
    REJECTED,
    SKIPPED,
    MarkupRule,
    PricedShipment,
    PricedTransaction,
    RuleSnapshot,
    ShipmentContext,
    Transaction,
)
from .rule_matcher import RuleMatcher
from .taxes import recalculate_taxes


logger = logging.getLogger(__name__)


def _fmt(value) -> str:
    return f"${value:.2f}"


class PricingEngine:
    """
    Prices transactions against one immutable rule snapshot.

    The engine holds no mutable state: every call depends only on its
    arguments plus the snapshot it was built with.
    """

    def __init__(self, rules: Union[RuleSnapshot, Iterable[MarkupRule]], preview: bool = True):
        self.rule_matcher = RuleMatcher(rules)
        self.preview = preview

    @property
    def snapshot(self) -> RuleSnapshot:
        return self.rule_matcher.snapshot

    def price_transaction(
        self,
        tx: Transaction,
        shipment_contexts: Mapping[str, ShipmentContext],
        priced_shipments: Optional[Mapping[str, PricedShipment]] = None,
    ) -> PricedTransaction:
        """Price a single (non-invoiced) transaction."""
        priced = PricedTransaction(transaction_id=tx.id, markup_is_preview=self.preview)

        if not tx.client_id:
            return self._skip(priced, "unattributed: no client_id")

        context = build_match_context(tx, lookup_shipment_context(tx, shipment_contexts))
        priced.add_trace("Context", f"{context.billing_category} / {context.fee_type}", context.client_id)

        try:
            if context.billing_category == CREDITS:
                breakdown = self._price_credit(tx, priced, priced_shipments or {})
            elif tx.is_shipment:
                if tx.base_cost is None:
                    return self._skip(priced, "awaiting base_cost breakdown")
                matched = self._resolve_rule(context, priced)
                breakdown = calculate_shipment_charges(
                    tx.base_cost, tx.surcharge, tx.insurance_cost, matched.rule if matched else None
                )
            else:
                matched = self._resolve_rule(context, priced)
                breakdown = calculate_markup(tx.cost if tx.cost is not None else 0, matched.rule if matched else None)
            taxes_charge = recalculate_taxes(tx.taxes, breakdown.billed_amount)
        except InvalidChargeError as e:
            logger.warning("Rejected pricing for transaction %s: %s", tx.id, e)
            priced.status = REJECTED
            priced.reason = str(e)
            priced.add_trace("Rejected", str(e))
            return priced

        self._apply_breakdown(priced, breakdown)
        priced.taxes_charge = taxes_charge
        if priced.taxes_charge:
            total_tax = sum(t.tax_amount for t in priced.taxes_charge)
            priced.add_trace("Taxes", f"{len(priced.taxes_charge)} tax line(s) recomputed", _fmt(total_tax))
        return priced

    def _resolve_rule(self, context, priced: PricedTransaction):
        matched = self.rule_matcher.find_best_rule(context)
        if matched:
            priced.add_trace(
                "Rule Matched",
                f"{matched.rule.name or matched.rule_id} ({matched.match_reason})",
                matched.rule_id,
            )
        else:
            priced.add_trace("Rule Matched", "No matching rule, billing at cost")
        return matched

    def _price_credit(
        self,
        tx: Transaction,
        priced: PricedTransaction,
        priced_shipments: Mapping[str, PricedShipment],
    ) -> ChargeBreakdown:
        credit_amount = tx.cost if tx.cost is not None else 0
        shipment = priced_shipments.get(str(tx.reference_id)) if tx.reference_id else None

        if credit_matches_shipment(credit_amount, shipment, tx.client_id):
            priced.add_trace(
                "Credit Match",
                f"Mirrors shipment {shipment.reference_id} markup",
                f"{shipment.markup_percentage}",
            )
            return calculate_credit_charges(credit_amount, shipment)

        priced.add_trace("Credit Match", "No matching shipment, billing at 0%")
        return calculate_credit_charges(credit_amount, None)

    @staticmethod
    def _apply_breakdown(priced: PricedTransaction, breakdown: ChargeBreakdown):
        priced.markup_applied = breakdown.markup_applied
        priced.billed_amount = breakdown.billed_amount
        priced.markup_percentage = breakdown.markup_percentage
        priced.markup_rule_id = breakdown.markup_rule_id
        priced.base_charge = breakdown.base_charge
        priced.total_charge = breakdown.total_charge
        priced.insurance_charge = breakdown.insurance_charge
        priced.add_trace("Billed", f"markup {_fmt(breakdown.markup_applied)}", _fmt(breakdown.billed_amount))

    @staticmethod
    def _skip(priced: PricedTransaction, reason: str) -> PricedTransaction:
        priced.status = SKIPPED
        priced.reason = reason
        priced.add_trace("Skipped", reason)
        return priced

    def price_batch(
        self,
        transactions: Iterable[Transaction],
        shipment_contexts: Mapping[str, ShipmentContext],
        prior_shipments: Optional[Mapping[str, PricedShipment]] = None,
    ) -> list[PricedTransaction]:
        """
        Price a batch of transactions, returned in input order.

        Invoiced transactions are excluded. Shipments priced here are added to
        prior_shipments before credits are priced.
        """
        transactions = list(transactions)
        candidates = [tx for tx in transactions if not tx.invoiced_status]
        excluded = len(transactions) - len(candidates)
        if excluded:
            logger.debug("Excluded %d invoiced transactions", excluded)

        results: dict[str, PricedTransaction] = {}
        credit_map: dict[str, PricedShipment] = dict(prior_shipments or {})
        credits = []

        for tx in candidates:
            if tx.client_id and billing_category_for(tx.fee_type) == CREDITS:
                credits.append(tx)
                continue
            priced = self.price_transaction(tx, shipment_contexts)
            results[tx.id] = priced
            # Refund rows share the reference id; only charges are mirrored
            if priced.is_priced and tx.is_shipment and tx.references_shipment and tx.base_cost > 0:
                credit_map[str(tx.reference_id)] = PricedShipment(
                    reference_id=str(tx.reference_id),
                    base_cost=tx.base_cost,
                    markup_percentage=priced.markup_percentage,
                    markup_rule_id=priced.markup_rule_id,
                    client_id=tx.client_id,
                )

        for tx in credits:
            results[tx.id] = self.price_transaction(tx, shipment_contexts, credit_map)

        return [results[tx.id] for tx in candidates]


def resolve_and_price(
    transactions: Iterable[Transaction],
    rules: Union[RuleSnapshot, Iterable[MarkupRule]],
    shipment_contexts: Mapping[str, ShipmentContext],
    *,
    prior_shipments: Optional[Mapping[str, PricedShipment]] = None,
    preview: bool = True,
) -> list[PricedTransaction]:
    """
    Resolve and price a batch of transactions.

    Pure: nothing is persisted. Hand the result to a MarkupWriter to store it.

    Args:
        transactions: candidate transactions
        rules: active rule snapshot (order breaks specificity ties)
        shipment_contexts: shipment id -> merged shipment/order context
        prior_shipments: shipments priced in earlier runs, for credit mirroring
        preview: tag results as preview (True) or final (False) pricing
    """
    engine = PricingEngine(rules, preview=preview)
    return engine.price_batch(transactions, shipment_contexts, prior_shipments)
