"""
Preview markup job - prices pending transactions and writes the results.

Flow:
1. Load the active rule snapshot (failure aborts before any transaction is read)
2. Fetch candidate transactions
3. Fetch shipment contexts and already-priced shipments for credits
4. Resolve and price the batch
5. Persist priced results (unless dry run)
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ..config.settings import Settings, get_settings
from ..engine.context_builder import CREDITS, billing_category_for, shipment_reference_ids
from ..engine.models import REJECTED, SHIPMENT_FEE_TYPE, SKIPPED, PricedTransaction
from ..engine.pricing_engine import resolve_and_price
from ..rules.store import RuleStore
from .context_store import DataFrameContextProvider
from .transaction_store import CandidateFilter, DataFrameTransactionStore
from .writer import MarkupWriter


logger = logging.getLogger(__name__)


@dataclass
class PreviewMarkupOptions:
    transaction_ids: Optional[list[str]] = None
    fee_types: Optional[list[str]] = None
    exclude_fee_types: Optional[list[str]] = None
    client_id: Optional[str] = None
    force_recalc: bool = False
    limit: Optional[int] = 1000
    dry_run: bool = False
    final: bool = False
    as_of: Optional[date] = None


@dataclass
class PreviewMarkupResult:
    candidates: int = 0
    updated: int = 0
    skipped: int = 0
    rejected: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[PricedTransaction] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            'candidates': self.candidates,
            'updated': self.updated,
            'skipped': self.skipped,
            'rejected': self.rejected,
            'failed': self.failed,
            'errors': list(self.errors),
        }


class PreviewMarkupJob:
    """Wires the rule store, transaction store and context provider together."""

    def __init__(self, rule_store, transaction_store, context_provider, writer: Optional[MarkupWriter] = None):
        self.rule_store = rule_store
        self.transaction_store = transaction_store
        self.context_provider = context_provider
        self.writer = writer or MarkupWriter(transaction_store)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'PreviewMarkupJob':
        """File-backed job using the configured data paths."""
        settings = settings or get_settings()
        rules_path = settings.compiled_rules if settings.compiled_rules.exists() else settings.rules_csv
        transaction_store = DataFrameTransactionStore.from_csv(settings.transactions_csv)
        return cls(
            rule_store=RuleStore(rules_path),
            transaction_store=transaction_store,
            context_provider=DataFrameContextProvider.from_csv(settings.shipments_csv, settings.orders_csv),
            writer=MarkupWriter(
                transaction_store,
                max_workers=settings.writer_max_workers,
                batch_size=settings.writer_batch_size,
            ),
        )

    def calculate_preview_markups(self, options: Optional[PreviewMarkupOptions] = None) -> PreviewMarkupResult:
        """Run one pricing pass. RuleStoreError propagates before any fetch."""
        options = options or PreviewMarkupOptions()
        result = PreviewMarkupResult()

        snapshot = self.rule_store.snapshot(as_of=options.as_of, client_id=options.client_id)

        transactions = self.transaction_store.fetch_candidates(CandidateFilter(
            transaction_ids=options.transaction_ids,
            fee_types=options.fee_types,
            exclude_fee_types=options.exclude_fee_types,
            client_id=options.client_id,
            # Final pricing also replaces existing preview values
            force_recalc=options.force_recalc or options.final,
            limit=options.limit,
        ))
        result.candidates = len(transactions)
        if not transactions:
            logger.info("No transactions need markup calculation")
            return result

        shipment_ids = shipment_reference_ids(transactions)
        contexts = self.context_provider.fetch_contexts(shipment_ids) if shipment_ids else {}

        credit_refs = [
            str(tx.reference_id) for tx in transactions
            if tx.reference_id and billing_category_for(tx.fee_type) == CREDITS
        ]
        prior_shipments = self.transaction_store.fetch_priced_shipments(credit_refs) if credit_refs else {}

        priced = resolve_and_price(
            transactions,
            snapshot,
            contexts,
            prior_shipments=prior_shipments,
            preview=not options.final,
        )
        result.results = priced

        for p in priced:
            if p.status == SKIPPED:
                result.skipped += 1
            elif p.status == REJECTED:
                result.rejected += 1
                result.errors.append(f"{p.transaction_id}: {p.reason}")

        if options.dry_run:
            logger.info("Dry run: %d priced, nothing written", sum(1 for p in priced if p.is_priced))
            return result

        written = self.writer.write(priced, final=options.final)
        result.updated = written.updated
        result.failed = written.failed
        result.errors.extend(written.errors)

        logger.info(
            "Markup run: %d candidates, %d updated, %d skipped, %d rejected, %d failed",
            result.candidates, result.updated, result.skipped, result.rejected, result.failed
        )
        return result

    def calculate_shipment_preview_markups(self, limit: int = 2000, **kwargs) -> PreviewMarkupResult:
        """Preview markups for shipping charges only."""
        return self.calculate_preview_markups(
            PreviewMarkupOptions(fee_types=[SHIPMENT_FEE_TYPE], limit=limit, **kwargs)
        )

    def calculate_non_shipment_preview_markups(
        self,
        transaction_ids: Optional[list[str]] = None,
        limit: int = 1000,
        **kwargs
    ) -> PreviewMarkupResult:
        """Preview markups for everything except shipping charges."""
        return self.calculate_preview_markups(
            PreviewMarkupOptions(
                transaction_ids=transaction_ids,
                exclude_fee_types=[SHIPMENT_FEE_TYPE],
                limit=limit,
                **kwargs
            )
        )


def calculate_preview_markups(
    rule_store,
    transaction_store,
    context_provider,
    options: Optional[PreviewMarkupOptions] = None,
    writer: Optional[MarkupWriter] = None,
) -> PreviewMarkupResult:
    """Convenience wrapper around PreviewMarkupJob."""
    job = PreviewMarkupJob(rule_store, transaction_store, context_provider, writer=writer)
    return job.calculate_preview_markups(options)
