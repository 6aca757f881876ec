"""
Writer - persists priced transactions in concurrent batches.

One transaction failing to persist never blocks the others; failures are
counted and reported in the WriteResult.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable

from ..engine.models import PricedTransaction


logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class MarkupWriter:
    """Writes computed markup fields back through a transaction store."""

    def __init__(self, store, max_workers: int = 8, batch_size: int = 100):
        self.store = store
        self.max_workers = max(1, max_workers)
        self.batch_size = max(1, batch_size)

    def _fields_for(self, priced: PricedTransaction, final: bool) -> dict:
        fields = priced.to_update()
        if final:
            fields['markup_is_preview'] = False
            fields['invoiced_status'] = True
        else:
            fields['markup_is_preview'] = True
        return fields

    def write(self, results: Iterable[PricedTransaction], final: bool = False) -> WriteResult:
        """
        Persist every priced result. Skipped and rejected results are ignored.

        final=True tags the rows as invoiced final pricing instead of preview.
        """
        to_write = [r for r in results if r.is_priced]
        outcome = WriteResult()
        if not to_write:
            return outcome

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for start in range(0, len(to_write), self.batch_size):
                batch = to_write[start:start + self.batch_size]
                futures = {
                    pool.submit(self.store.update_transaction, r.transaction_id, self._fields_for(r, final)): r
                    for r in batch
                }
                for future in as_completed(futures):
                    priced = futures[future]
                    try:
                        future.result()
                        outcome.updated += 1
                    except Exception as e:
                        logger.error("Failed to persist transaction %s: %s", priced.transaction_id, e)
                        outcome.failed += 1
                        outcome.errors.append(f"{priced.transaction_id}: {e}")

        logger.info("Wrote %d transactions (%d failed)", outcome.updated, outcome.failed)
        return outcome
