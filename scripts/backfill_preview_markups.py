#!/usr/bin/env python
"""
Backfill preview markups for transactions that don't have them yet.

Usage:
    python scripts/backfill_preview_markups.py [options]

Options:
    --dry-run        Price and report, but write nothing
    --limit N        Maximum transactions to process (default 1000)
    --fee-type TYPE  Only this fee type (repeatable)
    --client-id ID   Only this client
    --force          Recalculate transactions that already have a preview
    --final          Write final (invoiced) pricing instead of preview
    --as-of DATE     Price with the rules in effect on DATE (YYYY-MM-DD)
"""
import argparse
import sys
from datetime import date
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from billing_engine.config.logging_config import configure_logging
from billing_engine.config.settings import get_settings
from billing_engine.errors import RuleStoreError
from billing_engine.services.preview_markups import PreviewMarkupJob, PreviewMarkupOptions


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill preview markups on transactions")
    parser.add_argument('--dry-run', action='store_true', help="don't write anything")
    parser.add_argument('--limit', type=int, default=None, help="maximum transactions to process")
    parser.add_argument('--fee-type', action='append', dest='fee_types', help="only this fee type")
    parser.add_argument('--client-id', default=None, help="only this client")
    parser.add_argument('--force', action='store_true', help="recalculate existing previews")
    parser.add_argument('--final', action='store_true', help="write final pricing and mark invoiced")
    parser.add_argument('--as-of', type=date.fromisoformat, default=None, help="rule effective date")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    print("=" * 60)
    print("BACKFILL PREVIEW MARKUPS" + (" (DRY RUN)" if args.dry_run else ""))
    print("=" * 60)

    options = PreviewMarkupOptions(
        fee_types=args.fee_types,
        client_id=args.client_id,
        force_recalc=args.force,
        limit=args.limit or settings.default_limit,
        dry_run=args.dry_run,
        final=args.final,
        as_of=args.as_of,
    )

    job = PreviewMarkupJob.from_settings(settings)
    try:
        result = job.calculate_preview_markups(options)
    except RuleStoreError as e:
        print(f"\n❌ Could not load markup rules: {e}")
        sys.exit(1)

    if not args.dry_run and result.updated:
        job.transaction_store.save()

    print()
    print("Summary:")
    print(f"  Candidates: {result.candidates}")
    print(f"  Updated:    {result.updated}")
    print(f"  Skipped:    {result.skipped}")
    print(f"  Rejected:   {result.rejected}")
    print(f"  Failed:     {result.failed}")

    if args.dry_run:
        print()
        for priced in result.results[:20]:
            if priced.is_priced:
                print(f"  {priced.transaction_id}: billed {priced.billed_amount} "
                      f"(markup {priced.markup_applied}, rule {priced.markup_rule_id or '-'})")
            else:
                print(f"  {priced.transaction_id}: {priced.status} ({priced.reason})")

    if result.errors:
        print()
        print("Errors:")
        for error in result.errors[:20]:
            print(f"  ❌ {error}")

    if result.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
