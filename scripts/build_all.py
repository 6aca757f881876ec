#!/usr/bin/env python
"""
Build pipeline - compiles markup rules and runs the golden tests.

Usage:
    python scripts/build_all.py
"""
import subprocess
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from billing_engine.config.settings import get_settings
from billing_engine.rules.compile_rules import compile_rules


def main():
    settings = get_settings()

    print("=" * 60)
    print("BILLING ENGINE BUILD PIPELINE")
    print("=" * 60)
    print()

    print("[1/2] Compiling markup rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)

    if not success:
        print("\n❌ BUILD FAILED")
        for error in errors:
            print(f"  ERROR: {error}")
        sys.exit(1)

    print()
    print("[2/2] Running golden tests...")

    test_result = subprocess.run(
        [sys.executable, '-m', 'pytest', 'tests/test_golden_cases.py', '-v', '--tb=short'],
        cwd=Path(__file__).parent.parent
    )

    if test_result.returncode != 0:
        print("\n❌ TESTS FAILED")
        sys.exit(1)

    print()
    print("=" * 60)
    print("✅ BUILD COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Rules: {len(rules)}")
    print(f"  Active: {sum(1 for r in rules if r.is_active)}")
    by_category = {}
    for r in rules:
        category = r.billing_category or 'all'
        by_category[category] = by_category.get(category, 0) + 1
    print()
    print("Rules by category:")
    for category, count in sorted(by_category.items()):
        print(f"  {category}: {count}")


if __name__ == "__main__":
    main()
