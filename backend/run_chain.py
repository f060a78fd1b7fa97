#!/usr/bin/env python3
"""CLI tool to inspect a stored parcel's nondh chain.

Usage:
    python run_chain.py <parcel_id_or_file>            # Print the canonical chain + checks
    python run_chain.py <parcel_id_or_file> --trace    # Run with NONDH_TRACE
    python run_chain.py --list                         # List stored parcels
    python run_chain.py <parcel_id> --json             # Output raw JSON

A file argument may hold either a stored snapshot or a bulk upload payload.

Examples:
    python run_chain.py village-12-block-44
    python run_chain.py uploads/block44.json --trace
    python run_chain.py --list
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Ensure the backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

from app.config import RECORDS_DIR


def list_parcels():
    """List all stored parcels with summary info."""
    files = sorted(RECORDS_DIR.glob("*.json"))
    if not files:
        print("No parcel files found.")
        return

    print(f"\n{'Parcel ID':<30} {'Nondhs':>6}  {'Slabs':>5}")
    print("─" * 46)
    for f in files:
        try:
            data = json.loads(f.read_text(encoding="utf-8"))
            print(f"{f.stem:<30} {len(data.get('amendments', [])):>6}  {len(data.get('year_slabs', [])):>5}")
        except (OSError, json.JSONDecodeError) as e:
            print(f"{f.stem:<30}  ERROR: {e}")
    print()


def load_parcel(parcel_ref: str):
    """Load a parcel by stored id or from a JSON file path."""
    from app.nondh.ingestion import ingest_payload
    from app.nondh.store import RecordStore

    path = Path(parcel_ref)
    if path.exists():
        payload = json.loads(path.read_text(encoding="utf-8"))
        result = ingest_payload(payload, payload.get("parcel_id") or path.stem)
        for err in result.errors:
            print(f"  skipped: {err}")
        return result.snapshot

    store = RecordStore()
    try:
        return store.get(parcel_ref)
    except (FileNotFoundError, ValueError):
        print(f"Parcel '{parcel_ref}' not found.")
        sys.exit(1)


def show_chain(parcel_ref: str, trace: bool = False, output_json: bool = False):
    """Print the canonical chain and snapshot check results."""
    if trace:
        os.environ["NONDH_TRACE"] = "1"
        import importlib
        import app.config
        importlib.reload(app.config)

    import logging
    if trace:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    from app.nondh.checks import run_chain_checks
    from app.nondh.engine import chain_view

    snapshot = load_parcel(parcel_ref)
    rows = chain_view(snapshot)
    issues = [i.to_dict() for i in run_chain_checks(snapshot)]

    if output_json:
        print(json.dumps({"parcel_id": snapshot.parcel_id, "chain": rows, "checks": issues},
                         indent=2, ensure_ascii=False))
        return

    print(f"\n{'═' * 78}")
    print(f"  Nondh chain: parcel {snapshot.parcel_id}: {len(rows)} amendment(s)")
    print(f"{'═' * 78}\n")
    print(f"  {'#':>3} {'Nondh':<10} {'Class':<13} {'Type':<17} {'Status':<10} {'Effective':<10} {'Date'}")
    print(f"  {'─' * 74}")
    for r in rows:
        print(f"  {r['position']:>3} {r['number']:<10} {r['primary_class']:<13} {r['type']:<17} "
              f"{r['status']:<10} {r['effective_status']:<10} {r['date'] or '—'}")
        for rel in r["owner_relations"]:
            mark = "✓" if rel["is_valid"] else "✗"
            print(f"        {mark} {rel['owner_name']:<30} {rel['area']['value']} {rel['area']['unit']}")
    print()

    if issues:
        print(f"  CHAIN CHECKS ({len(issues)} results)")
        print(f"  {'─' * 60}")
        for c in issues:
            status_icon = {"FAIL": "✗", "WARNING": "⚠"}.get(c["status"], "?")
            print(f"  {status_icon} [{c['rule_code']}] {c['rule_name']}")
            print(f"    {c['explanation'][:120]}")
            if c.get("evidence"):
                print(f"    Evidence: {c['evidence'][:100]}")
            print()
    else:
        print("  No chain check issues found.\n")

    fail_count = sum(1 for c in issues if c["status"] == "FAIL")
    warn_count = sum(1 for c in issues if c["status"] == "WARNING")
    print(f"{'═' * 78}")
    print(f"  Summary: {fail_count} FAIL, {warn_count} WARNING")
    print(f"{'═' * 78}\n")


def main():
    parser = argparse.ArgumentParser(
        description="Nondh CLI: inspect a stored parcel chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("parcel", nargs="?", help="Parcel ID or JSON file path")
    parser.add_argument("--list", action="store_true", help="List stored parcels")
    parser.add_argument("--trace", action="store_true", help="Enable NONDH_TRACE debug output")
    parser.add_argument("--json", action="store_true", help="Output raw JSON instead of pretty print")

    args = parser.parse_args()

    if args.list:
        list_parcels()
        return

    if not args.parcel:
        parser.print_help()
        return

    show_chain(args.parcel, trace=args.trace, output_json=args.json)


if __name__ == "__main__":
    main()
