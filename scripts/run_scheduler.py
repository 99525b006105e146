"""
Command-line entry point for the scheduling engine.
Runs proposal generation, the expiration sweep, or a proposal audit once.
"""

import sys
import argparse
from datetime import datetime, date
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from matchmaker.core.logging_config import setup_logging
from matchmaker.services.engine import get_engine


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}; expected YYYY-MM-DD")


def run_generate(engine, args) -> int:
    vendor_ids = [args.vendor] if args.vendor else engine.vendor_ids()
    if not vendor_ids:
        print("ERROR: No vendors with team availability found.")
        return 1

    total = 0
    for vendor_id in vendor_ids:
        print(f"\n[GENERATE] Vendor {vendor_id}...")
        proposals = engine.generate_proposals(vendor_id, args.start, args.end)
        for p in proposals:
            print(
                f"  {p.scheduled_time:%a %Y-%m-%d %H:%M} {p.home_team_id} vs {p.away_team_id} "
                f"@ {p.venue_id} (score {p.ai_score:.3f}, expires {p.expires_at:%Y-%m-%d %H:%M})"
            )
        total += len(proposals)

    print(f"\nCreated {total} proposals")
    return 0


def run_sweep(engine, args) -> int:
    expired = engine.sweep_expired()
    print(f"\nExpired {expired} proposals")
    return 0


def run_audit(engine, args) -> int:
    result = engine.audit(args.vendor)

    print("\n" + "=" * 80)
    print("AUDIT SUMMARY")
    print("=" * 80)
    print(result.get_summary())
    for violation in result.hard_violations + result.soft_violations:
        print(f"  [{violation.severity}] {violation.constraint_type}: {violation.description}")
    return 0 if result.is_valid else 2


COMMANDS = {
    "generate": run_generate,
    "sweep": run_sweep,
    "audit": run_audit,
}


def main():
    parser = argparse.ArgumentParser(
        description='Matchmaker - generate, expire and audit match proposals'
    )
    parser.add_argument('command', choices=sorted(COMMANDS), help='What to run')
    parser.add_argument('--vendor', help='Restrict to one vendor id')
    parser.add_argument('--start', type=_date, help='First date of the generation window')
    parser.add_argument('--end', type=_date, help='Last date of the generation window')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()
    setup_logging("DEBUG" if args.verbose else "INFO")

    print("\n" + "=" * 80)
    print(f"MATCHMAKER: {args.command.upper()}")
    print("=" * 80)
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 80)

    try:
        return COMMANDS[args.command](get_engine(), args)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user.")
        return 1

    except Exception as e:
        print(f"\n\nERROR: An unexpected error occurred:")
        print(f"{type(e).__name__}: {e}")

        import traceback
        print("\nFull traceback:")
        traceback.print_exc()

        return 1


if __name__ == '__main__':
    sys.exit(main())
