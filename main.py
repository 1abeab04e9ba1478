"""
main.py
--------
Entry point for the Recurring Expense Engine.

Reads an expense transactions CSV, runs detection, prints a summary and a
cash reservation for the given balance, and writes patterns + anomalies to
the outputs/ folder.

Usage (from the project root):
    python main.py --input path/to/transactions.csv

    # With optional arguments:
    python main.py --input tx.csv --balance 5000 --horizon 30
    python main.py --input tx.csv --corrections corrections.csv
    python main.py --input tx.csv --as-of 2024-03-31
"""

import sys
import os
import argparse
import logging
import pandas as pd
from dataclasses import asdict
from datetime import date, datetime

# Ensure project root is on path (for VS Code runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import RecurringExpensePipeline
from core.models import CashReservationSnapshot, DetectionReport
from storage.csv_reader import CsvTransactionReader, load_corrections
from storage.memory_store import InMemoryCorrectionStore


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recurring Expense Engine — Detect recurring bills and reserve cash for them."
    )
    parser.add_argument(
        "--input", type=str, default=None,
        help="Path to expense transactions CSV (id, description, amount, occurred_on). "
             "Defaults to transactions.csv in project root."
    )
    parser.add_argument(
        "--corrections", type=str, default=None,
        help="Optional corrections CSV (merchant_key, is_recurring[, note])."
    )
    parser.add_argument(
        "--balance", type=float, default=None,
        help="Checking balance for the cash reservation. Skipped when omitted."
    )
    parser.add_argument(
        "--horizon", type=int, default=None,
        help="Cash reservation horizon in days. Defaults to config value (14)."
    )
    parser.add_argument(
        "--as-of", type=date.fromisoformat, default=None,
        help="Reference date (YYYY-MM-DD) for the run. Defaults to today."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    args = parse_args(argv)

    # --- Resolve paths ---
    input_path = args.input or os.path.join(PROJECT_ROOT, "transactions.csv")
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")

    logger.info(f"Loading transactions from: {input_path}")
    if not os.path.exists(input_path):
        logger.error(f"Input file not found: {input_path}")
        sys.exit(1)

    # --- Corrections ---
    correction_store = InMemoryCorrectionStore()
    if args.corrections:
        if not os.path.exists(args.corrections):
            logger.error(f"Corrections file not found: {args.corrections}")
            sys.exit(1)
        loaded = load_corrections(args.corrections, correction_store)
        logger.info(f"Loaded {loaded:,} corrections.")

    # --- Run detection ---
    pipeline = RecurringExpensePipeline(
        CsvTransactionReader(input_path),
        correction_store=correction_store,
    )
    logger.info("Running detection pipeline...")
    report = pipeline.run_detection(as_of=args.as_of)

    # --- Output: patterns + anomalies ---
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    patterns_path = os.path.join(output_dir, f"patterns_{timestamp}.csv")
    pd.DataFrame([asdict(p) for p in report.patterns]).to_csv(patterns_path, index=False)
    logger.info(f"Patterns saved to: {patterns_path}")

    anomaly_rows = [
        {"merchant_key": merchant_key, **asdict(anomaly)}
        for merchant_key, anomalies in report.anomalies.items()
        for anomaly in anomalies
    ]
    if anomaly_rows:
        anomalies_path = os.path.join(output_dir, f"anomalies_{timestamp}.csv")
        pd.DataFrame(anomaly_rows).to_csv(anomalies_path, index=False)
        logger.info(f"Anomalies saved to: {anomalies_path}")
    else:
        logger.info("No anomalies detected.")

    _print_detection_summary(report)

    # --- Optional: Cash reservation ---
    if args.balance is not None:
        snapshot = pipeline.cash_reservation(args.balance, horizon_days=args.horizon, today=args.as_of)
        _print_cash_reservation(snapshot)


def _print_detection_summary(report: DetectionReport):
    """Prints a clean summary table to the console."""
    summary = report.summary
    if not report.patterns:
        print("\n  No recurring expenses detected.\n")
        return

    print("\n" + "=" * 80)
    print("  RECURRING EXPENSE DETECTION SUMMARY")
    print("=" * 80)
    print(f"\n  Transactions analyzed: {summary.transactions_analyzed:,}"
          f"  (skipped: {summary.skipped_transactions:,})")
    print(f"  Recurring expenses:    {summary.total_recurring:,}")
    print(f"  Monthly cost:          ${summary.total_monthly_cost:,.2f}")

    for title, counts in (
        ("By Type", summary.by_type),
        ("By Priority", summary.by_priority),
        ("Confidence Mix", summary.by_confidence),
    ):
        print(f"\n  {title}:")
        print("  " + "-" * 60)
        for label, count in counts.items():
            pct = count / summary.total_recurring * 100
            print(f"    {label:20s}  {count:>5,}  ({pct:.1f}%)")

    print("\n  Patterns:")
    print("  " + "-" * 60)
    for p in report.patterns:
        next_date = p.next_predicted_date.isoformat() if p.next_predicted_date else "-"
        flags = f"  [{len(report.anomalies[p.merchant_key])} anomalies]" if p.merchant_key in report.anomalies else ""
        print(
            f"    {p.display_name[:28]:28s}  ${p.typical_amount:>9,.2f}  every {p.frequency_days:>5.1f}d"
            f"  next {next_date}  {p.confidence}{flags}"
        )
    print("=" * 80 + "\n")


def _print_cash_reservation(snapshot: CashReservationSnapshot):
    print("=" * 80)
    print(f"  CASH RESERVATION (next {snapshot.horizon_days} days)")
    print("=" * 80)
    print(f"\n  Checking balance:        ${snapshot.checking_balance:>12,.2f}")
    print(f"  Reserved for bills:      ${snapshot.total_reserved:>12,.2f}")
    for priority, amount in snapshot.reserved_by_priority.items():
        print(f"    {priority:21s}  ${amount:>12,.2f}")
    print(f"  True available:          ${snapshot.true_available_cash:>12,.2f}")
    print(f"  Conservative available:  ${snapshot.conservative_available_cash:>12,.2f}")
    print(f"  Status:                  {snapshot.health_status.upper()}")

    if snapshot.upcoming_bills:
        print(f"\n  Upcoming Bills ({snapshot.total_bills_count}):")
        print("  " + "-" * 60)
        for bill in snapshot.upcoming_bills:
            print(
                f"    {bill.due_date.isoformat()}  (in {bill.days_until_due:>2}d)  "
                f"{bill.merchant[:24]:24s}  ${bill.predicted_amount:>9,.2f}  {bill.priority}"
            )
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
