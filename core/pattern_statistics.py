"""
pattern_statistics.py
----------------------
Groups expense transactions by normalized merchant and computes interval and
amount dispersion for each group.

This layer knows nothing about expense types or priorities. It only answers:

    "For this merchant, how regular are the charges, and how stable is
     the amount?"

Output: one MerchantStats per merchant key with at least two transactions
(one interval is the minimum needed to say anything about recurrence).

Design decisions:
    - Amounts are compared in absolute value; banks report expenses with
      either sign.
    - Standard deviations are sample std-devs (ddof=1). A single interval
      has no std-dev (None), a near-zero amount std-dev is snapped to 0.
    - A row with an unparseable date, amount or description is dropped and
      reported back in `notes`; it never aborts the run.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List

import numpy as np
import pandas as pd

from core.merchant_normalizer import MerchantNormalizer
from core.models import MerchantStats
from config.config_loader import get_pattern_detection_config

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["id", "description", "amount", "occurred_on"]


@dataclass
class AggregationResult:
    stats: List[MerchantStats]
    transactions_analyzed: int
    skipped_transactions: int = 0
    notes: List[str] = field(default_factory=list)


class PatternStatisticsAggregator:
    """
    Builds MerchantStats from a transactions DataFrame.

    Usage:
        aggregator = PatternStatisticsAggregator()
        result = aggregator.aggregate(transactions_df)
    """

    def __init__(self, normalizer: MerchantNormalizer | None = None):
        self.config = get_pattern_detection_config()
        self.min_occurrences = self.config["min_occurrences"]
        self.std_dev_floor = self.config["amount_std_dev_floor"]
        self.normalizer = normalizer or MerchantNormalizer()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def aggregate(self, transactions: pd.DataFrame) -> AggregationResult:
        """
        Args:
            transactions: DataFrame with columns id, description, amount,
                occurred_on. Amounts may be signed; dates may be date objects
                or parseable strings.

        Returns:
            AggregationResult with stats ordered by occurrence count
            (descending), then mean interval (ascending), then merchant key.
        """
        df, notes = self._prepare(transactions)
        skipped = len(transactions) - len(df)

        results: List[MerchantStats] = []
        if not df.empty:
            for merchant_key, group in df.groupby("merchant_key", sort=True):
                if len(group) < self.min_occurrences:
                    continue
                results.append(self._build_stats(merchant_key, group))

        results.sort(key=lambda s: (-s.occurrence_count, s.avg_interval_days or 0, s.merchant_key))

        logger.info(
            f"Aggregated {len(df):,} transactions into {len(results):,} merchant groups "
            f"({skipped} skipped)."
        )
        return AggregationResult(
            stats=results,
            transactions_analyzed=len(transactions),
            skipped_transactions=skipped,
            notes=notes,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, transactions: pd.DataFrame) -> tuple[pd.DataFrame, List[str]]:
        """
        Validates columns, parses dates and amounts, drops malformed rows,
        and attaches the merchant key + display name to every row.
        """
        missing = [c for c in REQUIRED_COLUMNS if c not in transactions.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        df = transactions.copy()
        df["occurred_on"] = df["occurred_on"].map(_parse_date)
        df["amount"] = df["amount"].map(_parse_amount)

        notes: List[str] = []
        has_description = df["description"].map(lambda d: isinstance(d, str)).astype(bool)
        invalid = df["occurred_on"].isna() | df["amount"].isna() | ~has_description
        for tx_id in df.loc[invalid, "id"]:
            note = f"Skipped transaction {tx_id}: unparseable date, amount or description."
            logger.warning(note)
            notes.append(note)
        df = df[~invalid].copy()

        if df.empty:
            return df, notes

        identities = df["description"].map(self.normalizer.normalize)
        df["merchant_key"] = identities.map(lambda i: i.key)
        df["merchant_display"] = identities.map(lambda i: i.display)
        df["abs_amount"] = df["amount"].abs()

        df = df.sort_values(["merchant_key", "occurred_on", "id"], kind="mergesort").reset_index(drop=True)
        return df, notes

    # -------------------------------------------------------------------------
    # INTERNAL: STATISTICS
    # -------------------------------------------------------------------------

    def _build_stats(self, merchant_key: str, group: pd.DataFrame) -> MerchantStats:
        dates: List[date] = list(group["occurred_on"])
        amounts = [float(a) for a in group["abs_amount"]]
        intervals = [(later - earlier).days for earlier, later in zip(dates, dates[1:])]

        avg_interval = float(np.mean(intervals))
        interval_std = float(np.std(intervals, ddof=1)) if len(intervals) > 1 else None

        avg_amount = float(np.mean(amounts))
        amount_std = float(np.std(amounts, ddof=1)) if len(amounts) > 1 else 0.0
        if amount_std < self.std_dev_floor:
            amount_std = 0.0

        return MerchantStats(
            merchant_key=merchant_key,
            display_name=group["merchant_display"].iloc[0],
            occurrence_count=len(group),
            intervals=intervals,
            avg_interval_days=avg_interval,
            interval_std_dev=interval_std,
            avg_amount=avg_amount,
            amount_std_dev=amount_std,
            min_amount=min(amounts),
            max_amount=max(amounts),
            first_date=dates[0],
            last_date=dates[-1],
            last_amount=amounts[-1],
            dates=dates,
            amounts=amounts,
            transaction_ids=[_plain_id(i) for i in group["id"]],
        )


def _parse_date(value) -> date | None:
    """Accepts date, datetime and text values; anything else is malformed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def _parse_amount(value) -> float | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def _plain_id(value):
    """Unwraps numpy scalars so ids compare and serialize like plain ints."""
    return value.item() if hasattr(value, "item") else value
