"""
pattern_classifier.py
----------------------
Turns MerchantStats into a RecurringExpensePattern and upserts it.

Three independent outputs per merchant:
    1. Expense type  — rule chain on interval/amount CV, first match wins.
    2. Priority      — keyword lookup on the display name.
    3. Confidence    — additive 0–100 score mapped to high/medium/low.

User overrides are consulted before classification:
    - a stored `user_excluded` flag or an is_recurring=False correction
      skips the merchant for the whole run;
    - an is_recurring=True correction (or an earlier confirmation) marks the
      pattern user_confirmed, which forces confidence to "high".

All thresholds come from config.yaml.
"""

import logging
from collections import Counter
from datetime import date, datetime
from typing import Dict

from core.models import MerchantStats, RecurringExpensePattern
from config.config_loader import (
    get_classification_config,
    get_confidence_scoring_config,
    get_pattern_detection_config,
    get_priority_keywords,
)

logger = logging.getLogger(__name__)


class PatternClassifier:
    """
    Assigns expense type, priority and confidence.

    Usage:
        classifier = PatternClassifier()
        pattern = classifier.classify_and_store(stats, pattern_store, corrections, as_of)
    """

    def __init__(self):
        self.rules = get_classification_config()
        self.keywords = get_priority_keywords()
        self.scoring = get_confidence_scoring_config()
        detection = get_pattern_detection_config()
        self.monthly_min = detection["monthly_band"]["min_days"]
        self.monthly_max = detection["monthly_band"]["max_days"]
        self.default_frequency_days = detection["default_frequency_days"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def classify_and_store(
        self,
        stats: MerchantStats,
        pattern_store,
        corrections: Dict[str, bool],
        as_of: date,
    ) -> RecurringExpensePattern | None:
        """
        Classify one merchant group and upsert it into the pattern store.

        Returns:
            The stored pattern (with its id), or None when the user has
            excluded this merchant.
        """
        existing = pattern_store.get_by_key(stats.merchant_key)
        correction = corrections.get(stats.merchant_key)

        if correction is False or (existing is not None and existing.user_excluded):
            logger.debug(f"Skipping {stats.merchant_key}: excluded by user.")
            return None

        user_confirmed = correction is True or (existing is not None and existing.user_confirmed)
        pattern = self.classify(stats, as_of, user_confirmed=user_confirmed)
        return pattern_store.upsert(pattern)

    def classify(
        self, stats: MerchantStats, as_of: date, user_confirmed: bool = False
    ) -> RecurringExpensePattern:
        """Builds an unsaved pattern from statistics. Pure."""
        expense_type = self.classify_expense_type(stats)
        priority = self.classify_priority(stats.display_name, expense_type)
        confidence = "high" if user_confirmed else self.confidence_tier(self.score_confidence(stats, as_of))

        now = datetime.now()
        return RecurringExpensePattern(
            merchant_key=stats.merchant_key,
            display_name=stats.display_name,
            expense_type=expense_type,
            priority=priority,
            confidence=confidence,
            frequency_days=stats.avg_interval_days if stats.has_interval else float(self.default_frequency_days),
            frequency_variance_days=stats.interval_std_dev,
            typical_amount=round(stats.avg_amount, 2),
            amount_variance_pct=stats.amount_cv,
            min_amount=round(stats.min_amount, 2),
            max_amount=round(stats.max_amount, 2),
            occurrence_count=stats.occurrence_count,
            first_occurrence_date=stats.first_date,
            last_occurrence_date=stats.last_date,
            last_amount=round(stats.last_amount, 2),
            typical_day_of_month=self.typical_day_of_month(stats),
            amount_range=(round(stats.min_amount, 2), round(stats.max_amount, 2)),
            user_confirmed=user_confirmed,
            sample_transaction_ids=list(stats.transaction_ids),
            detected_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------------
    # EXPENSE TYPE
    # -------------------------------------------------------------------------

    def classify_expense_type(self, stats: MerchantStats) -> str:
        if not stats.has_interval:
            return "variable_recurring"

        avg_interval = stats.avg_interval_days
        interval_cv = stats.interval_cv
        amount_cv = stats.amount_cv
        r = self.rules

        if (
            self._in_monthly_band(avg_interval)
            and amount_cv < r["subscription"]["max_amount_cv"]
            and stats.occurrence_count >= r["subscription"]["min_occurrences"]
        ):
            return "subscription"

        if interval_cv < r["fixed"]["max_interval_cv"] and amount_cv < r["fixed"]["max_amount_cv"]:
            return "fixed"

        seasonal = r["seasonal"]
        if (
            avg_interval > seasonal["min_interval_days"]
            or abs(avg_interval - seasonal["quarterly_days"]) < seasonal["quarterly_tolerance"]
            or abs(avg_interval - seasonal["annual_days"]) < seasonal["annual_tolerance"]
        ):
            return "seasonal"

        variable = r["variable_recurring"]
        if interval_cv < variable["max_interval_cv"] and amount_cv >= variable["min_amount_cv"]:
            return "variable_recurring"

        return "variable_recurring"

    # -------------------------------------------------------------------------
    # PRIORITY
    # -------------------------------------------------------------------------

    def classify_priority(self, display_name: str, expense_type: str) -> str:
        name = display_name.lower()

        if self._matches(name, "essential"):
            return "essential"
        if expense_type == "subscription" or self._matches(name, "discretionary"):
            return "discretionary"
        if self._matches(name, "important"):
            return "important"
        return "important"

    def _matches(self, name: str, tier: str) -> bool:
        return any(keyword in name for keyword in self.keywords.get(tier, []))

    # -------------------------------------------------------------------------
    # CONFIDENCE
    # -------------------------------------------------------------------------

    def score_confidence(self, stats: MerchantStats, as_of: date) -> int:
        """
        Additive score out of 100:
            occurrences (25) + interval consistency (30)
            + amount consistency (30) + recency (15)
        """
        s = self.scoring
        score = _first_min_points(stats.occurrence_count, s["occurrence_points"])

        if stats.has_interval:
            score += _first_below_points(stats.interval_cv, s["interval_cv_points"])

        if stats.has_amount:
            score += _first_below_points(stats.amount_cv, s["amount_cv_points"])

        if stats.has_interval:
            recency = s["recency"]
            days_since_last = (as_of - stats.last_date).days
            if days_since_last < stats.avg_interval_days * recency["full_multiplier"]:
                score += recency["full_points"]
            elif days_since_last < stats.avg_interval_days * recency["partial_multiplier"]:
                score += recency["partial_points"]

        return score

    def confidence_tier(self, score: int) -> str:
        tiers = self.scoring["tiers"]
        if score >= tiers["high"]:
            return "high"
        if score >= tiers["medium"]:
            return "medium"
        return "low"

    # -------------------------------------------------------------------------
    # TYPICAL DAY OF MONTH
    # -------------------------------------------------------------------------

    def typical_day_of_month(self, stats: MerchantStats) -> int | None:
        """
        Most common calendar day across occurrences, monthly patterns only.
        Ties go to the day seen first.
        """
        if not stats.has_interval or not self._in_monthly_band(stats.avg_interval_days):
            return None
        day_counts = Counter(d.day for d in stats.dates)
        return day_counts.most_common(1)[0][0]

    def _in_monthly_band(self, interval_days: float) -> bool:
        return self.monthly_min <= interval_days <= self.monthly_max


def _first_min_points(value: float, table: list) -> int:
    """Points for the first (minimum, points) row with value >= minimum."""
    for minimum, points in table:
        if value >= minimum:
            return points
    return 0


def _first_below_points(value: float, table: list) -> int:
    """Points for the first (upper, points) row with value < upper."""
    for upper, points in table:
        if value < upper:
            return points
    return 0
