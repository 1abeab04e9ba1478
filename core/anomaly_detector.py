"""
anomaly_detector.py
--------------------
Compares a pattern's latest occurrences against its established statistics.

Four checks, each independent:
    1. MISSED     — nothing seen for more than 1.5× the usual interval.
    2. AMOUNT     — latest charge deviates by more than 2× the usual amount
                    variance (amount_high / amount_low).
    3. TIMING     — latest interval deviates by more than 2× the interval
                    std-dev (early / late).
    4. DUPLICATE  — two latest charges within a few days at ~the same amount.

Window sizes, multipliers and severity bands come from config.yaml.
Anomalies are stored with dedupe-on-conflict semantics: re-detecting the
same anomaly on the same day is a no-op.
"""

import logging
from datetime import date, timedelta
from typing import List, Sequence

from core.models import Anomaly, RecurringExpensePattern, Transaction
from core.predictor import round_half_up
from config.config_loader import get_anomaly_config

logger = logging.getLogger(__name__)


class AnomalyDetector:
    """
    Usage:
        detector = AnomalyDetector()
        anomalies = detector.detect(pattern, recent_transactions, as_of)
    """

    def __init__(self):
        self.config = get_anomaly_config()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(
        self,
        pattern: RecurringExpensePattern,
        recent_transactions: Sequence[Transaction],
        as_of: date,
    ) -> List[Anomaly]:
        """
        Args:
            pattern: Stored pattern (must carry its id).
            recent_transactions: The pattern's transactions, most recent first.
            as_of: Detection date; also the anomaly's detected_date.
        """
        anomalies: List[Anomaly] = []

        missed = self._check_missed(pattern, as_of)
        if missed is not None:
            anomalies.append(missed)

        if recent_transactions:
            anomalies.extend(self._check_amount(pattern, recent_transactions[0], as_of))

        if len(recent_transactions) >= 2:
            latest, previous = recent_transactions[0], recent_transactions[1]
            for check in (self._check_timing, self._check_duplicate):
                anomaly = check(pattern, latest, previous, as_of)
                if anomaly is not None:
                    anomalies.append(anomaly)

        return anomalies

    def detect_and_store(
        self,
        pattern: RecurringExpensePattern,
        recent_transactions: Sequence[Transaction],
        anomaly_store,
        as_of: date,
    ) -> List[Anomaly]:
        """Detects anomalies and inserts each one; duplicates are absorbed by the store."""
        anomalies = self.detect(pattern, recent_transactions, as_of)
        inserted = sum(1 for anomaly in anomalies if anomaly_store.insert(anomaly))
        if anomalies:
            logger.debug(
                f"{pattern.merchant_key}: {len(anomalies)} anomalies detected, {inserted} new."
            )
        return anomalies

    # -------------------------------------------------------------------------
    # INTERNAL: CHECKS
    # -------------------------------------------------------------------------

    def _check_missed(self, pattern: RecurringExpensePattern, as_of: date) -> Anomaly | None:
        cfg = self.config["missed"]
        days_since_last = abs((as_of - pattern.last_occurrence_date).days)
        expected_interval = pattern.frequency_days

        if days_since_last <= expected_interval * cfg["overdue_multiplier"]:
            return None

        severity = "high" if days_since_last > expected_interval * cfg["high_multiplier"] else "medium"
        expected_date = pattern.last_occurrence_date + timedelta(days=round_half_up(expected_interval))
        return Anomaly(
            pattern_id=pattern.id,
            anomaly_type="missed",
            severity=severity,
            detected_date=as_of,
            expected_value=expected_date.isoformat(),
            actual_value=None,
        )

    def _check_amount(
        self, pattern: RecurringExpensePattern, latest: Transaction, as_of: date
    ) -> List[Anomaly]:
        if not pattern.typical_amount:
            return []

        cfg = self.config["amount"]
        actual = abs(latest.amount)
        deviation_pct = abs(actual - pattern.typical_amount) / pattern.typical_amount * 100

        if deviation_pct <= pattern.amount_variance_pct * cfg["flag_multiplier"]:
            return []

        if actual > pattern.typical_amount:
            severity = "high" if deviation_pct > pattern.amount_variance_pct * cfg["high_multiplier"] else "medium"
            anomaly_type = "amount_high"
        elif actual < pattern.typical_amount:
            severity = "low"
            anomaly_type = "amount_low"
        else:
            return []

        return [Anomaly(
            pattern_id=pattern.id,
            anomaly_type=anomaly_type,
            severity=severity,
            detected_date=as_of,
            transaction_id=latest.id,
            expected_value=pattern.typical_amount,
            actual_value=actual,
        )]

    def _check_timing(
        self,
        pattern: RecurringExpensePattern,
        latest: Transaction,
        previous: Transaction,
        as_of: date,
    ) -> Anomaly | None:
        cfg = self.config["timing"]
        actual_interval = abs((latest.occurred_on - previous.occurred_on).days)
        expected_interval = pattern.frequency_days
        variance = pattern.frequency_variance_days or expected_interval * cfg["default_variance_pct"] / 100

        if abs(actual_interval - expected_interval) <= variance * cfg["variance_multiplier"]:
            return None

        return Anomaly(
            pattern_id=pattern.id,
            anomaly_type="early" if actual_interval < expected_interval else "late",
            severity="low",
            detected_date=as_of,
            transaction_id=latest.id,
            expected_value=expected_interval,
            actual_value=float(actual_interval),
        )

    def _check_duplicate(
        self,
        pattern: RecurringExpensePattern,
        latest: Transaction,
        previous: Transaction,
        as_of: date,
    ) -> Anomaly | None:
        cfg = self.config["duplicate"]
        days_apart = abs((latest.occurred_on - previous.occurred_on).days)
        amount_delta = abs(abs(latest.amount) - abs(previous.amount))

        if days_apart >= cfg["max_days_apart"] or amount_delta >= cfg["max_amount_delta"]:
            return None

        return Anomaly(
            pattern_id=pattern.id,
            anomaly_type="duplicate_suspected",
            severity="medium",
            detected_date=as_of,
            transaction_id=latest.id,
        )
