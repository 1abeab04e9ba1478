"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. PatternStatisticsAggregator  →  MerchantStats per merchant
    2. PatternClassifier            →  classified, upserted patterns
    3. Predictor                    →  next date / amount / trend
    4. AnomalyDetector              →  deduplicated anomalies
    5. CashReservationForecaster    →  separate pass over the stored patterns

This is the single entry point for running the engine and for the user
maintenance operations (corrections, tracking, acknowledgements).

Usage:
    from pipeline import RecurringExpensePipeline

    pipeline = RecurringExpensePipeline(transaction_reader)
    report = pipeline.run_detection()
    snapshot = pipeline.cash_reservation(balance=5000.0)
"""

import logging
import threading
from datetime import date, datetime
from typing import Dict, List

from core.anomaly_detector import AnomalyDetector
from core.cash_reservation import CashReservationForecaster
from core.models import (
    CONFIDENCE_LEVELS,
    EXPENSE_TYPES,
    PRIORITIES,
    Anomaly,
    CashReservationSnapshot,
    DetectionReport,
    DetectionSummary,
    ExpenseCorrection,
    RecurringExpensePattern,
)
from core.pattern_classifier import PatternClassifier
from core.pattern_statistics import AggregationResult, PatternStatisticsAggregator
from core.predictor import Predictor
from config.config_loader import get_pattern_detection_config
from storage.base_store import AnomalyStore, CorrectionStore, PatternStore, TransactionReader
from storage.memory_store import InMemoryAnomalyStore, InMemoryCorrectionStore, InMemoryPatternStore

logger = logging.getLogger(__name__)

FORECAST_FIELDS = ("trend", "next_predicted_date", "next_predicted_amount", "prediction_confidence", "amount_range")


class RecurringExpensePipeline:
    """
    End-to-end recurring expense pipeline over injected stores.

    A detection run is serialized by an internal lock; callers sharing one
    store across several pipeline objects must serialize runs themselves.
    """

    def __init__(
        self,
        transaction_reader: TransactionReader,
        pattern_store: PatternStore | None = None,
        anomaly_store: AnomalyStore | None = None,
        correction_store: CorrectionStore | None = None,
    ):
        self.transaction_reader = transaction_reader
        self.pattern_store = pattern_store or InMemoryPatternStore()
        self.anomaly_store = anomaly_store or InMemoryAnomalyStore()
        self.correction_store = correction_store or InMemoryCorrectionStore()

        detection = get_pattern_detection_config()
        self.monthly_min = detection["monthly_band"]["min_days"]
        self.monthly_max = detection["monthly_band"]["max_days"]
        self.recent_window = detection["recent_transaction_window"]

        self.aggregator = PatternStatisticsAggregator()
        self.classifier = PatternClassifier()
        self.predictor = Predictor()
        self.anomaly_detector = AnomalyDetector()
        self.forecaster = CashReservationForecaster(self.pattern_store)
        self._run_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE: DETECTION
    # -------------------------------------------------------------------------

    def run_detection(self, as_of: date | None = None) -> DetectionReport:
        """
        Run one full batch pass over every expense transaction.

        Args:
            as_of: Reference date for recency, predictions and anomalies.
                Defaults to today. Re-running with the same data and the same
                as_of produces identical patterns.

        Raises:
            StoreWriteError: If a store fails to persist a record.
        """
        with self._run_lock:
            as_of = as_of or date.today()
            transactions = self.transaction_reader.read_expense_transactions()
            logger.info(f"Detection starting (as of {as_of}). Input: {len(transactions):,} transactions.")

            # --- Stage 1: Aggregation ---
            aggregation = self.aggregator.aggregate(transactions)
            logger.info(f"Stage 1 complete. Merchant groups: {len(aggregation.stats):,}.")

            # --- Stages 2–4: Classify → predict → anomalies, per merchant ---
            corrections = self.correction_store.as_mapping()
            patterns: List[RecurringExpensePattern] = []
            anomalies: Dict[str, List[Anomaly]] = {}

            for stats in aggregation.stats:
                pattern = self.classifier.classify_and_store(stats, self.pattern_store, corrections, as_of)
                if pattern is None:
                    continue

                self.predictor.apply(pattern, stats.amounts)
                pattern = self.pattern_store.update_fields(
                    pattern.id, **{name: getattr(pattern, name) for name in FORECAST_FIELDS}
                )

                found = self.anomaly_detector.detect_and_store(
                    pattern, stats.recent_transactions(self.recent_window), self.anomaly_store, as_of
                )
                if found:
                    anomalies[pattern.merchant_key] = found
                patterns.append(pattern)

            logger.info(
                f"Stages 2–4 complete. Patterns: {len(patterns):,}. "
                f"Merchants with anomalies: {len(anomalies):,}."
            )

            return DetectionReport(
                summary=self._summarize(patterns, aggregation),
                patterns=patterns,
                anomalies=anomalies,
            )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE: CASH RESERVATION
    # -------------------------------------------------------------------------

    def cash_reservation(
        self, balance: float, horizon_days: int | None = None, today: date | None = None
    ) -> CashReservationSnapshot:
        """Projects the stored patterns into the horizon. Never cached."""
        return self.forecaster.forecast(balance, horizon_days=horizon_days, today=today)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE: PATTERNS & USER OVERRIDES
    # -------------------------------------------------------------------------

    def list_patterns(
        self,
        expense_type: str | None = None,
        priority: str | None = None,
        confidence: str | None = None,
    ) -> List[RecurringExpensePattern]:
        return self.pattern_store.list_patterns(
            expense_type=expense_type, priority=priority, confidence=confidence
        )

    def apply_correction(
        self, merchant_key: str, is_recurring: bool, note: str | None = None
    ) -> ExpenseCorrection:
        """
        Records a user verdict and applies it to the stored pattern, if any.
        Confirmed → user_confirmed + high confidence. Rejected → excluded.
        """
        if not merchant_key:
            raise ValueError("merchant_key is required")

        correction = self.correction_store.set_correction(merchant_key, is_recurring, note)
        existing = self.pattern_store.get_by_key(merchant_key)
        if existing is not None:
            if is_recurring:
                self.pattern_store.update_fields(existing.id, user_confirmed=True, confidence="high")
            else:
                self.pattern_store.update_fields(existing.id, user_excluded=True)

        logger.info(f"Correction applied: {merchant_key} is_recurring={is_recurring}.")
        return correction

    def set_tracked(self, pattern_id: int, tracked: bool) -> RecurringExpensePattern:
        return self.pattern_store.update_fields(pattern_id, tracked=tracked)

    def exclude_pattern(self, pattern_id: int) -> RecurringExpensePattern:
        """Flags the pattern as excluded. Rows are never deleted."""
        return self.pattern_store.update_fields(pattern_id, user_excluded=True)

    def override_predicted_amount(self, pattern_id: int, amount: float) -> RecurringExpensePattern:
        """Replaces the forecast amount until the next detection run."""
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        return self.pattern_store.update_fields(pattern_id, next_predicted_amount=amount)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE: ANOMALIES
    # -------------------------------------------------------------------------

    def anomalies_for(self, pattern_id: int) -> List[Anomaly]:
        """Unacknowledged anomalies for a pattern, most recent first (max 10)."""
        return self.anomaly_store.list_for_pattern(pattern_id)

    def acknowledge_anomaly(self, anomaly_id: int) -> Anomaly:
        return self.anomaly_store.acknowledge(anomaly_id)

    # -------------------------------------------------------------------------
    # INTERNAL: SUMMARY
    # -------------------------------------------------------------------------

    def _summarize(
        self, patterns: List[RecurringExpensePattern], aggregation: AggregationResult
    ) -> DetectionSummary:
        return DetectionSummary(
            total_recurring=len(patterns),
            transactions_analyzed=aggregation.transactions_analyzed,
            by_type={t: sum(1 for p in patterns if p.expense_type == t) for t in EXPENSE_TYPES},
            by_confidence={c: sum(1 for p in patterns if p.confidence == c) for c in CONFIDENCE_LEVELS},
            by_priority={pr: sum(1 for p in patterns if p.priority == pr) for pr in PRIORITIES},
            total_monthly_cost=sum(
                p.typical_amount for p in patterns
                if self.monthly_min <= p.frequency_days <= self.monthly_max
            ),
            detection_run_at=datetime.now(),
            skipped_transactions=aggregation.skipped_transactions,
            notes=list(aggregation.notes),
        )
