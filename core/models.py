"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: Read-only expense transaction fed into a detection run.

- MerchantStats: Output of the aggregation layer. Interval and amount
  dispersion for one merchant group, before any classification.

- RecurringExpensePattern: The persisted, classified recurring expense with
  its forecast fields and user overrides.

- Anomaly: A point-in-time deviation from a pattern.

- CashReservationSnapshot: Derived view of how much of a balance is already
  spoken for by upcoming bills. Never persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union


EXPENSE_TYPES = ("fixed", "subscription", "seasonal", "variable_recurring")
PRIORITIES = ("essential", "important", "discretionary")
CONFIDENCE_LEVELS = ("high", "medium", "low")


def coefficient_of_variation(std_dev: float | None, mean: float | None) -> float:
    """
    Std-dev as a percentage of the mean. Returns 0.0 when either side is
    missing or the mean is zero (undefined variance).
    """
    if not std_dev or not mean:
        return 0.0
    return std_dev / mean * 100


@dataclass
class Transaction:
    """One expense transaction. Amount is signed as reported by the bank."""

    id: int
    description: str
    amount: float
    occurred_on: date


@dataclass(frozen=True)
class MerchantIdentity:
    """Normalized merchant: stable grouping key + human-readable name."""

    key: str
    display: str


@dataclass
class MerchantStats:
    """
    Interval and amount statistics for one merchant group.

    Produced by PatternStatisticsAggregator for every merchant key with at
    least two transactions. All amount fields are absolute values.
    """

    # Identity
    merchant_key: str
    display_name: str

    # Intervals
    occurrence_count: int
    intervals: list[int]
    avg_interval_days: float | None
    interval_std_dev: float | None   # None when fewer than 2 intervals.

    # Amounts
    avg_amount: float
    amount_std_dev: float            # Forced to 0.0 for near-fixed amounts.
    min_amount: float
    max_amount: float

    # History (chronological)
    first_date: date
    last_date: date
    last_amount: float
    dates: list[date] = field(default_factory=list)
    amounts: list[float] = field(default_factory=list)
    transaction_ids: list[int] = field(default_factory=list)

    @property
    def interval_count(self) -> int:
        return len(self.intervals)

    @property
    def has_interval(self) -> bool:
        """False when the mean interval is missing or zero."""
        return bool(self.avg_interval_days)

    @property
    def has_amount(self) -> bool:
        """False when the mean amount is zero."""
        return bool(self.avg_amount)

    @property
    def interval_cv(self) -> float:
        return coefficient_of_variation(self.interval_std_dev, self.avg_interval_days)

    @property
    def amount_cv(self) -> float:
        return coefficient_of_variation(self.amount_std_dev, self.avg_amount)

    def recent_transactions(self, limit: int) -> list[Transaction]:
        """The group's latest transactions, most recent first. Amounts are absolute."""
        history = list(zip(self.transaction_ids, self.dates, self.amounts))[-limit:]
        return [
            Transaction(id=txn_id, description=self.display_name, amount=amount, occurred_on=occurred_on)
            for txn_id, occurred_on, amount in reversed(history)
        ]


@dataclass
class RecurringExpensePattern:
    """
    A detected recurring expense. One per merchant_key.

    Statistics are recomputed on every detection run; the user override
    flags survive the upsert (see storage.base_store.PRESERVED_FIELDS).
    """

    # Identity
    merchant_key: str
    display_name: str

    # Classification
    expense_type: str                # "fixed" | "subscription" | "seasonal" | "variable_recurring"
    priority: str                    # "essential" | "important" | "discretionary"
    confidence: str                  # "high" | "medium" | "low"

    # Interval statistics
    frequency_days: float
    frequency_variance_days: float | None

    # Amount statistics
    typical_amount: float
    amount_variance_pct: float
    min_amount: float
    max_amount: float

    # History
    occurrence_count: int
    first_occurrence_date: date
    last_occurrence_date: date
    last_amount: float
    typical_day_of_month: int | None = None

    # Forecast (written by the Predictor)
    trend: str | None = None
    next_predicted_date: date | None = None
    next_predicted_amount: float | None = None
    prediction_confidence: str | None = None
    amount_range: tuple[float, float] | None = None

    # User overrides
    user_confirmed: bool = False
    user_excluded: bool = False
    tracked: bool = True

    # Bookkeeping
    id: int | None = None
    sample_transaction_ids: list[int] = field(default_factory=list)
    detected_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Anomaly:
    """
    A deviation from an established pattern.

    Deduplicated on (pattern_id, anomaly_type, detected_date, transaction_id).
    """

    pattern_id: int
    anomaly_type: str                # "missed" | "amount_high" | "amount_low" | "early" | "late" | "duplicate_suspected"
    severity: str                    # "low" | "medium" | "high"
    detected_date: date
    transaction_id: int | None = None
    expected_value: Optional[Union[float, str]] = None
    actual_value: Optional[Union[float, str]] = None
    user_acknowledged: bool = False
    id: int | None = None
    created_at: datetime | None = None

    @property
    def dedupe_key(self) -> tuple:
        return (self.pattern_id, self.anomaly_type, self.detected_date, self.transaction_id)


@dataclass
class ExpenseCorrection:
    """User verdict on whether a merchant is really recurring."""

    merchant_key: str
    is_recurring: bool
    note: str | None = None
    marked_at: datetime = field(default_factory=datetime.now)


@dataclass
class UpcomingBill:
    merchant: str
    due_date: date
    predicted_amount: float
    priority: str
    confidence: str | None
    days_until_due: int


@dataclass
class CashReservationSnapshot:
    """How much of the checking balance upcoming bills have already claimed."""

    checking_balance: float
    horizon_days: int
    upcoming_bills: list[UpcomingBill]
    total_reserved: float
    reserved_by_priority: dict[str, float]
    true_available_cash: float
    conservative_available_cash: float
    health_status: str               # "healthy" | "tight" | "overdrawn"

    @property
    def total_bills_count(self) -> int:
        return len(self.upcoming_bills)


@dataclass
class DetectionSummary:
    total_recurring: int
    transactions_analyzed: int
    by_type: dict[str, int]
    by_confidence: dict[str, int]
    by_priority: dict[str, int]
    total_monthly_cost: float
    detection_run_at: datetime
    skipped_transactions: int = 0
    notes: list[str] = field(default_factory=list)


@dataclass
class DetectionReport:
    """Result of one detection run."""

    summary: DetectionSummary
    patterns: list[RecurringExpensePattern] = field(default_factory=list)
    anomalies: dict[str, list[Anomaly]] = field(default_factory=dict)  # merchant_key → anomalies
