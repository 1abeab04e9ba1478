"""
cash_reservation.py
--------------------
Projects tracked patterns' next occurrences into a horizon and splits the
checking balance into reserved vs. free cash.

Reads the *persisted* pattern set, so it always reflects the last committed
detection run. Nothing is written and nothing is cached: the result depends
on today's date and is recomputed on every call.
"""

import logging
from datetime import date, timedelta
from typing import List

from core.models import PRIORITIES, CashReservationSnapshot, UpcomingBill
from config.config_loader import get_cash_reservation_config

logger = logging.getLogger(__name__)


class CashReservationForecaster:
    """
    Usage:
        forecaster = CashReservationForecaster(pattern_store)
        snapshot = forecaster.forecast(balance=5000.0, horizon_days=14)
    """

    def __init__(self, pattern_store):
        self.pattern_store = pattern_store
        self.config = get_cash_reservation_config()

    def forecast(
        self,
        balance: float,
        horizon_days: int | None = None,
        today: date | None = None,
    ) -> CashReservationSnapshot:
        """
        Args:
            balance: Current checking balance.
            horizon_days: Look-ahead window. Defaults to config (14).
            today: Reference date. Defaults to the current date.
        """
        if horizon_days is None:
            horizon_days = self.config["default_horizon_days"]
        if horizon_days < 0:
            raise ValueError(f"horizon_days must be non-negative, got {horizon_days}")
        today = today or date.today()

        bills = self._upcoming_bills(today, today + timedelta(days=horizon_days))

        reserved_by_priority = {priority: 0.0 for priority in PRIORITIES}
        for bill in bills:
            reserved_by_priority[bill.priority] = reserved_by_priority.get(bill.priority, 0.0) + bill.predicted_amount

        total_reserved = sum(bill.predicted_amount for bill in bills)
        true_available = balance - total_reserved
        conservative_available = balance - (reserved_by_priority["essential"] + reserved_by_priority["important"])

        snapshot = CashReservationSnapshot(
            checking_balance=balance,
            horizon_days=horizon_days,
            upcoming_bills=bills,
            total_reserved=total_reserved,
            reserved_by_priority=reserved_by_priority,
            true_available_cash=true_available,
            conservative_available_cash=conservative_available,
            health_status=self._health_status(true_available),
        )
        logger.info(
            f"Cash reservation: {len(bills)} bills in next {horizon_days} days, "
            f"reserved ${total_reserved:,.2f}, status {snapshot.health_status}."
        )
        return snapshot

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _upcoming_bills(self, start: date, end: date) -> List[UpcomingBill]:
        bills: List[UpcomingBill] = []
        for pattern in self.pattern_store.list_patterns(tracked_only=True):
            due = pattern.next_predicted_date
            if due is None or not (start <= due <= end):
                continue
            amount = pattern.next_predicted_amount
            if amount is None:
                amount = pattern.typical_amount
            bills.append(UpcomingBill(
                merchant=pattern.display_name,
                due_date=due,
                predicted_amount=amount,
                priority=pattern.priority,
                confidence=pattern.prediction_confidence,
                days_until_due=(due - start).days,
            ))
        bills.sort(key=lambda b: (b.due_date, b.merchant))
        return bills

    def _health_status(self, true_available: float) -> str:
        if true_available > self.config["healthy_threshold"]:
            return "healthy"
        if true_available > 0:
            return "tight"
        return "overdrawn"
