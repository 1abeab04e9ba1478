"""
predictor.py
-------------
Forecasts the next occurrence of a recurring expense.

    - Trend: OLS slope of amount vs. occurrence index over the most recent
      occurrences, as a percentage of their mean amount.
    - Next date: last occurrence + rounded mean interval, with a confidence
      derived from the interval CV.
    - Next amount: typical amount nudged by the trend, bounded by a
      ±2 std-dev range clipped to the observed min/max.

The Predictor writes its fields back onto the pattern; persisting them is
the caller's job.
"""

import math
from datetime import date, timedelta
from typing import Sequence

import numpy as np
from scipy import stats

from core.models import RecurringExpensePattern, coefficient_of_variation
from config.config_loader import get_prediction_config


class Predictor:
    """
    Usage:
        predictor = Predictor()
        predictor.apply(pattern, chronological_amounts)
    """

    def __init__(self):
        self.config = get_prediction_config()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def apply(self, pattern: RecurringExpensePattern, amounts: Sequence[float]) -> RecurringExpensePattern:
        """
        Sets trend, next_predicted_date, prediction_confidence,
        next_predicted_amount and amount_range on the pattern.

        Args:
            pattern: Classified pattern.
            amounts: Absolute amounts in chronological order.
        """
        pattern.trend = self.detect_trend(amounts)

        next_date, date_confidence = self.predict_next_date(pattern)
        pattern.next_predicted_date = next_date
        pattern.prediction_confidence = date_confidence

        next_amount, amount_range = self.predict_next_amount(pattern, pattern.trend)
        pattern.next_predicted_amount = next_amount
        pattern.amount_range = amount_range

        return pattern

    def detect_trend(self, amounts: Sequence[float]) -> str:
        if len(amounts) < self.config["trend_min_points"]:
            return "stable"

        recent = np.asarray(amounts[-self.config["trend_window"]:], dtype=float)
        mean_amount = float(recent.mean())
        if mean_amount == 0:
            return "stable"

        slope = stats.linregress(np.arange(len(recent)), recent).slope
        normalized_slope = slope / mean_amount * 100

        threshold = self.config["trend_threshold_pct"]
        if normalized_slope > threshold:
            return "increasing"
        if normalized_slope < -threshold:
            return "decreasing"
        return "stable"

    def predict_next_date(self, pattern: RecurringExpensePattern) -> tuple[date, str]:
        predicted = pattern.last_occurrence_date + timedelta(days=round_half_up(pattern.frequency_days))

        cv = coefficient_of_variation(pattern.frequency_variance_days, pattern.frequency_days)
        bands = self.config["date_confidence"]
        if cv < bands["high_max_cv"]:
            confidence = "high"
        elif cv < bands["medium_max_cv"]:
            confidence = "medium"
        else:
            confidence = "low"

        return predicted, confidence

    def predict_next_amount(
        self, pattern: RecurringExpensePattern, trend: str | None
    ) -> tuple[float, tuple[float, float]]:
        predicted = pattern.typical_amount
        if trend == "increasing":
            predicted = pattern.typical_amount * self.config["increasing_multiplier"]
        elif trend == "decreasing":
            predicted = pattern.typical_amount * self.config["decreasing_multiplier"]

        spread = pattern.typical_amount * (pattern.amount_variance_pct / 100) * self.config["range_std_devs"]
        amount_range = (
            max(pattern.min_amount, predicted - spread),
            min(pattern.max_amount, predicted + spread),
        )
        return predicted, amount_range


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for positive values (30.5 days → 31)."""
    return int(math.floor(value + 0.5))
