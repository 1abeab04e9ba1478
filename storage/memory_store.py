"""
memory_store.py
----------------
In-process implementations of the repositories in base_store.

Records are copied on the way in and on the way out, so callers never hold
a live reference into the store: what the cash reservation pass reads is
exactly what the detection pass committed.
"""

import copy
from dataclasses import fields as dataclass_fields
from datetime import datetime
from typing import Dict, List

import pandas as pd

from core.models import Anomaly, ExpenseCorrection, RecurringExpensePattern, Transaction
from storage.base_store import (
    PRESERVED_FIELDS,
    STICKY_FLAGS,
    AnomalyStore,
    CorrectionStore,
    PatternStore,
    TransactionReader,
)

TRANSACTION_COLUMNS = ["id", "description", "amount", "occurred_on"]
PATTERN_FIELDS = {f.name for f in dataclass_fields(RecurringExpensePattern)}


class InMemoryTransactionReader(TransactionReader):
    def __init__(self, transactions: List[Transaction] | pd.DataFrame | None = None):
        if isinstance(transactions, pd.DataFrame):
            self._df = transactions.copy()
        else:
            rows = [
                {"id": t.id, "description": t.description, "amount": t.amount, "occurred_on": t.occurred_on}
                for t in transactions or []
            ]
            self._df = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)

    def read_expense_transactions(self) -> pd.DataFrame:
        return self._df.copy()


class InMemoryPatternStore(PatternStore):
    def __init__(self):
        self._by_id: Dict[int, RecurringExpensePattern] = {}
        self._id_by_key: Dict[str, int] = {}
        self._next_id = 1

    def get(self, pattern_id: int) -> RecurringExpensePattern | None:
        pattern = self._by_id.get(pattern_id)
        return copy.deepcopy(pattern) if pattern is not None else None

    def get_by_key(self, merchant_key: str) -> RecurringExpensePattern | None:
        pattern_id = self._id_by_key.get(merchant_key)
        return self.get(pattern_id) if pattern_id is not None else None

    def upsert(
        self,
        pattern: RecurringExpensePattern,
        preserve_fields: tuple = PRESERVED_FIELDS,
    ) -> RecurringExpensePattern:
        incoming = copy.deepcopy(pattern)
        incoming.updated_at = datetime.now()
        pattern_id = self._id_by_key.get(incoming.merchant_key)

        if pattern_id is None:
            incoming.id = self._next_id
            incoming.detected_at = incoming.detected_at or incoming.updated_at
            self._next_id += 1
            self._id_by_key[incoming.merchant_key] = incoming.id
        else:
            existing = self._by_id[pattern_id]
            for name in preserve_fields:
                setattr(incoming, name, getattr(existing, name))
            for name in STICKY_FLAGS:
                setattr(incoming, name, getattr(existing, name) or getattr(incoming, name))

        self._by_id[incoming.id] = incoming
        return copy.deepcopy(incoming)

    def update_fields(self, pattern_id: int, **fields) -> RecurringExpensePattern:
        if pattern_id not in self._by_id:
            raise KeyError(f"No pattern with id {pattern_id}")
        unknown = set(fields) - PATTERN_FIELDS
        if unknown:
            raise ValueError(f"Unknown pattern fields: {sorted(unknown)}")

        stored = self._by_id[pattern_id]
        for name, value in fields.items():
            setattr(stored, name, copy.deepcopy(value))
        stored.updated_at = datetime.now()
        return copy.deepcopy(stored)

    def list_patterns(
        self,
        expense_type: str | None = None,
        priority: str | None = None,
        confidence: str | None = None,
        tracked_only: bool = False,
        include_excluded: bool = False,
    ) -> List[RecurringExpensePattern]:
        results = []
        for pattern in self._by_id.values():
            if pattern.user_excluded and not include_excluded:
                continue
            if tracked_only and not pattern.tracked:
                continue
            if expense_type and pattern.expense_type != expense_type:
                continue
            if priority and pattern.priority != priority:
                continue
            if confidence and pattern.confidence != confidence:
                continue
            results.append(copy.deepcopy(pattern))
        return results


class InMemoryAnomalyStore(AnomalyStore):
    def __init__(self):
        self._by_id: Dict[int, Anomaly] = {}
        self._keys: set = set()
        self._next_id = 1

    def insert(self, anomaly: Anomaly) -> bool:
        if anomaly.dedupe_key in self._keys:
            return False

        stored = copy.deepcopy(anomaly)
        stored.id = self._next_id
        stored.created_at = stored.created_at or datetime.now()
        self._next_id += 1

        self._by_id[stored.id] = stored
        self._keys.add(stored.dedupe_key)
        return True

    def get(self, anomaly_id: int) -> Anomaly | None:
        anomaly = self._by_id.get(anomaly_id)
        return copy.deepcopy(anomaly) if anomaly is not None else None

    def list_for_pattern(
        self, pattern_id: int, include_acknowledged: bool = False, limit: int | None = 10
    ) -> List[Anomaly]:
        matches = [
            a for a in self.list_anomalies(include_acknowledged=include_acknowledged)
            if a.pattern_id == pattern_id
        ]
        return matches[:limit] if limit is not None else matches

    def list_anomalies(self, include_acknowledged: bool = False) -> List[Anomaly]:
        anomalies = [
            copy.deepcopy(a) for a in self._by_id.values()
            if include_acknowledged or not a.user_acknowledged
        ]
        anomalies.sort(key=lambda a: (a.detected_date, a.id), reverse=True)
        return anomalies

    def acknowledge(self, anomaly_id: int) -> Anomaly:
        if anomaly_id not in self._by_id:
            raise KeyError(f"No anomaly with id {anomaly_id}")
        self._by_id[anomaly_id].user_acknowledged = True
        return copy.deepcopy(self._by_id[anomaly_id])


class InMemoryCorrectionStore(CorrectionStore):
    def __init__(self):
        self._corrections: Dict[str, ExpenseCorrection] = {}

    def set_correction(
        self, merchant_key: str, is_recurring: bool, note: str | None = None
    ) -> ExpenseCorrection:
        correction = ExpenseCorrection(merchant_key=merchant_key, is_recurring=is_recurring, note=note)
        self._corrections[merchant_key] = correction
        return copy.deepcopy(correction)

    def get(self, merchant_key: str) -> ExpenseCorrection | None:
        correction = self._corrections.get(merchant_key)
        return copy.deepcopy(correction) if correction is not None else None

    def list_corrections(self) -> List[ExpenseCorrection]:
        return sorted(
            (copy.deepcopy(c) for c in self._corrections.values()),
            key=lambda c: c.marked_at,
            reverse=True,
        )
