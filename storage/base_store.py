"""
base_store.py
--------------
Abstract repositories the engine reads from and writes to.

Every component receives its store explicitly; there is no module-level
database handle. Concrete stores only need to honour the contracts below.

Upsert contract (patterns), stated once:
    - Records are keyed by merchant_key.
    - On insert the store assigns `id` and keeps the incoming record.
    - On update every field is overwritten by the incoming record EXCEPT:
        * PRESERVED_FIELDS — the stored value always wins;
        * STICKY_FLAGS     — stored OR incoming (once true, stays true).

Insert contract (anomalies):
    - Deduplicated on (pattern_id, anomaly_type, detected_date, transaction_id).
    - A conflicting insert is a no-op and returns False.

Any other write failure raises StoreWriteError and must abort the run.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

import pandas as pd

from core.models import Anomaly, ExpenseCorrection, RecurringExpensePattern


PRESERVED_FIELDS = ("id", "detected_at", "user_excluded", "tracked")
STICKY_FLAGS = ("user_confirmed",)


class StoreWriteError(RuntimeError):
    """A store could not persist a record."""


class TransactionReader(ABC):
    @abstractmethod
    def read_expense_transactions(self) -> pd.DataFrame:
        """
        Returns every expense transaction as a DataFrame with columns
        id, description, amount, occurred_on.
        """
        ...


class PatternStore(ABC):
    @abstractmethod
    def get(self, pattern_id: int) -> RecurringExpensePattern | None:
        ...

    @abstractmethod
    def get_by_key(self, merchant_key: str) -> RecurringExpensePattern | None:
        ...

    @abstractmethod
    def upsert(
        self,
        pattern: RecurringExpensePattern,
        preserve_fields: tuple = PRESERVED_FIELDS,
    ) -> RecurringExpensePattern:
        """Insert or update by merchant_key. Returns the stored record."""
        ...

    @abstractmethod
    def update_fields(self, pattern_id: int, **fields) -> RecurringExpensePattern:
        """
        Partial update by id.

        Raises:
            KeyError: If no pattern has this id.
        """
        ...

    @abstractmethod
    def list_patterns(
        self,
        expense_type: str | None = None,
        priority: str | None = None,
        confidence: str | None = None,
        tracked_only: bool = False,
        include_excluded: bool = False,
    ) -> List[RecurringExpensePattern]:
        """Excluded patterns are left out unless include_excluded is set."""
        ...


class AnomalyStore(ABC):
    @abstractmethod
    def insert(self, anomaly: Anomaly) -> bool:
        """Returns True if stored, False if an identical anomaly already exists."""
        ...

    @abstractmethod
    def get(self, anomaly_id: int) -> Anomaly | None:
        ...

    @abstractmethod
    def list_for_pattern(
        self, pattern_id: int, include_acknowledged: bool = False, limit: int | None = 10
    ) -> List[Anomaly]:
        """Most recent first."""
        ...

    @abstractmethod
    def list_anomalies(self, include_acknowledged: bool = False) -> List[Anomaly]:
        ...

    @abstractmethod
    def acknowledge(self, anomaly_id: int) -> Anomaly:
        """
        Raises:
            KeyError: If no anomaly has this id.
        """
        ...


class CorrectionStore(ABC):
    @abstractmethod
    def set_correction(
        self, merchant_key: str, is_recurring: bool, note: str | None = None
    ) -> ExpenseCorrection:
        """Insert or replace the correction for a merchant."""
        ...

    @abstractmethod
    def get(self, merchant_key: str) -> ExpenseCorrection | None:
        ...

    @abstractmethod
    def list_corrections(self) -> List[ExpenseCorrection]:
        ...

    def as_mapping(self) -> Dict[str, bool]:
        """merchant_key → is_recurring, as consulted before classification."""
        return {c.merchant_key: c.is_recurring for c in self.list_corrections()}
