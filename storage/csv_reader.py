"""
csv_reader.py
--------------
Loads expense transactions and user corrections from CSV exports.

Transactions CSV columns: id, description, amount, occurred_on
Corrections CSV columns:  merchant_key, is_recurring[, note]

Dates are left as text; the aggregator parses them row by row so a single
malformed date only drops that row.
"""

import os

import pandas as pd

from storage.base_store import CorrectionStore, TransactionReader

TRUE_VALUES = {"1", "true", "yes", "y", "t"}


class CsvTransactionReader(TransactionReader):
    def __init__(self, path: str):
        if not os.path.exists(path):
            raise FileNotFoundError(f"Transactions file not found: {path}")
        self.path = path

    def read_expense_transactions(self) -> pd.DataFrame:
        return pd.read_csv(self.path, dtype={"description": str, "occurred_on": str})


def load_corrections(path: str, correction_store: CorrectionStore) -> int:
    """
    Loads a corrections CSV into a correction store.

    Returns:
        Number of corrections loaded.

    Raises:
        ValueError: If required columns are missing.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Corrections file not found: {path}")

    df = pd.read_csv(path, dtype=str).fillna("")
    missing = [c for c in ("merchant_key", "is_recurring") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    for row in df.itertuples(index=False):
        correction_store.set_correction(
            merchant_key=row.merchant_key.strip(),
            is_recurring=row.is_recurring.strip().lower() in TRUE_VALUES,
            note=getattr(row, "note", "") or None,
        )
    return len(df)
