"""Shared builders for decision and conversion frames."""
import pandas as pd
import pytest

from event_builders import t


@pytest.fixture
def make_decisions():
    def _make(rows):
        """rows: (visitor_id, experiment_id, variation_id, minute[, is_holdback])"""
        records = []
        for r in rows:
            records.append({
                "visitor_id": r[0],
                "experiment_id": r[1],
                "variation_id": r[2],
                "timestamp": t(r[3]) if r[3] is not None else None,
                "is_holdback": r[4] if len(r) > 4 else False,
                "account_id": "acct_1",
                "user_agent": "pytest",
            })
        return pd.DataFrame(records, columns=[
            "visitor_id", "experiment_id", "variation_id", "timestamp",
            "is_holdback", "account_id", "user_agent",
        ])
    return _make


@pytest.fixture
def make_conversions():
    def _make(rows):
        """rows: (visitor_id, event_name, minute, revenue[, attributed_experiments])"""
        records = []
        for r in rows:
            records.append({
                "visitor_id": r[0],
                "event_name": r[1],
                "timestamp": t(r[2]),
                "revenue": r[3],
                "attributed_experiments": r[4] if len(r) > 4 else [],
                "event_type": "other",
                "tags": {},
            })
        return pd.DataFrame(records, columns=[
            "visitor_id", "event_name", "timestamp", "revenue",
            "attributed_experiments", "event_type", "tags",
        ])
    return _make
