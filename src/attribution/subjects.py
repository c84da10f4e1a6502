"""
Experiment subjects: first exposure per (experiment, subject).

A subject's assignment is the decision with the minimum timestamp inside the
analysis window. Decisions sharing that timestamp are resolved by ingestion
order (the earliest row in the input wins), so reruns on the same input always
pick the same variation.
"""

import logging
from typing import Optional, Tuple

import pandas as pd

from .frames import (
    ORDER_COL,
    drop_incomplete,
    require_columns,
    utc_timestamps,
    with_ingest_order,
)
from .schema import (
    DEFAULT_SUBJECT_KEY,
    EXPERIMENT_ID,
    IS_HOLDBACK,
    TIMESTAMP,
    VARIATION_ID,
    SkipReport,
    TimeWindow,
)

logger = logging.getLogger(__name__)

SKIP_DECISION_INCOMPLETE = "decision_missing_fields"


def subject_columns(subject_key: str = DEFAULT_SUBJECT_KEY) -> list:
    """Column layout of the subject assignment table."""
    return [EXPERIMENT_ID, subject_key, VARIATION_ID, TIMESTAMP]


def validate_decisions(
    decisions: pd.DataFrame,
    window: Optional[TimeWindow],
    subject_key: str,
    exclude_holdback: bool = False,
) -> TimeWindow:
    """Eager checks run before any decision is scanned."""
    window = (window or TimeWindow()).validate()
    required = [subject_key, EXPERIMENT_ID, VARIATION_ID, TIMESTAMP]
    if exclude_holdback:
        required.append(IS_HOLDBACK)
    require_columns(decisions, required, "decisions")
    return window


def attribute_subjects_with_report(
    decisions: pd.DataFrame,
    window: Optional[TimeWindow] = None,
    subject_key: str = DEFAULT_SUBJECT_KEY,
    exclude_holdback: bool = False,
) -> Tuple[pd.DataFrame, SkipReport]:
    """
    Compute the first qualifying decision per (experiment_id, subject).

    Args:
        decisions: Decision events (extra pass-through columns are ignored)
        window: Inclusive analysis window; None means all time
        subject_key: Column identifying the subject (visitor_id, session_id, ...)
        exclude_holdback: Drop holdback decisions before picking the first one

    Returns:
        Tuple of (assignments DataFrame, SkipReport)
    """
    window = validate_decisions(decisions, window, subject_key, exclude_holdback)
    skipped = SkipReport()

    cols = [EXPERIMENT_ID, subject_key, VARIATION_ID, TIMESTAMP]
    if exclude_holdback:
        cols.append(IS_HOLDBACK)
    df = with_ingest_order(decisions, cols)
    df[TIMESTAMP] = utc_timestamps(df[TIMESTAMP])
    df = drop_incomplete(
        df, [EXPERIMENT_ID, subject_key, TIMESTAMP], "decision", SKIP_DECISION_INCOMPLETE, skipped
    )

    df = df[window.mask(df[TIMESTAMP])]
    if exclude_holdback:
        df = df[~df[IS_HOLDBACK].fillna(False).astype(bool)]

    first = (
        df.sort_values([TIMESTAMP, ORDER_COL], kind="mergesort")
        .drop_duplicates(subset=[EXPERIMENT_ID, subject_key], keep="first")
        .sort_values([TIMESTAMP, EXPERIMENT_ID, subject_key], kind="mergesort")
    )
    assignments = first[subject_columns(subject_key)].reset_index(drop=True)

    logger.info(
        f"Subject attribution: {len(df)} decisions in window -> "
        f"{len(assignments)} assignments across "
        f"{assignments[EXPERIMENT_ID].nunique()} experiments"
    )
    return assignments, skipped


def attribute_subjects(
    decisions: pd.DataFrame,
    window: Optional[TimeWindow] = None,
    subject_key: str = DEFAULT_SUBJECT_KEY,
    exclude_holdback: bool = False,
) -> pd.DataFrame:
    """First-exposure assignment table; see attribute_subjects_with_report."""
    assignments, _ = attribute_subjects_with_report(
        decisions, window, subject_key, exclude_holdback
    )
    return assignments
