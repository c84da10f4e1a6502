"""
Conversion attribution under the Full-Stack and Web policies.

Full-Stack: a conversion is credited to the subject's first non-holdback
decision for each experiment, provided both the decision and the conversion
fall inside the window and the conversion is not earlier than the decision.

Web: a conversion is credited to every experiment listed in its own
attributed_experiments field (resolved upstream at send time). Only the
conversion timestamp is checked against the window.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from .frames import (
    ORDER_COL,
    drop_incomplete,
    require_columns,
    utc_timestamps,
    with_ingest_order,
)
from .schema import (
    ATTRIBUTED_EXPERIMENTS,
    DEFAULT_SUBJECT_KEY,
    EVENT_NAME,
    EXPERIMENT_ID,
    REVENUE,
    TIMESTAMP,
    VARIATION_ID,
    AttributionOutcome,
    AttributionPolicy,
    ExperimentRef,
    SkipReport,
    TimeWindow,
)
from .subjects import attribute_subjects_with_report, validate_decisions

logger = logging.getLogger(__name__)

SKIP_CONVERSION_INCOMPLETE = "conversion_missing_fields"
SKIP_BAD_EXPERIMENT_LIST = "conversion_malformed_attributed_experiments"
SKIP_BAD_EXPERIMENT_ENTRY = "conversion_malformed_experiment_entry"

_DECISION_TS = "_decision_timestamp"


def attribution_columns(subject_key: str = DEFAULT_SUBJECT_KEY) -> list:
    """Column layout of the attribution record table."""
    return [EXPERIMENT_ID, VARIATION_ID, EVENT_NAME, subject_key, REVENUE, TIMESTAMP]


def _prepare_conversions(
    conversions: pd.DataFrame,
    window: TimeWindow,
    subject_key: str,
    extra_cols: list,
    skipped: SkipReport,
) -> pd.DataFrame:
    cols = [subject_key, EVENT_NAME, TIMESTAMP, REVENUE] + extra_cols
    df = with_ingest_order(conversions, cols)
    df[TIMESTAMP] = utc_timestamps(df[TIMESTAMP])
    df = drop_incomplete(
        df, [subject_key, EVENT_NAME, TIMESTAMP], "conversion", SKIP_CONVERSION_INCOMPLETE, skipped
    )
    return df[window.mask(df[TIMESTAMP])]


def _finish(records: pd.DataFrame, subject_key: str) -> pd.DataFrame:
    records = records.sort_values([TIMESTAMP, ORDER_COL, EXPERIMENT_ID], kind="mergesort")
    return records[attribution_columns(subject_key)].reset_index(drop=True)


def attribute_full_stack(
    conversions: pd.DataFrame,
    decisions: pd.DataFrame,
    window: TimeWindow,
    subject_key: str,
) -> AttributionOutcome:
    first, skipped = attribute_subjects_with_report(
        decisions, window, subject_key, exclude_holdback=True
    )
    conv = _prepare_conversions(conversions, window, subject_key, [], skipped)

    exposures = first[[EXPERIMENT_ID, subject_key, VARIATION_ID, TIMESTAMP]].rename(
        columns={TIMESTAMP: _DECISION_TS}
    )
    joined = conv.merge(exposures, on=subject_key, how="inner")
    joined = joined[joined[TIMESTAMP] >= joined[_DECISION_TS]]

    records = _finish(joined, subject_key)
    logger.info(
        f"Full-Stack attribution: {len(conv)} conversions in window, "
        f"{len(first)} qualifying exposures -> {len(records)} attributed"
    )
    return AttributionOutcome(records=records, skipped=skipped)


def _is_sequence(value) -> bool:
    return isinstance(value, (list, tuple, np.ndarray))


def _is_empty_entry(entry) -> bool:
    return entry is None or (isinstance(entry, float) and np.isnan(entry))


def _parse_ref(entry):
    """Return (experiment_id, variation_id) for one list entry, or None."""
    if isinstance(entry, ExperimentRef):
        exp_id, var_id = entry.experiment_id, entry.variation_id
    elif isinstance(entry, dict):
        exp_id, var_id = entry.get(EXPERIMENT_ID), entry.get(VARIATION_ID)
    else:
        return None
    if exp_id is None or var_id is None or pd.isna(exp_id) or pd.isna(var_id):
        return None
    return exp_id, var_id


def attribute_web(
    conversions: pd.DataFrame,
    window: TimeWindow,
    subject_key: str,
) -> AttributionOutcome:
    skipped = SkipReport()
    conv = _prepare_conversions(conversions, window, subject_key, [ATTRIBUTED_EXPERIMENTS], skipped)

    valid = conv[ATTRIBUTED_EXPERIMENTS].map(_is_sequence).astype(bool)
    for order in conv.loc[~valid, ORDER_COL]:
        logger.warning(
            f"Skipping conversion record #{order}: {ATTRIBUTED_EXPERIMENTS} is missing or not a list"
        )
    skipped.add(SKIP_BAD_EXPERIMENT_LIST, int((~valid).sum()))

    # one row per listed experiment; empty lists explode to a single NaN entry
    exploded = conv[valid].explode(ATTRIBUTED_EXPERIMENTS)
    exploded = exploded[~exploded[ATTRIBUTED_EXPERIMENTS].map(_is_empty_entry).astype(bool)]

    refs = exploded[ATTRIBUTED_EXPERIMENTS].map(_parse_ref)
    bad = refs.isna()
    for order in exploded.loc[bad, ORDER_COL]:
        logger.warning(
            f"Skipping an {ATTRIBUTED_EXPERIMENTS} entry on conversion record #{order}: "
            f"needs {EXPERIMENT_ID} and {VARIATION_ID}"
        )
    skipped.add(SKIP_BAD_EXPERIMENT_ENTRY, int(bad.sum()))

    exploded = exploded[~bad].copy()
    refs = refs[~bad]
    exploded[EXPERIMENT_ID] = [r[0] for r in refs]
    exploded[VARIATION_ID] = [r[1] for r in refs]
    # at most one variation per experiment per conversion: first listed wins
    exploded = exploded.drop_duplicates(subset=[ORDER_COL, EXPERIMENT_ID], keep="first")

    records = _finish(exploded, subject_key)
    logger.info(
        f"Web attribution: {len(conv)} conversions in window -> {len(records)} attributed"
    )
    return AttributionOutcome(records=records, skipped=skipped)


def validate_conversions(
    conversions: pd.DataFrame,
    policy: AttributionPolicy,
    subject_key: str,
) -> None:
    required = [subject_key, EVENT_NAME, TIMESTAMP]
    if policy is AttributionPolicy.WEB:
        required.append(ATTRIBUTED_EXPERIMENTS)
    require_columns(conversions, required, "conversions")


def attribute_conversions(
    conversions: pd.DataFrame,
    decisions: Optional[pd.DataFrame] = None,
    window: Optional[TimeWindow] = None,
    policy=None,
    subject_key: str = DEFAULT_SUBJECT_KEY,
) -> AttributionOutcome:
    """
    Attribute conversion events to experiment variations.

    Args:
        conversions: Conversion events
        decisions: Decision events (required for the Full-Stack policy)
        window: Inclusive analysis window; None means all time
        policy: 'full_stack' or 'web' (or an AttributionPolicy); no default
        subject_key: Column identifying the subject on both datasets

    Returns:
        AttributionOutcome with one record per (conversion, experiment) credited
    """
    policy = AttributionPolicy.parse(policy)
    window = (window or TimeWindow()).validate()
    validate_conversions(conversions, policy, subject_key)

    if policy is AttributionPolicy.FULL_STACK:
        if decisions is None:
            raise ValueError("Full-Stack attribution requires decision events")
        validate_decisions(decisions, window, subject_key, exclude_holdback=True)
        return attribute_full_stack(conversions, decisions, window, subject_key)
    return attribute_web(conversions, window, subject_key)
