"""
Attribution pipeline entrypoint.

Input: decision and conversion events plus an AttributionConfig.
Output: AttributionResult (subjects, attribution records, aggregate tables)
and, for store-backed runs, tables written to artifacts/attribution/.
"""

import logging
from typing import Optional

import pandas as pd

from .aggregate import aggregate, count_web_subjects
from .config import AttributionConfig
from .conversions import attribute_conversions, validate_conversions
from .event_store import (
    DEFAULT_OUTPUT_DIR,
    DEFAULT_STORE_DIR,
    read_conversions,
    read_decisions,
    write_outputs,
)
from .schema import (
    EVENT_NAME,
    EXPERIMENT_ID,
    VARIATION_ID,
    AttributionPolicy,
    AttributionResult,
    Metric,
)
from .subjects import (
    SKIP_DECISION_INCOMPLETE,
    attribute_subjects_with_report,
    validate_decisions,
)

logger = logging.getLogger(__name__)

SUBJECT_GROUP_BY = [EXPERIMENT_ID, VARIATION_ID]
CONVERSION_GROUP_BY = [EXPERIMENT_ID, VARIATION_ID, EVENT_NAME]


def run_attribution(
    decisions: pd.DataFrame,
    conversions: pd.DataFrame,
    config: AttributionConfig,
) -> AttributionResult:
    """
    Run subject attribution, conversion attribution and aggregation.

    Under Full-Stack, holdback decisions never produce a subject assignment.
    Under Web, subjects include every in-window decision and an extra
    web_subject_counts table unions them with converting subjects.

    All configuration and schema checks happen before any record is read, so
    an invalid run raises without producing partial output.
    """
    policy = config.require_policy()
    window = config.window.validate()
    key = config.subject_key
    full_stack = policy is AttributionPolicy.FULL_STACK

    validate_decisions(decisions, window, key, exclude_holdback=full_stack)
    validate_conversions(conversions, policy, key)

    subjects, skipped = attribute_subjects_with_report(
        decisions, window, key, exclude_holdback=full_stack
    )
    outcome = attribute_conversions(conversions, decisions, window, policy, key)
    # Full-Stack re-derives the same decision skips; count each record once
    for reason, n in outcome.skipped.counts.items():
        if not (full_stack and reason == SKIP_DECISION_INCOMPLETE):
            skipped.add(reason, n)

    subject_counts = aggregate(
        subjects, SUBJECT_GROUP_BY, [Metric.COUNT_DISTINCT_SUBJECTS],
        subject_key=key, n_jobs=config.n_jobs,
    )
    conversion_counts = aggregate(
        outcome.records, CONVERSION_GROUP_BY, [Metric.COUNT_ROWS, Metric.SUM_REVENUE],
        subject_key=key, n_jobs=config.n_jobs,
    )
    web_subject_counts = None
    if policy is AttributionPolicy.WEB:
        web_subject_counts = count_web_subjects(
            subjects, outcome.records, key, n_jobs=config.n_jobs
        )

    result = AttributionResult(
        subjects=subjects,
        attributions=outcome.records,
        subject_counts=subject_counts,
        conversion_counts=conversion_counts,
        web_subject_counts=web_subject_counts,
        skipped=skipped,
    )
    if skipped.total:
        logger.warning(f"Skipped {skipped.total} malformed records: {skipped.to_dict()}")
    logger.info(f"Attribution run complete ({policy.value}): {result.summary()}")
    return result


def run_from_store(
    config: AttributionConfig,
    data_dir: str = DEFAULT_STORE_DIR,
    output_dir: Optional[str] = DEFAULT_OUTPUT_DIR,
) -> AttributionResult:
    """
    Read events from the store, run attribution and write the output tables.

    Args:
        config: Run configuration (policy is required)
        data_dir: Event store base directory
        output_dir: Where outputs go; None skips writing

    Returns:
        AttributionResult
    """
    config.require_policy()
    window = config.window
    decisions = read_decisions(
        window.start, window.end, base_dir=data_dir, subject_key=config.subject_key
    )
    conversions = read_conversions(
        window.start, window.end, base_dir=data_dir, subject_key=config.subject_key
    )

    result = run_attribution(decisions, conversions, config)
    if output_dir is not None:
        write_outputs(result, output_dir, config=config.to_dict())
    return result
