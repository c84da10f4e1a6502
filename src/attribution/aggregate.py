"""
Aggregation of subject assignments and attribution records.

Output is wide: the group-by columns followed by one column per requested
metric, named after the metric and sorted ascending by the group-by columns.
"""

import logging
from typing import Iterable, List

import pandas as pd
from joblib import Parallel, delayed

from .frames import require_columns
from .schema import (
    DEFAULT_SUBJECT_KEY,
    EXPERIMENT_ID,
    REVENUE,
    VARIATION_ID,
    Metric,
)

logger = logging.getLogger(__name__)


def _parse_metrics(metrics: Iterable) -> List[Metric]:
    if isinstance(metrics, (str, Metric)):
        metrics = [metrics]
    parsed = []
    for m in metrics:
        try:
            metric = Metric(m)
        except ValueError:
            raise ValueError(
                f"Unknown metric {m!r}; expected one of {[x.value for x in Metric]}"
            ) from None
        if metric not in parsed:
            parsed.append(metric)
    if not parsed:
        raise ValueError("At least one metric is required")
    # fixed column order regardless of how metrics were requested
    return [m for m in Metric if m in parsed]


def _revenue(values: pd.Series) -> pd.Series:
    """Numeric revenue with absent values counted as zero."""
    return pd.to_numeric(values, errors="coerce").fillna(0)


def _aggregate_partition(
    records: pd.DataFrame,
    group_by: List[str],
    metrics: List[Metric],
    subject_key: str,
) -> pd.DataFrame:
    grouped = records.groupby(group_by, sort=True, dropna=False)
    columns = {}
    for metric in metrics:
        if metric is Metric.COUNT_DISTINCT_SUBJECTS:
            columns[metric.value] = grouped[subject_key].nunique()
        elif metric is Metric.COUNT_ROWS:
            columns[metric.value] = grouped.size()
        elif metric is Metric.SUM_REVENUE:
            revenue = _revenue(records[REVENUE])
            columns[metric.value] = revenue.groupby(
                [records[c] for c in group_by], sort=True, dropna=False
            ).sum()
    return pd.concat(columns, axis=1).reset_index()


def _finalize(out: pd.DataFrame, group_by: List[str], metrics: List[Metric]) -> pd.DataFrame:
    out = out.sort_values(group_by, kind="mergesort").reset_index(drop=True)
    for metric in metrics:
        col = out[metric.value]
        if metric is not Metric.SUM_REVENUE:
            out[metric.value] = col.astype("int64")
        elif len(col) and (col % 1 == 0).all():
            out[metric.value] = col.astype("int64")
    return out[group_by + [m.value for m in metrics]]


def aggregate(
    records: pd.DataFrame,
    group_by: List[str],
    metrics: Iterable,
    subject_key: str = DEFAULT_SUBJECT_KEY,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Reduce records into per-group counts and sums.

    Args:
        records: Subject assignments or attribution records
        group_by: Ordered columns to partition by
        metrics: Subset of count_distinct_subjects, count_rows, sum_revenue
        subject_key: Subject column used by count_distinct_subjects
        n_jobs: joblib workers; rows are sharded by the first group-by column

    Returns:
        DataFrame with group_by columns followed by one column per metric
    """
    group_by = list(group_by)
    if not group_by:
        raise ValueError("group_by must name at least one column")
    metrics = _parse_metrics(metrics)

    require_columns(records, group_by, "records")
    if Metric.COUNT_DISTINCT_SUBJECTS in metrics:
        require_columns(records, [subject_key], "records")
    if Metric.SUM_REVENUE in metrics:
        require_columns(records, [REVENUE], "records")

    if records.empty:
        empty = pd.DataFrame(columns=group_by + [m.value for m in metrics])
        return _finalize(empty, group_by, metrics)

    if n_jobs == 1:
        out = _aggregate_partition(records, group_by, metrics, subject_key)
    else:
        # each group lives in exactly one partition, so concatenation is the merge
        partitions = [
            part for _, part in records.groupby(group_by[0], sort=True, dropna=False)
        ]
        frames = Parallel(n_jobs=n_jobs)(
            delayed(_aggregate_partition)(part, group_by, metrics, subject_key)
            for part in partitions
        )
        out = pd.concat(frames, ignore_index=True)
        logger.info(f"Aggregated {len(partitions)} partitions with n_jobs={n_jobs}")

    return _finalize(out, group_by, metrics)


def count_web_subjects(
    assignments: pd.DataFrame,
    attributions: pd.DataFrame,
    subject_key: str = DEFAULT_SUBJECT_KEY,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Distinct subjects per (experiment_id, variation_id) under Web semantics.

    Unions first-exposure subjects (holdback included) with subjects carried
    by Web attribution records. A subject present in both counts once.
    """
    cols = [EXPERIMENT_ID, VARIATION_ID, subject_key]
    require_columns(assignments, cols, "assignments")
    require_columns(attributions, cols, "attributions")

    subjects = pd.concat([assignments[cols], attributions[cols]], ignore_index=True)
    subjects = subjects.dropna(subset=cols)
    return aggregate(
        subjects,
        [EXPERIMENT_ID, VARIATION_ID],
        [Metric.COUNT_DISTINCT_SUBJECTS],
        subject_key=subject_key,
        n_jobs=n_jobs,
    )
