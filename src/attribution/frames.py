"""DataFrame helpers shared by the attribution stages."""

import logging
from typing import Iterable, List

import numpy as np
import pandas as pd

from .errors import MissingField
from .schema import SkipReport

logger = logging.getLogger(__name__)

ORDER_COL = "_ingest_order"


def unique_columns(columns: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(columns))


def require_columns(df: pd.DataFrame, columns: Iterable[str], dataset: str) -> None:
    """Raise MissingField for the first required column absent from df."""
    for col in columns:
        if col not in df.columns:
            raise MissingField(col, dataset)


def utc_timestamps(values: pd.Series) -> pd.Series:
    """
    Normalize a column of instants to tz-aware UTC.

    Numeric values are epoch milliseconds. Strings may mix ISO-8601 shapes
    row to row. Naive datetimes are read as UTC. Unparseable values become NaT.
    """
    if pd.api.types.is_datetime64_any_dtype(values):
        ts = values
    elif pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values):
        ts = pd.to_datetime(values, unit="ms", utc=True, errors="coerce")
    else:
        ts = pd.to_datetime(values, utc=True, errors="coerce", format="ISO8601")
    if ts.dt.tz is None:
        return ts.dt.tz_localize("UTC")
    return ts.dt.tz_convert("UTC")


def with_ingest_order(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Copy the given columns and record each row's input position."""
    out = df.reindex(columns=unique_columns(columns)).copy()
    out[ORDER_COL] = np.arange(len(out))
    return out


def drop_incomplete(
    df: pd.DataFrame,
    columns: Iterable[str],
    dataset: str,
    reason: str,
    skipped: SkipReport,
) -> pd.DataFrame:
    """Drop rows with a null in any of columns, logging each and counting them."""
    columns = list(columns)
    bad = df[columns].isna().any(axis=1)
    n_bad = int(bad.sum())
    if n_bad:
        for _, row in df.loc[bad, columns + [ORDER_COL]].iterrows():
            missing = [c for c in columns if pd.isna(row[c])]
            logger.warning(
                f"Skipping {dataset} record #{row[ORDER_COL]}: missing {', '.join(missing)}"
            )
        skipped.add(reason, n_bad)
    return df.loc[~bad]
