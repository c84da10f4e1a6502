"""
Event store for decision and conversion events, and writer for run outputs.

Each dataset lives under <base_dir>/<dataset>/ as parquet (or JSON lines) part
files, read in file-name order; that order is the ingestion order used for
tie-breaking. Outputs are written to a staging directory and swapped into
place, so every run fully replaces the previous one.
"""

import json
import logging
import shutil
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import pandas as pd

from .frames import utc_timestamps
from .schema import (
    ATTRIBUTED_EXPERIMENTS,
    CONVERSION_COLUMNS,
    DECISION_COLUMNS,
    DEFAULT_SUBJECT_KEY,
    EXPERIMENT_ID,
    TIMESTAMP,
    AttributionResult,
    ConversionEvent,
    DecisionEvent,
    TimeWindow,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = "data/events"
DEFAULT_OUTPUT_DIR = "artifacts/attribution"

DECISIONS = "decisions"
CONVERSIONS = "conversions"

_SUFFIXES = (".parquet", ".jsonl", ".json")


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _dataset_files(dataset: str, base_dir: str) -> List[Path]:
    root = Path(base_dir)
    path = root / dataset
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.suffix in _SUFFIXES)
    for suffix in _SUFFIXES:
        candidate = root / f"{dataset}{suffix}"
        if candidate.exists():
            return [candidate]
    return []


def _read_table(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_json(path, lines=True, convert_dates=False, dtype=False)


def _read_dataset(
    dataset: str,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    base_dir: str,
    columns: List[str],
) -> pd.DataFrame:
    window = TimeWindow(start_date, end_date).validate()
    files = _dataset_files(dataset, base_dir)
    if files:
        df = pd.concat([_read_table(p) for p in files], ignore_index=True)
    else:
        # empty snapshot keeps the columns the engine requires
        logger.warning(f"No {dataset} files found under {base_dir}")
        df = pd.DataFrame(columns=columns)
    if TIMESTAMP in df.columns:
        df[TIMESTAMP] = utc_timestamps(df[TIMESTAMP])
        # rows with unreadable timestamps are left for the engine to report
        keep = window.mask(df[TIMESTAMP]) | df[TIMESTAMP].isna()
        df = df[keep].reset_index(drop=True)
    logger.info(f"Read {len(df)} {dataset} from {len(files)} file(s) under {base_dir}")
    return df


def read_decisions(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    base_dir: str = DEFAULT_STORE_DIR,
    subject_key: str = DEFAULT_SUBJECT_KEY,
) -> pd.DataFrame:
    """
    Read decision events, optionally restricted to an inclusive time window.

    Args:
        start_date: Optional start of time window
        end_date: Optional end of time window
        base_dir: Base directory of the event store
        subject_key: Subject column kept on the empty frame when nothing is stored

    Returns:
        DataFrame with decision events in ingestion order
    """
    return _read_dataset(
        DECISIONS, start_date, end_date, base_dir, [subject_key] + DECISION_COLUMNS
    )


def read_conversions(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    base_dir: str = DEFAULT_STORE_DIR,
    subject_key: str = DEFAULT_SUBJECT_KEY,
) -> pd.DataFrame:
    """Read conversion events, optionally restricted to an inclusive time window."""
    columns = [subject_key] + CONVERSION_COLUMNS + [ATTRIBUTED_EXPERIMENTS]
    return _read_dataset(CONVERSIONS, start_date, end_date, base_dir, columns)


def _decision_to_row(evt: DecisionEvent) -> dict:
    row = dict(evt.metadata)
    row.update({
        "visitor_id": evt.visitor_id,
        "experiment_id": evt.experiment_id,
        "variation_id": evt.variation_id,
        "timestamp": evt.timestamp,
        "is_holdback": evt.is_holdback,
    })
    return row


def _conversion_to_row(evt: ConversionEvent) -> dict:
    row = dict(evt.metadata)
    row.update({
        "visitor_id": evt.visitor_id,
        "event_name": evt.event_name,
        "timestamp": evt.timestamp,
        "revenue": evt.revenue,
        ATTRIBUTED_EXPERIMENTS: [asdict(ref) for ref in evt.attributed_experiments],
    })
    return row


def _append(rows: List[dict], dataset: str, base_dir: str) -> int:
    path = _ensure_dir(Path(base_dir) / dataset)
    n_parts = len([p for p in path.iterdir() if p.suffix == ".parquet"])
    part = path / f"part-{n_parts:05d}.parquet"
    df = pd.DataFrame(rows)
    if TIMESTAMP in df.columns:
        df[TIMESTAMP] = utc_timestamps(df[TIMESTAMP])
    df.to_parquet(part, index=False)
    logger.info(f"Appended {len(rows)} {dataset} to {part}")
    return len(rows)


def append_decisions(events: List[DecisionEvent], base_dir: str = DEFAULT_STORE_DIR) -> int:
    """
    Append decision events as a new part file.

    Returns:
        Number of events appended
    """
    if not events:
        return 0
    return _append([_decision_to_row(e) for e in events], DECISIONS, base_dir)


def append_conversions(events: List[ConversionEvent], base_dir: str = DEFAULT_STORE_DIR) -> int:
    """Append conversion events as a new part file."""
    if not events:
        return 0
    return _append([_conversion_to_row(e) for e in events], CONVERSIONS, base_dir)


def _write_subjects(subjects: pd.DataFrame, out_dir: Path) -> None:
    root = _ensure_dir(out_dir / "subjects")
    for exp_id, part in subjects.groupby(EXPERIMENT_ID, sort=True):
        # URL-quoted so an id containing "/" stays one directory deep
        part_dir = _ensure_dir(root / f"{EXPERIMENT_ID}={quote(str(exp_id), safe='')}")
        part.reset_index(drop=True).to_parquet(part_dir / "part-0.parquet", index=False)


def write_outputs(
    result: AttributionResult,
    output_dir: str = DEFAULT_OUTPUT_DIR,
    config: Optional[dict] = None,
) -> Path:
    """
    Write a run's outputs, replacing whatever a previous run left there.

    Layout:
        subjects/experiment_id=<url-quoted id>/part-0.parquet
        subject_counts.csv, conversion_counts.csv, web_subject_counts.csv (Web)
        run_summary.json

    Returns:
        Path of the output directory
    """
    out_dir = Path(output_dir)
    _ensure_dir(out_dir.parent)
    staging = out_dir.parent / f".{out_dir.name}.staging"
    previous = out_dir.parent / f".{out_dir.name}.previous"
    for leftover in (staging, previous):
        if leftover.exists():
            shutil.rmtree(leftover)
    _ensure_dir(staging)

    _write_subjects(result.subjects, staging)
    result.subject_counts.to_csv(staging / "subject_counts.csv", index=False)
    result.conversion_counts.to_csv(staging / "conversion_counts.csv", index=False)
    if result.web_subject_counts is not None:
        result.web_subject_counts.to_csv(staging / "web_subject_counts.csv", index=False)

    summary = result.summary()
    if config is not None:
        summary["config"] = config
    with open(staging / "run_summary.json", "w") as f:
        json.dump(summary, f, indent=2, sort_keys=True)

    if out_dir.exists():
        out_dir.rename(previous)
    staging.rename(out_dir)
    if previous.exists():
        shutil.rmtree(previous)

    logger.info(f"Outputs written to {out_dir}")
    return out_dir


def read_subjects(output_dir: str = DEFAULT_OUTPUT_DIR) -> pd.DataFrame:
    """Read back the subject assignment partitions of a finished run."""
    root = Path(output_dir) / "subjects"
    if not root.exists():
        return pd.DataFrame()
    parts = sorted(root.glob(f"{EXPERIMENT_ID}=*/*.parquet"))
    if not parts:
        return pd.DataFrame()
    return pd.concat([pd.read_parquet(p) for p in parts], ignore_index=True)
