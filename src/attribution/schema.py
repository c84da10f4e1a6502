"""
Data models for the experiment attribution engine.

Dataclass schemas for decision and conversion events, the analysis window,
derived subject assignments / attribution records, and run results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

from .errors import InvalidWindow, UnknownPolicy

DEFAULT_SUBJECT_KEY = "visitor_id"

# Column names shared by both datasets
EXPERIMENT_ID = "experiment_id"
VARIATION_ID = "variation_id"
TIMESTAMP = "timestamp"
IS_HOLDBACK = "is_holdback"
EVENT_NAME = "event_name"
REVENUE = "revenue"
ATTRIBUTED_EXPERIMENTS = "attributed_experiments"

DECISION_COLUMNS = [EXPERIMENT_ID, VARIATION_ID, TIMESTAMP, IS_HOLDBACK]
CONVERSION_COLUMNS = [EVENT_NAME, TIMESTAMP, REVENUE]


class AttributionPolicy(str, Enum):
    """Rule set for crediting conversions to experiment variations."""
    FULL_STACK = "full_stack"  # first non-holdback decision inside the window
    WEB = "web"  # experiments listed on the event at send time

    @classmethod
    def parse(cls, value) -> "AttributionPolicy":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        raise UnknownPolicy(value)


class Metric(str, Enum):
    """Aggregate metrics."""
    COUNT_DISTINCT_SUBJECTS = "count_distinct_subjects"
    COUNT_ROWS = "count_rows"
    SUM_REVENUE = "sum_revenue"


def to_utc(value) -> Optional[pd.Timestamp]:
    """Coerce an instant to a UTC pandas Timestamp; naive values are read as UTC."""
    if value is None:
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] analysis window. A None bound is open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def validate(self) -> "TimeWindow":
        start, end = to_utc(self.start), to_utc(self.end)
        if start is not None and end is not None and start > end:
            raise InvalidWindow(start, end)
        return self

    def mask(self, timestamps: pd.Series) -> pd.Series:
        """Boolean mask of timestamps inside the window (both ends inclusive)."""
        keep = timestamps.notna()
        start, end = to_utc(self.start), to_utc(self.end)
        if start is not None:
            keep &= timestamps >= start
        if end is not None:
            keep &= timestamps <= end
        return keep

    def to_dict(self) -> Dict[str, Optional[str]]:
        start, end = to_utc(self.start), to_utc(self.end)
        return {
            "start": start.isoformat() if start is not None else None,
            "end": end.isoformat() if end is not None else None,
        }


@dataclass
class ExperimentRef:
    """One entry of a conversion's attributed_experiments list."""
    experiment_id: str
    variation_id: str
    is_holdback: bool = False


@dataclass
class DecisionEvent:
    """Exposure of a subject to one variation of an experiment."""
    visitor_id: str
    experiment_id: str
    variation_id: str
    timestamp: datetime
    is_holdback: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)  # pass-through columns


@dataclass
class ConversionEvent:
    """Business event that may be credited to running experiments."""
    visitor_id: str
    event_name: str
    timestamp: datetime
    revenue: Optional[int] = None
    attributed_experiments: List[ExperimentRef] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SkipReport:
    """Counts of records skipped during a run, keyed by reason."""
    counts: Dict[str, int] = field(default_factory=dict)

    def add(self, reason: str, n: int = 1) -> None:
        if n:
            self.counts[reason] = self.counts.get(reason, 0) + n

    def merge(self, other: "SkipReport") -> "SkipReport":
        for reason, n in other.counts.items():
            self.add(reason, n)
        return self

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, int]:
        return dict(sorted(self.counts.items()))


@dataclass
class AttributionOutcome:
    """Attribution records plus what was skipped producing them."""
    records: pd.DataFrame
    skipped: SkipReport = field(default_factory=SkipReport)


@dataclass
class AttributionResult:
    """Complete output of one attribution run."""
    subjects: pd.DataFrame
    attributions: pd.DataFrame
    subject_counts: pd.DataFrame
    conversion_counts: pd.DataFrame
    web_subject_counts: Optional[pd.DataFrame] = None
    skipped: SkipReport = field(default_factory=SkipReport)

    def summary(self) -> Dict[str, Any]:
        """Row counts and skip counts; JSON-serializable."""
        d = {
            "n_subjects": int(len(self.subjects)),
            "n_attributions": int(len(self.attributions)),
            "n_subject_count_rows": int(len(self.subject_counts)),
            "n_conversion_count_rows": int(len(self.conversion_counts)),
            "skipped": self.skipped.to_dict(),
            "skipped_total": self.skipped.total,
        }
        if self.web_subject_counts is not None:
            d["n_web_subject_count_rows"] = int(len(self.web_subject_counts))
        return d
