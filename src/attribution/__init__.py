"""Experiment attribution and aggregation over Enriched Event decisions and conversions."""

from .schema import (
    AttributionPolicy,
    AttributionResult,
    ConversionEvent,
    DecisionEvent,
    ExperimentRef,
    Metric,
    SkipReport,
    TimeWindow,
)
from .errors import AttributionError, InvalidWindow, MissingField, UnknownPolicy
from .config import AttributionConfig, load_config
from .subjects import attribute_subjects, attribute_subjects_with_report
from .conversions import attribute_conversions
from .aggregate import aggregate, count_web_subjects
from .event_store import (
    append_conversions,
    append_decisions,
    read_conversions,
    read_decisions,
    read_subjects,
    write_outputs,
)
from .pipeline import run_attribution, run_from_store

__all__ = [
    "AttributionPolicy",
    "AttributionResult",
    "ConversionEvent",
    "DecisionEvent",
    "ExperimentRef",
    "Metric",
    "SkipReport",
    "TimeWindow",
    "AttributionError",
    "InvalidWindow",
    "MissingField",
    "UnknownPolicy",
    "AttributionConfig",
    "load_config",
    "attribute_subjects",
    "attribute_subjects_with_report",
    "attribute_conversions",
    "aggregate",
    "count_web_subjects",
    "append_conversions",
    "append_decisions",
    "read_conversions",
    "read_decisions",
    "read_subjects",
    "write_outputs",
    "run_attribution",
    "run_from_store",
]
