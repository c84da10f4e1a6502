"""
Run configuration for the attribution engine.

Loads YAML/JSON config files and returns an immutable AttributionConfig that is
passed by value into every engine call.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import UnknownPolicy
from .schema import DEFAULT_SUBJECT_KEY, AttributionPolicy, TimeWindow, to_utc


@dataclass(frozen=True)
class AttributionConfig:
    """Options recognized by the engine."""
    attribution_policy: Optional[AttributionPolicy] = None  # no default; callers choose
    subject_key: str = DEFAULT_SUBJECT_KEY
    window: TimeWindow = field(default_factory=TimeWindow)
    n_jobs: int = 1

    def __post_init__(self):
        if self.attribution_policy is not None:
            object.__setattr__(
                self, "attribution_policy", AttributionPolicy.parse(self.attribution_policy)
            )
        if not self.subject_key or not isinstance(self.subject_key, str):
            raise ValueError(f"subject_key must be a non-empty string, got {self.subject_key!r}")
        self.window.validate()
        # joblib semantics: positive worker count, or negative counting back from all CPUs
        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs == 0:
            raise ValueError(f"n_jobs must be a non-zero integer, got {self.n_jobs!r}")

    def require_policy(self) -> AttributionPolicy:
        if self.attribution_policy is None:
            raise UnknownPolicy(None)
        return self.attribution_policy

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AttributionConfig":
        win = d.get("window") or {}
        window = TimeWindow(
            start=to_utc(win.get("start")),
            end=to_utc(win.get("end")),
        )
        return cls(
            attribution_policy=d.get("attribution_policy"),
            subject_key=d.get("subject_key", DEFAULT_SUBJECT_KEY),
            window=window,
            n_jobs=int(d.get("n_jobs", 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribution_policy": (
                self.attribution_policy.value if self.attribution_policy else None
            ),
            "subject_key": self.subject_key,
            "window": self.window.to_dict(),
            "n_jobs": self.n_jobs,
        }


def load_config(path: str) -> AttributionConfig:
    """
    Load an attribution config from a YAML or JSON file.

    Example:
        attribution_policy: full_stack
        subject_key: visitor_id
        window:
          start: 2024-03-01T00:00:00Z
          end: 2024-03-31T23:59:59Z
    """
    text = Path(path).read_text(encoding="utf-8")
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"Config file must be a YAML/JSON object, got {type(obj).__name__}")
    return AttributionConfig.from_dict(obj)
