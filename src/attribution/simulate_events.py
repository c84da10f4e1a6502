"""
Synthetic Enriched Event generator.

Produces decision and conversion events for a set of concurrently running
experiments so the pipeline can be exercised end to end without a real event
feed. Variations are drawn at random; this is not a bucketing implementation.

Writes DecisionEvent and ConversionEvent to event_store. Returns run summary.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import numpy as np

from .event_store import DEFAULT_STORE_DIR, append_conversions, append_decisions
from .schema import ConversionEvent, DecisionEvent, ExperimentRef

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42
DEFAULT_EXPERIMENTS = {
    "exp_checkout_button": ["control", "green_button"],
    "exp_free_shipping": ["control", "threshold_50", "threshold_25"],
}
DEFAULT_EVENTS = ["add_to_cart", "purchase"]


def simulate_events(
    n_visitors: int = 500,
    experiments: Optional[Dict[str, List[str]]] = None,
    event_names: Optional[List[str]] = None,
    start: datetime = datetime(2024, 3, 1),
    days: int = 14,
    holdback_rate: float = 0.05,
    conversion_rate: float = 0.3,
    random_seed: int = SIMULATOR_SEED,
):
    """
    Generate decision and conversion events.

    Each visitor gets one to three decisions per experiment (repeat exposures
    keep the same variation, as a sticky SDK would) and a Poisson number of
    conversions after their first exposure. Web conversions carry the
    experiments the visitor had seen by send time.

    Returns:
        Tuple of (List[DecisionEvent], List[ConversionEvent])
    """
    rng = np.random.default_rng(random_seed)
    experiments = experiments or DEFAULT_EXPERIMENTS
    event_names = event_names or DEFAULT_EVENTS
    horizon = days * 24 * 3600

    decisions = []
    conversions = []
    for i in range(n_visitors):
        visitor_id = f"visitor_{i:05d}"
        seen = []  # (first_exposure, ExperimentRef)
        for exp_id, variations in experiments.items():
            variation = variations[rng.integers(len(variations))]
            holdback = bool(rng.random() < holdback_rate)
            offsets = np.sort(rng.integers(0, horizon, size=rng.integers(1, 4)))
            for offset in offsets:
                decisions.append(DecisionEvent(
                    visitor_id=visitor_id,
                    experiment_id=exp_id,
                    variation_id=variation,
                    timestamp=start + timedelta(seconds=int(offset)),
                    is_holdback=holdback,
                    metadata={"session_id": f"{visitor_id}_s{int(offset) // 86400}"},
                ))
            seen.append((
                start + timedelta(seconds=int(offsets[0])),
                ExperimentRef(exp_id, variation, holdback),
            ))

        earliest = min(ts for ts, _ in seen)
        for _ in range(rng.poisson(conversion_rate * 3)):
            ts = earliest + timedelta(seconds=int(rng.integers(0, horizon)))
            name = event_names[rng.integers(len(event_names))]
            revenue = int(rng.integers(500, 20000)) if name == "purchase" else None
            conversions.append(ConversionEvent(
                visitor_id=visitor_id,
                event_name=name,
                timestamp=ts,
                revenue=revenue,
                attributed_experiments=[ref for first, ref in seen if first <= ts],
                metadata={"session_id": f"{visitor_id}_s{(ts - start).days}"},
            ))

    conversions.sort(key=lambda c: c.timestamp)
    return decisions, conversions


def run_simulation(
    n_visitors: int = 500,
    data_dir: str = DEFAULT_STORE_DIR,
    random_seed: int = SIMULATOR_SEED,
    **kwargs,
) -> Dict:
    """Generate events and append them to the event store."""
    decisions, conversions = simulate_events(
        n_visitors=n_visitors, random_seed=random_seed, **kwargs
    )
    n_dec = append_decisions(decisions, base_dir=data_dir)
    n_conv = append_conversions(conversions, base_dir=data_dir)

    summary = {
        "n_visitors": n_visitors,
        "decisions_written": n_dec,
        "conversions_written": n_conv,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
