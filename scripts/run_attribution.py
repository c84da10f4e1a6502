#!/usr/bin/env python3
"""
Run experiment attribution over the event store.

Reads data/events/{decisions,conversions}, writes subject assignments and
aggregate tables to artifacts/attribution/. With --simulate, fills the store
with synthetic events first.
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    p.add_argument("--config", help="YAML/JSON config file")
    p.add_argument("--policy", help="Attribution policy: full_stack or web")
    p.add_argument("--subject-key", help="Subject column (default visitor_id)")
    p.add_argument("--start", help="Window start, ISO-8601 (inclusive)")
    p.add_argument("--end", help="Window end, ISO-8601 (inclusive)")
    p.add_argument("--n-jobs", type=int, help="Parallel aggregation workers")
    p.add_argument("--data-dir", default=str(ROOT / "data" / "events"))
    p.add_argument("--output-dir", default=str(ROOT / "artifacts" / "attribution"))
    p.add_argument("--simulate", type=int, metavar="N_VISITORS",
                   help="Generate synthetic events for N visitors before running")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace):
    from src.attribution.config import AttributionConfig, load_config

    base = load_config(args.config).to_dict() if args.config else {}
    window = dict(base.get("window") or {})
    if args.start:
        window["start"] = args.start
    if args.end:
        window["end"] = args.end
    overrides = {
        "attribution_policy": args.policy,
        "subject_key": args.subject_key,
        "n_jobs": args.n_jobs,
    }
    base.update({k: v for k, v in overrides.items() if v is not None})
    base["window"] = window
    return AttributionConfig.from_dict(base)


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args(argv)

    from src.attribution.errors import AttributionError
    from src.attribution.pipeline import run_from_store

    try:
        config = build_config(args)
        if args.simulate:
            from src.attribution.simulate_events import run_simulation
            run_simulation(n_visitors=args.simulate, data_dir=args.data_dir)
        result = run_from_store(config, data_dir=args.data_dir, output_dir=args.output_dir)
    except AttributionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    summary = result.summary()
    print(f"[OK] {summary['n_subjects']} subjects, {summary['n_attributions']} attributed conversions, "
          f"{summary['skipped_total']} skipped. Outputs in {args.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
