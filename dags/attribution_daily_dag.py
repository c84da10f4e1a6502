"""
Attribution DAG - Daily experiment attribution.

Runs Full-Stack and Web attribution over the previous day's events in
data/events/ and replaces the outputs in artifacts/attribution/<policy>/.
Retries live here; the engine itself never retries.
"""

from datetime import datetime, timedelta
from pathlib import Path

from airflow import DAG
from airflow.operators.python import PythonOperator

# Project root - adjust if DAG runs from different location
PROJECT_ROOT = Path(__file__).parent.parent


def _run_attribution(policy: str, data_interval_start=None, data_interval_end=None, **kwargs):
    """Attribute the DAG run's data interval under one policy."""
    import sys
    sys.path.insert(0, str(PROJECT_ROOT))

    from src.attribution.config import AttributionConfig
    from src.attribution.pipeline import run_from_store
    from src.attribution.schema import TimeWindow

    config = AttributionConfig(
        attribution_policy=policy,
        window=TimeWindow(
            start=data_interval_start,
            end=data_interval_end - timedelta(microseconds=1),
        ),
    )
    result = run_from_store(
        config,
        data_dir=str(PROJECT_ROOT / "data" / "events"),
        output_dir=str(PROJECT_ROOT / "artifacts" / "attribution" / policy),
    )
    return result.summary()


default_args = {
    "owner": "data-science",
    "depends_on_past": False,
    "start_date": datetime(2025, 1, 1),
    "email_on_failure": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=5),
}

dag = DAG(
    "experiment_attribution_daily",
    default_args=default_args,
    description="Daily experiment attribution: subjects, conversions, aggregates",
    schedule="0 6 * * *",  # 6 AM daily
    max_active_runs=1,
    tags=["experiment", "attribution"],
)

full_stack_task = PythonOperator(
    task_id="attribute_full_stack",
    python_callable=_run_attribution,
    op_kwargs={"policy": "full_stack"},
    dag=dag,
)

web_task = PythonOperator(
    task_id="attribute_web",
    python_callable=_run_attribution,
    op_kwargs={"policy": "web"},
    dag=dag,
)

full_stack_task >> web_task
