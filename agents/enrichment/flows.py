"""
Prefect flows for scheduled and ad-hoc pipeline runs.

``pipeline_action_flow`` runs one action of one pipeline. ``weekly_refresh_flow``
chains the recurring maintenance actions; each step is its own task, so a
failing step is reported and the next one still runs.

Usage (CLI):
    python -m agents.enrichment.flows media-engine run_pipeline --params '{"batch_size": 5}'
    python -m agents.enrichment.flows --weekly

Usage (Prefect):
    from agents.enrichment.flows import weekly_refresh_flow
    weekly_refresh_flow(dry_run=True)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from prefect import flow, get_run_logger, task

from agents.enrichment.errors import PipelineError


# (pipeline, action, params) in execution order
WEEKLY_STEPS: tuple[tuple[str, str, dict], ...] = (
    ("artist-label-agent", "verify_freshness", {"batch_size": 200}),
    ("artist-label-agent", "find_contacts", {"batch_size": 10}),
    ("collectives-agent", "enrich", {"batch_size": 10}),
    ("media-engine", "run_pipeline", {"batch_size": 10}),
    ("database-consolidation", "full_consolidation", {"limit": 10}),
)


@task(name="run-pipeline-action", retries=0)
def run_pipeline_action(pipeline: str, action: str, params: Optional[dict] = None) -> dict[str, Any]:
    """Run one pipeline action and return its response body."""
    from agents.enrichment.pipelines import get_pipeline

    logger = get_run_logger()
    logger.info("Running %s %s", pipeline, action)
    body = get_pipeline(pipeline).handle(action, params or {})
    logger.info("%s %s finished: %s", pipeline, action, body.get("stats"))
    return body


@flow(name="pipeline-action", retries=0)
def pipeline_action_flow(pipeline: str, action: str, params: Optional[dict] = None) -> dict[str, Any]:
    return run_pipeline_action(pipeline, action, params)


@flow(
    name="weekly-refresh",
    description="Freshness scan, contact discovery, collective and media enrichment, consolidation",
    retries=0,
)
def weekly_refresh_flow(dry_run: bool = False) -> dict[str, Any]:
    logger = get_run_logger()
    results: dict[str, Any] = {}
    failures = 0

    for pipeline, action, params in WEEKLY_STEPS:
        step = f"{pipeline}:{action}"
        if dry_run:
            logger.info("[dry-run] would run %s with %s", step, params)
            results[step] = {"dry_run": True, "params": params}
            continue
        try:
            results[step] = run_pipeline_action(pipeline, action, params)
        except PipelineError as e:
            failures += 1
            logger.error("Step %s failed: %s", step, e)
            results[step] = {"success": False, "error": str(e)}

    logger.info("Weekly refresh complete: %d steps, %d failed", len(WEEKLY_STEPS), failures)
    return {
        "steps": results,
        "failed_steps": failures,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import argparse
    import os

    import django

    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
    django.setup()

    parser = argparse.ArgumentParser(description="Run enrichment pipelines")
    parser.add_argument("pipeline", nargs="?")
    parser.add_argument("action", nargs="?")
    parser.add_argument("--params", default="{}", help="JSON object of action params")
    parser.add_argument("--weekly", action="store_true", help="Run the weekly refresh flow")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    if args.weekly:
        output = weekly_refresh_flow(dry_run=args.dry_run)
    else:
        if not args.pipeline or not args.action:
            parser.error("pipeline and action are required unless --weekly is given")
        output = pipeline_action_flow(args.pipeline, args.action, json.loads(args.params))
    print(json.dumps(output, indent=2, default=str))
