"""Run one enrichment pipeline action from the command line.

Usage:
    python manage.py run_pipeline media-engine run_pipeline --params '{"batch_size": 5}'
    python manage.py run_pipeline artist-label-agent status
    python manage.py run_pipeline artist-label-agent verify_freshness --flow
"""
import json

from django.core.management.base import BaseCommand, CommandError

from agents.enrichment.errors import PipelineError


class Command(BaseCommand):
    help = "Run a pipeline action (status, run_pipeline, find_contacts, ...) and print the JSON result."

    def add_arguments(self, parser):
        parser.add_argument('pipeline', help="Pipeline name, e.g. media-engine")
        parser.add_argument('action', help="Action name, e.g. run_pipeline")
        parser.add_argument('--params', type=str, default='{}', help="JSON object of action params.")
        parser.add_argument('--flow', action='store_true', help="Run inside a Prefect flow.")

    def handle(self, *args, **options):
        try:
            params = json.loads(options['params'])
        except json.JSONDecodeError as e:
            raise CommandError(f"--params is not valid JSON: {e}")
        if not isinstance(params, dict):
            raise CommandError("--params must be a JSON object")

        try:
            if options['flow']:
                from agents.enrichment.flows import pipeline_action_flow
                result = pipeline_action_flow(options['pipeline'], options['action'], params)
            else:
                from agents.enrichment.pipelines import get_pipeline
                result = get_pipeline(options['pipeline']).handle(options['action'], params)
        except PipelineError as e:
            raise CommandError(f"{options['pipeline']} {options['action']} failed: {e}")

        self.stdout.write(json.dumps(result, indent=2, default=str))
        self.stdout.write(self.style.SUCCESS(f"{options['pipeline']} {options['action']}: run {result.get('run_id')}"))
