"""
Run a scraping crawl from the command line.
"""

from django.core.management.base import BaseCommand, CommandError

from core.locks import RunInProgress
from api.staging import ConfigNotFound
from api.tasks import execute_crawl


class Command(BaseCommand):
    help = "Crawl the seed listing pages (or one URL) for a scraping config and stage new properties"

    def add_arguments(self, parser):
        parser.add_argument('config_id', type=int)
        parser.add_argument('--states', nargs='*', default=None, help='State codes, e.g. CE PE RN')
        parser.add_argument('--url', default=None, help='Crawl from this page instead of the seeds')

    def handle(self, *args, **options):
        try:
            result = execute_crawl(options['config_id'], states=options['states'], url=options['url'])
        except (ConfigNotFound, RunInProgress) as e:
            raise CommandError(str(e))

        if result.status == 'failed':
            raise CommandError(f"Run {result.run_id} failed: {result.error_message}")

        self.stdout.write(self.style.SUCCESS(
            f"Run {result.run_id} ({result.outcome}): {result.found} found, {result.new} new, {result.failed} failed"
        ))
