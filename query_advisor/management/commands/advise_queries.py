"""Django management command to analyze a recorded query log.

Reads a JSON-lines file (one executed statement per line) and prints the
advisory report: N+1 sequences, deep OFFSET pagination and full scans,
each with a remediation.
"""

import os
from datetime import datetime

from django.core.management.base import BaseCommand, CommandError

from query_advisor.advisor import analyze
from query_advisor.ingest import read_jsonl


class Command(BaseCommand):
    """Analyze a JSON-lines query log for N+1, OFFSET and full-scan patterns."""

    help = (
        'Analyze a JSON-lines query log. Each line: {"timestamp": ..., "sql": ..., '
        '"row_count": ..., "duration_ms": ...}'
    )

    def add_arguments(self, parser):
        parser.add_argument('log_file', help='Path to the JSON-lines query log')
        parser.add_argument(
            '--offset-threshold',
            type=int,
            default=None,
            help='Flag literal OFFSET values above this (default: 1000)',
        )
        parser.add_argument(
            '--min-run',
            type=int,
            default=None,
            dest='n_plus_one_min_run',
            help='Minimum consecutive child queries to report an N+1 (default: 2)',
        )
        parser.add_argument(
            '--n-plus-one-threshold',
            type=int,
            default=None,
            help='Child queries at which an N+1 counts as a failure (default: 10)',
        )
        parser.add_argument(
            '--full-scan-rows',
            type=int,
            default=None,
            help='Rows an unbounded SELECT must return to be flagged (default: 10000)',
        )
        parser.add_argument(
            '--json',
            default=None,
            metavar='FILENAME',
            help='Also write the structured report to this JSON file',
        )
        parser.add_argument(
            '--html',
            nargs='?',
            const=True,
            default=None,
            metavar='FILENAME',
            help='Generate HTML report (optional: specify filename, default: auto-generate)',
        )
        parser.add_argument(
            '--fail-on-findings',
            action='store_true',
            help='Exit with an error if any failure threshold is crossed',
        )

    def handle(self, *args, **options):
        """Main command handler."""
        log_file = options['log_file']
        verbosity = options.get('verbosity', 1)

        if not os.path.isfile(log_file):
            raise CommandError(f'Query log not found: {log_file}')

        result = analyze(
            read_jsonl(log_file),
            offset_threshold=options.get('offset_threshold'),
            n_plus_one_min_run=options.get('n_plus_one_min_run'),
            n_plus_one_threshold=options.get('n_plus_one_threshold'),
            full_scan_rows=options.get('full_scan_rows'),
        )
        result.test_name = os.path.basename(log_file)

        if verbosity >= 1:
            result.explain(file=self.stdout)

        if options.get('json'):
            try:
                result.to_json(options['json'])
            except OSError as e:
                raise CommandError(f'Failed to write JSON report: {e}') from e
            if verbosity >= 1:
                self.stdout.write(self.style.SUCCESS(f'✓ JSON report written: {options["json"]}'))

        if options.get('html'):
            self._generate_html_report(result, options['html'], verbosity)

        if options.get('fail_on_findings') and result.failures:
            raise CommandError(
                f'{len(result.failures)} failure(s) found in {log_file}'
            )

    def _generate_html_report(self, result, html_option, verbosity):
        """Write the HTML report.

        Args:
            result: AdvisorResult to export
            html_option: True (auto-generate filename) or string (custom filename)
            verbosity: Command verbosity level
        """
        if html_option is True:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            filename = f'query_advisor_report_{timestamp}.html'
        else:
            filename = html_option

        try:
            result.to_html(filename)
        except OSError as e:
            raise CommandError(f'Failed to generate HTML report: {e}') from e

        if verbosity >= 1:
            self.stdout.write(self.style.SUCCESS(f'✓ HTML report generated: {filename}'))
