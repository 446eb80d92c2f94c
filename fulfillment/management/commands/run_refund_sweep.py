"""
Management command running the automatic refund sweep.
"""
import time

from django.core.management.base import BaseCommand

from fulfillment.conf import FulfillmentSettings
from fulfillment.services.refunds import RefundReconciliationJob


class Command(BaseCommand):
    help = 'Refund paid orders that stayed pending past the refund deadline'

    def add_arguments(self, parser):
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Interval between sweeps in seconds (default: SWEEP_INTERVAL)',
        )

    def handle(self, *args, **options):
        config = FulfillmentSettings.load()
        interval = options['interval'] or config.sweep_interval
        job = RefundReconciliationJob(config=config)

        if not options['loop']:
            self._run(job)
            return

        self.stdout.write(f'Starting refund sweep in loop mode (interval: {interval}s)')
        while True:
            try:
                self._run(job)
                time.sleep(interval)
            except KeyboardInterrupt:
                self.stdout.write(self.style.WARNING('Stopped by user'))
                break

    def _run(self, job):
        report = job.sweep()
        if report.skipped:
            self.stdout.write(self.style.WARNING('Refund sweep already running, skipped'))
            return
        self.stdout.write(
            self.style.SUCCESS(
                f'Checked {len(report.outcomes)} orders: {report.refunded} refunded, {report.failed} failed'
            )
        )
