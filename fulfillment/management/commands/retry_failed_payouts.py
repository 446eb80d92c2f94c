"""
Management command retrying failed vendor payouts and settling pending ones.
"""
import time

from django.core.management.base import BaseCommand

from fulfillment.services.payouts import VendorPayoutService


class Command(BaseCommand):
    help = 'Retry failed payouts and reconcile pending payouts with the gateway'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=50,
            help='Maximum number of payouts to handle in one run',
        )
        parser.add_argument(
            '--max-retries',
            type=int,
            default=5,
            help='Skip payouts that already failed this many times',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=600,
            help='Interval between loops in seconds',
        )

    def handle(self, *args, **options):
        service = VendorPayoutService()

        if not options['loop']:
            self._run(service, options)
            return

        self.stdout.write(f"Starting payout retry in loop mode (interval: {options['interval']}s)")
        while True:
            try:
                self._run(service, options)
                time.sleep(options['interval'])
            except KeyboardInterrupt:
                self.stdout.write(self.style.WARNING('Stopped by user'))
                break

    def _run(self, service, options):
        results = service.retry_failed_payouts(limit=options['limit'], max_retries=options['max_retries'])
        succeeded = sum(1 for result in results if result.succeeded)
        counts = service.reconcile_pending_payouts(limit=options['limit'])
        self.stdout.write(
            self.style.SUCCESS(
                f"Retried {len(results)} payouts ({succeeded} succeeded); "
                f"reconciled {counts['completed']} completed, {counts['failed']} failed"
            )
        )
