"""
Management command alerting vendors about depleted products.
"""
import time

from django.core.management.base import BaseCommand

from fulfillment.conf import FulfillmentSettings
from fulfillment.services.stock import StockLedger


class Command(BaseCommand):
    help = 'Queue low and out-of-stock alerts for all depleted products'

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
            help='Interval between checks in seconds (default: STOCK_CHECK_INTERVAL)',
        )

    def handle(self, *args, **options):
        config = FulfillmentSettings.load()
        interval = options['interval'] or config.stock_check_interval
        ledger = StockLedger(config=config)

        if not options['loop']:
            sent = ledger.check_all_low_stock()
            self.stdout.write(self.style.SUCCESS(f'Queued {sent} stock alerts'))
            return

        self.stdout.write(f'Starting stock check in loop mode (interval: {interval}s)')
        while True:
            try:
                sent = ledger.check_all_low_stock()
                if sent > 0:
                    self.stdout.write(self.style.SUCCESS(f'Queued {sent} stock alerts'))
                time.sleep(interval)
            except KeyboardInterrupt:
                self.stdout.write(self.style.WARNING('Stopped by user'))
                break
