"""
Management command to cancel unpaid transfer orders past their payment window.

Usage:
    python manage.py expire_transfer_orders
    python manage.py expire_transfer_orders --dry-run
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.orders import providers


class Command(BaseCommand):
    help = "Cancel pending transfer orders whose payment window has closed and restore their stock"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show how many orders would be cancelled without changing anything",
        )

    def handle(self, *args, **options):
        watchdog = providers.get_watchdog()
        if options["dry_run"]:
            cutoff = timezone.now() - watchdog.window
            expired = len(watchdog.lifecycle.orders.expired_transfer_ids(cutoff))
            self.stdout.write(f"{expired} order(s) would be cancelled")
        else:
            count = watchdog.sweep()
            self.stdout.write(self.style.SUCCESS(f"{count} order(s) cancelled"))
