from datetime import timedelta

from cart.services import expire_stale_items
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = "Remove cart lines added longer ago than the cart TTL"

    def add_arguments(self, parser):
        parser.add_argument(
            "--hours",
            type=float,
            default=None,
            help="Maximum line age in hours (defaults to CART_TTL_HOURS)",
        )

    def handle(self, *args, **options):
        hours = options["hours"]
        if hours is None:
            hours = getattr(settings, "CART_TTL_HOURS", 24)
        if hours <= 0:
            raise CommandError("--hours must be positive")
        removed = expire_stale_items(max_age=timedelta(hours=hours))
        self.stdout.write(self.style.SUCCESS(f"Removed {removed} stale cart lines."))
