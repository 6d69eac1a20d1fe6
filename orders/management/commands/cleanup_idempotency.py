from django.core.management.base import BaseCommand
from django.utils import timezone
from orders.models import IdempotencyKey


class Command(BaseCommand):
    help = "Delete stored idempotent responses whose expires_at has passed"

    def add_arguments(self, parser):
        parser.add_argument("--dry-run", action="store_true", help="Only report how many records would be deleted")

    def handle(self, *args, **options):
        expired = IdempotencyKey.objects.filter(expires_at__lt=timezone.now())
        if options["dry_run"]:
            self.stdout.write(f"{expired.count()} idempotency key(s) would be deleted.")
            return
        deleted, _ = expired.delete()
        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} expired idempotency keys."))
