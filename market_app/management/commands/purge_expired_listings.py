from django.core.management.base import BaseCommand
from django.utils import timezone

from market_app.models import Listing


class Command(BaseCommand):
    help = (
        "Permanently delete listings whose expiry has passed. Their clicks are "
        "kept on the owner's lifetime counter. Run periodically (e.g., daily via cron)."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List listings that would be deleted without deleting them.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=500,
            help="Max listings to delete in one run (default: 500).",
        )

    def handle(self, *args, **options):
        now = timezone.now()
        qs = list(
            Listing.objects.expired(now)
            .select_related("owner")
            .order_by("expires_at")[: options["limit"]]
        )

        count = len(qs)
        if count == 0:
            self.stdout.write(self.style.SUCCESS("No expired listings found."))
            return

        self.stdout.write(f"Found {count} expired listing(s).")
        for listing in qs:
            self.stdout.write(
                f"- {listing.title} (owner: {listing.owner.username}, expired: {listing.expires_at}, "
                f"clicks={listing.clicks}, id={listing.id})"
            )

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("Dry run enabled; no listings deleted."))
            return

        deleted = 0
        for listing in qs:
            # pre_delete signal folds the clicks into the owner's lifetime_clicks
            listing.delete()
            deleted += 1

        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} expired listing(s)."))
