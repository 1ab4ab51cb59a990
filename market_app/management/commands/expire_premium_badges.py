"""
Management command to switch off verified-seller badges whose paid period has ended.
Usage: python manage.py expire_premium_badges
       python manage.py expire_premium_badges --dry-run
"""
from django.core.management.base import BaseCommand
from django.utils import timezone

from market_app.models import Profile


class Command(BaseCommand):
    help = "Clear the premium flag on profiles whose premium_expires_at has passed"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report the profiles that would be changed.",
        )

    def handle(self, *args, **options):
        lapsed = Profile.objects.filter(
            is_premium=True,
            premium_expires_at__isnull=False,
            premium_expires_at__lte=timezone.now(),
        )
        count = lapsed.count()

        if count == 0:
            self.stdout.write(self.style.SUCCESS("No lapsed badges found."))
            return

        for profile in lapsed.select_related("user"):
            self.stdout.write(f"- {profile.user.email} (expired: {profile.premium_expires_at})")

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING(f"Dry run enabled; {count} badge(s) left unchanged."))
            return

        updated = lapsed.update(is_premium=False)
        self.stdout.write(self.style.SUCCESS(f"Cleared {updated} lapsed badge(s)."))
