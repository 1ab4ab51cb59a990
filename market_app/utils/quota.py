# utils/quota.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

QUOTA_REASON = "Free accounts can upload {limit} times per day."


@dataclass
class UploadQuota:
    can_upload: bool
    uploads_today: int
    remaining: int | None = None  # None means unlimited
    reason: str = ""
    next_allowed: datetime | None = None

    @property
    def unlimited(self):
        return self.remaining is None


def daily_upload_limit():
    return settings.UNIMART["DAILY_UPLOAD_LIMIT"]


def local_day_bounds(now=None):
    """Return (midnight today, midnight tomorrow) in the configured time zone."""
    now = timezone.localtime(now or timezone.now())
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # re-localize so a DST change during the day is respected
    tz = timezone.get_current_timezone()
    next_day = (start + timedelta(days=1)).replace(tzinfo=None)
    end = timezone.make_aware(next_day, tz)
    return start, end


def check_upload_quota(user, now=None):
    """
    Point-in-time check of how many listings `user` may still create today.

    Verified sellers are unlimited. Everyone else gets DAILY_UPLOAD_LIMIT
    listings per calendar day. No lock is taken, so two simultaneous
    submissions can both pass.
    """
    from ..models import Listing

    profile = getattr(user, "profile", None)
    day_start, next_midnight = local_day_bounds(now)
    uploads_today = Listing.objects.filter(owner=user, created_at__gte=day_start).count()

    if profile is not None and profile.is_verified:
        return UploadQuota(can_upload=True, uploads_today=uploads_today)

    limit = daily_upload_limit()
    if uploads_today >= limit:
        logger.info(
            f"Upload quota reached for user {user.id} ({uploads_today}/{limit} today)"
        )
        return UploadQuota(
            can_upload=False,
            uploads_today=uploads_today,
            remaining=0,
            reason=QUOTA_REASON.format(limit=limit),
            next_allowed=next_midnight,
        )

    return UploadQuota(
        can_upload=True,
        uploads_today=uploads_today,
        remaining=limit - uploads_today,
    )


def listing_expiry(user, now=None):
    """Expiry timestamp for a new listing: longer for verified sellers."""
    now = now or timezone.now()
    profile = getattr(user, "profile", None)
    if profile is not None and profile.is_verified:
        days = settings.UNIMART["VERIFIED_LISTING_DAYS"]
    else:
        days = settings.UNIMART["FREE_LISTING_DAYS"]
    return now + timedelta(days=days)
