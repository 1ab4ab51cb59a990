# utils/clicks.py
import logging
from dataclasses import dataclass

from django.db import DatabaseError, transaction
from django.db.models import F

from ..models import Listing, ListingClick

logger = logging.getLogger(__name__)


class ClickError(Exception):
    """The click could not be recorded; nothing was changed."""


@dataclass
class ClickResult:
    clicked: bool
    clicks: int


def has_clicked(user, listing):
    if not user.is_authenticated:
        return False
    return ListingClick.objects.filter(user=user, listing=listing).exists()


def toggle_click(user, listing):
    """
    Flip `user`'s interest click on `listing` and return the new state.

    The click row and the counter change together in one transaction: if
    either write fails, both are rolled back and ClickError is raised so
    the caller can restore whatever it showed the user.
    """
    try:
        with transaction.atomic():
            deleted, _ = ListingClick.objects.filter(user=user, listing=listing).delete()
            if deleted:
                Listing.objects.filter(pk=listing.pk, clicks__gt=0).update(
                    clicks=F("clicks") - 1
                )
                clicked = False
            else:
                ListingClick.objects.create(user=user, listing=listing)
                Listing.objects.filter(pk=listing.pk).update(clicks=F("clicks") + 1)
                clicked = True
            listing.refresh_from_db(fields=["clicks"])
    except DatabaseError as e:
        logger.warning(
            f"Click update failed for listing {listing.pk} by user {user.id}: {str(e)}"
        )
        raise ClickError("Could not update the click. Please try again.") from e

    return ClickResult(clicked=clicked, clicks=listing.clicks)
