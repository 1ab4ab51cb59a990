from django.db.models import F
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .models import Listing, Profile


@receiver(pre_delete, sender=Listing)
def preserve_listing_clicks(sender, instance, **kwargs):
    """
    Fold a removed listing's clicks into its owner's lifetime counter so
    the trust score does not drop when listings expire or are deleted.
    """
    if instance.clicks:
        Profile.objects.filter(user_id=instance.owner_id).update(
            lifetime_clicks=F("lifetime_clicks") + instance.clicks
        )
