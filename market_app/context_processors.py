from django.conf import settings

from .models import CATEGORY_CHOICES


def marketplace(request):
    """
    Expose listing categories and the signed-in user's badge state to all
    templates (navbar, upload links).
    """
    profile = getattr(request.user, "profile", None) if request.user.is_authenticated else None
    return {
        "listing_categories": [value for value, _ in CATEGORY_CHOICES],
        "current_profile": profile,
        "is_verified_seller": bool(profile and profile.is_verified),
        "site_url": settings.SITE_URL,
    }
