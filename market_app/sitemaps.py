from django.contrib.sitemaps import Sitemap
from django.urls import reverse

from .models import Listing, Profile

MAX_LISTINGS = 1000
MAX_PROFILES = 500


class StaticViewSitemap(Sitemap):
    protocol = "https"
    # (url name, changefreq, priority)
    pages = [
        ("market_app:home", "hourly", 1.0),  # home feed changes constantly
        ("market_app:verify", "monthly", 0.5),
    ]

    def items(self):
        return self.pages

    def location(self, item):
        return reverse(item[0])

    def changefreq(self, item):
        return item[1]

    def priority(self, item):
        return item[2]


class ListingSitemap(Sitemap):
    protocol = "https"
    changefreq = "daily"
    priority = 0.8

    def items(self):
        return Listing.objects.active().order_by("-created_at")[:MAX_LISTINGS]

    def lastmod(self, obj):
        return obj.updated_at or obj.created_at


class SellerSitemap(Sitemap):
    protocol = "https"
    changefreq = "weekly"
    priority = 0.6

    def items(self):
        # confirmed accounts only
        return Profile.objects.filter(user__is_active=True).order_by("-updated_at")[:MAX_PROFILES]

    def lastmod(self, obj):
        return obj.updated_at


sitemaps = {
    "static": StaticViewSitemap,
    "listings": ListingSitemap,
    "sellers": SellerSitemap,
}
