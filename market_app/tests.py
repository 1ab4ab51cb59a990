import json
import random
import shutil
import tempfile
from datetime import timedelta
from decimal import Decimal
from io import BytesIO, StringIO
from unittest import mock

import requests
from django.contrib.auth.models import User
from django.core import mail
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.db import DatabaseError
from django.test import Client, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from PIL import Image

from .models import AuthCode, Listing, ListingClick, Profile, Suggestion, VerificationRequest
from .tokens import issue_auth_code, redeem_auth_code
from .utils.click_history import chart_stats, generate_click_history, history_length
from .utils.clicks import toggle_click
from .utils.payments import (
    ActivationFailed,
    AmountMismatch,
    DuplicateReference,
    MissingFields,
    PaymentError,
    PaymentVerification,
    PaymentVerificationError,
    PaystackClient,
    VerificationFailed,
    verify_and_activate,
)
from .utils.quota import check_upload_quota, listing_expiry, local_day_bounds
from .utils.trust import TrustSummary, clicks_to_next_level, trust_label, trust_score

TEST_MEDIA_ROOT = tempfile.mkdtemp()


def create_test_image(name="test.png", size=(100, 100), color="red"):
    """Helper function to create a test image file"""
    file = BytesIO()
    image = Image.new("RGB", size, color)
    image.save(file, "PNG")
    file.seek(0)
    return SimpleUploadedFile(name, file.read(), content_type="image/png")


def create_user(username, password="testpass123", **profile_fields):
    user = User.objects.create_user(
        username=username, email=f"{username}@ug.edu.gh", password=password
    )
    for field, value in profile_fields.items():
        setattr(user.profile, field, value)
    user.profile.save()
    return user


def create_listing(owner, title="Desk lamp", **fields):
    fields.setdefault("content", "Barely used, works fine")
    fields.setdefault("expires_at", timezone.now() + timedelta(days=7))
    return Listing.objects.create(owner=owner, title=title, **fields)


def make_verified(user, days=30):
    user.profile.is_premium = True
    user.profile.premium_expires_at = timezone.now() + timedelta(days=days)
    user.profile.save()


def messages_of(response):
    return [str(m) for m in response.context.get("messages", [])]


class TrustScoreTests(TestCase):
    """Tests for the click-based trust score"""

    def test_score_is_one_point_per_hundred_clicks(self):
        self.assertEqual(trust_score(0), 0)
        self.assertEqual(trust_score(99), 0)
        self.assertEqual(trust_score(250), 2)
        self.assertEqual(trust_score(4_000), 40)

    def test_score_is_capped_at_100(self):
        self.assertEqual(trust_score(100_000), 100)
        self.assertEqual(trust_score(10**9), 100)

    def test_negative_or_missing_counts_score_zero(self):
        self.assertEqual(trust_score(-50), 0)
        self.assertEqual(trust_score(None), 0)

    def test_score_never_decreases_as_clicks_grow(self):
        previous = 0
        for clicks in range(0, 12_000, 37):
            score = trust_score(clicks)
            self.assertGreaterEqual(score, previous)
            self.assertLessEqual(score, 100)
            previous = score

    def test_labels(self):
        self.assertEqual(trust_label(0), "Building")
        self.assertEqual(trust_label(39), "Building")
        self.assertEqual(trust_label(40), "Growing")
        self.assertEqual(trust_label(75), "Highly Trusted")

    def test_clicks_to_next_level(self):
        self.assertEqual(clicks_to_next_level(250), 50)
        self.assertEqual(clicks_to_next_level(0), 100)
        self.assertEqual(clicks_to_next_level(10_000), 0)

    def test_summary(self):
        summary = TrustSummary.from_clicks(7_600)
        self.assertEqual(summary.score, 76)
        self.assertEqual(summary.label, "Highly Trusted")
        self.assertFalse(summary.is_maxed)
        self.assertTrue(TrustSummary.from_clicks(20_000).is_maxed)

    def test_profile_trust_includes_removed_listing_clicks(self):
        """Clicks from deleted listings still count towards trust"""
        user = create_user("kofi")
        create_listing(user, clicks=120)
        gone = create_listing(user, title="Old phone", clicks=130)

        self.assertEqual(user.profile.get_trust_summary().score, 2)
        gone.delete()

        user.profile.refresh_from_db()
        self.assertEqual(user.profile.lifetime_clicks, 130)
        self.assertEqual(user.profile.total_clicks, 250)
        self.assertEqual(user.profile.get_trust_summary().score, 2)


class UploadQuotaTests(TestCase):
    """Tests for the daily upload limit"""

    def setUp(self):
        self.user = create_user("ama")
        self.now = timezone.now()

    def test_new_user_can_upload(self):
        quota = check_upload_quota(self.user, now=self.now)
        self.assertTrue(quota.can_upload)
        self.assertEqual(quota.uploads_today, 0)
        self.assertEqual(quota.remaining, 2)

    def test_one_upload_today_leaves_one(self):
        create_listing(self.user, created_at=self.now)
        quota = check_upload_quota(self.user, now=self.now)
        self.assertTrue(quota.can_upload)
        self.assertEqual(quota.remaining, 1)

    def test_two_uploads_today_blocks_third(self):
        create_listing(self.user, created_at=self.now)
        create_listing(self.user, title="Kettle", created_at=self.now)

        quota = check_upload_quota(self.user, now=self.now)

        self.assertFalse(quota.can_upload)
        self.assertEqual(quota.remaining, 0)
        self.assertEqual(quota.reason, "Free accounts can upload 2 times per day.")
        _, next_midnight = local_day_bounds(self.now)
        self.assertEqual(quota.next_allowed, next_midnight)

    def test_yesterdays_uploads_do_not_count(self):
        day_start, _ = local_day_bounds(self.now)
        create_listing(self.user, created_at=day_start - timedelta(hours=1))
        create_listing(self.user, title="Kettle", created_at=day_start - timedelta(hours=2))

        quota = check_upload_quota(self.user, now=self.now)
        self.assertTrue(quota.can_upload)
        self.assertEqual(quota.uploads_today, 0)

    def test_verified_seller_is_unlimited(self):
        make_verified(self.user)
        for i in range(5):
            create_listing(self.user, title=f"Item {i}", created_at=self.now)

        quota = check_upload_quota(self.user, now=self.now)
        self.assertTrue(quota.can_upload)
        self.assertTrue(quota.unlimited)
        self.assertEqual(quota.uploads_today, 5)

    def test_lapsed_badge_falls_back_to_free_limit(self):
        self.user.profile.is_premium = True
        self.user.profile.premium_expires_at = self.now - timedelta(days=1)
        self.user.profile.save()
        create_listing(self.user, created_at=self.now)
        create_listing(self.user, title="Kettle", created_at=self.now)

        self.assertFalse(check_upload_quota(self.user, now=self.now).can_upload)

    def test_listing_expiry_depends_on_badge(self):
        self.assertEqual(listing_expiry(self.user, now=self.now), self.now + timedelta(days=7))
        make_verified(self.user)
        self.assertEqual(listing_expiry(self.user, now=self.now), self.now + timedelta(days=30))


@override_settings(MEDIA_ROOT=TEST_MEDIA_ROOT)
class UploadListingTests(TestCase):
    """Tests for the upload view (listing creation)"""

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(TEST_MEDIA_ROOT, ignore_errors=True)
        super().tearDownClass()

    def setUp(self):
        self.client = Client()
        self.user = create_user("seller", school="University of Ghana", whatsapp_number="+233 24 123 4567")
        self.upload_url = reverse("market_app:upload")
        self.data = {
            "title": "Hp Laptop",
            "content": "8GB RAM, 256GB SSD, charger included",
            "price": "2500.00",
            "category": "Electronics",
            "condition": "like-new",
            "tags": "Laptop, #HP, laptop",
        }

    def test_upload_requires_login(self):
        """Test that unauthenticated users are redirected to login"""
        response = self.client.get(self.upload_url)
        self.assertEqual(response.status_code, 302)
        self.assertIn("login", response.url.lower())

    def test_upload_page_loads(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.get(self.upload_url)

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "upload.html")
        self.assertEqual(response.context["quota"].remaining, 2)
        self.assertEqual(response.context["listing_days"], 7)

    def test_create_listing_success(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(self.upload_url, self.data)

        self.assertEqual(Listing.objects.count(), 1)
        listing = Listing.objects.get()
        self.assertRedirects(response, reverse("market_app:listing_detail", args=[listing.id]))
        self.assertEqual(listing.owner, self.user)
        self.assertEqual(listing.price, Decimal("2500.00"))
        # tags are normalized and de-duplicated
        self.assertEqual(listing.tag_list, ["laptop", "hp"])
        self.assertAlmostEqual(
            listing.expires_at, timezone.now() + timedelta(days=7), delta=timedelta(minutes=1)
        )

    def test_create_listing_with_image(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(
            self.upload_url, {**self.data, "image": create_test_image("laptop.png")}
        )

        self.assertEqual(response.status_code, 302)
        listing = Listing.objects.get()
        self.assertTrue(listing.image.name.startswith("uploads/listings/"))

    def test_verified_seller_listing_lasts_30_days(self):
        make_verified(self.user)
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(self.upload_url, self.data, follow=True)

        listing = Listing.objects.get()
        self.assertAlmostEqual(
            listing.expires_at, timezone.now() + timedelta(days=30), delta=timedelta(minutes=1)
        )
        self.assertIn("Listing published! It stays live for 30 days.", messages_of(response))

    def test_third_upload_of_the_day_is_rejected(self):
        create_listing(self.user)
        create_listing(self.user, title="Kettle")
        self.client.login(username="seller", password="testpass123")

        response = self.client.post(self.upload_url, self.data)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Listing.objects.count(), 2)
        self.assertTrue(any("Upload limit reached" in m for m in messages_of(response)))

    def test_negative_price_rejected(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(self.upload_url, {**self.data, "price": "-5"})

        self.assertEqual(Listing.objects.count(), 0)
        self.assertIn("Price cannot be negative.", messages_of(response))

    def test_price_above_limit_rejected(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(self.upload_url, {**self.data, "price": "100000"})

        self.assertEqual(Listing.objects.count(), 0)
        self.assertIn("Price cannot exceed GH₵99,999.99.", messages_of(response))

    def test_too_many_tags_rejected(self):
        self.client.login(username="seller", password="testpass123")
        response = self.client.post(self.upload_url, {**self.data, "tags": "a,b,c,d,e,f"})

        self.assertEqual(Listing.objects.count(), 0)
        self.assertIn("You can add at most 5 tags.", messages_of(response))

    def test_price_is_optional(self):
        self.client.login(username="seller", password="testpass123")
        self.client.post(self.upload_url, {**self.data, "price": ""})

        self.assertIsNone(Listing.objects.get().price)


class ListingBrowseTests(TestCase):
    """Tests for the home feed, its filters and the listing page"""

    def setUp(self):
        self.client = Client()
        self.ug = create_user("ugseller", school="University of Ghana", whatsapp_number="0241234567")
        self.knust = create_user("knustseller", school="KNUST")
        self.phone = create_listing(self.ug, title="iPhone 12", tags="phone,cheap")
        self.case = create_listing(
            self.knust, title="Silicone case", category="Other", tags="phone-case"
        )
        self.expired = create_listing(
            self.ug, title="Old textbook", expires_at=timezone.now() - timedelta(hours=1)
        )

    def test_home_lists_only_active_listings(self):
        response = self.client.get(reverse("market_app:home"))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "home.html")
        ids = {listing.id for listing in response.context["listings"]}
        self.assertEqual(ids, {self.phone.id, self.case.id})

    def test_tag_filter_matches_whole_tags(self):
        response = self.client.get(reverse("market_app:home"), {"tag": "phone"})
        ids = [listing.id for listing in response.context["listings"]]
        self.assertEqual(ids, [self.phone.id])

    def test_search_school_and_category_filters(self):
        url = reverse("market_app:home")
        self.assertEqual(
            [l.id for l in self.client.get(url, {"q": "iphone"}).context["listings"]],
            [self.phone.id],
        )
        self.assertEqual(
            [l.id for l in self.client.get(url, {"school": "KNUST"}).context["listings"]],
            [self.case.id],
        )
        response = self.client.get(url, {"category": "Other"})
        self.assertEqual([l.id for l in response.context["listings"]], [self.case.id])
        self.assertEqual(response.context["active_filters"], 1)

    def test_home_json_format(self):
        response = self.client.get(reverse("market_app:home"), {"format": "json"})
        data = response.json()

        self.assertTrue(data["success"])
        self.assertFalse(data["has_more"])
        self.assertEqual(len(data["listings"]), 2)
        newest = data["listings"][0]
        self.assertEqual(newest["id"], self.case.id)
        self.assertEqual(newest["seller"]["school"], "KNUST")

    def test_listing_detail(self):
        self.phone.clicks = 42
        self.phone.save()
        response = self.client.get(reverse("market_app:listing_detail", args=[self.phone.id]))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "listing_detail.html")
        self.assertEqual(response.context["chart"]["total"], 42)
        self.assertEqual(response.context["tags"], ["phone", "cheap"])
        self.assertTrue(response.context["whatsapp_link"].startswith("https://wa.me/0241234567?text="))
        self.assertFalse(response.context["has_clicked"])

    def test_expired_listing_is_not_found(self):
        response = self.client.get(reverse("market_app:listing_detail", args=[self.expired.id]))
        self.assertEqual(response.status_code, 404)

    def test_whatsapp_link_strips_formatting(self):
        self.ug.profile.whatsapp_number = "+233 (24) 123-4567"
        self.ug.profile.save()
        self.phone.refresh_from_db()

        link = self.phone.whatsapp_link()
        self.assertTrue(link.startswith("https://wa.me/233241234567?text=Hi%2C%20I"))
        self.assertIn("iPhone%2012", link)

    def test_no_whatsapp_link_without_number(self):
        self.assertIsNone(self.case.whatsapp_link())

    def test_seller_profile_shows_active_listings(self):
        response = self.client.get(reverse("market_app:seller_profile", args=[self.ug.id]))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "seller_profile.html")
        self.assertEqual([l.id for l in response.context["listings"]], [self.phone.id])

    def test_old_profile_url_redirects_permanently(self):
        response = self.client.get(reverse("market_app:profile_redirect", args=[self.ug.id]))
        self.assertEqual(response.status_code, 301)
        self.assertEqual(response.url, reverse("market_app:seller_profile", args=[self.ug.id]))


class ClickHistoryTests(TestCase):
    """Tests for the synthetic click history chart"""

    def test_length_follows_listing_age(self):
        now = timezone.now()
        self.assertEqual(history_length(now - timedelta(hours=3), now), 2)
        self.assertEqual(history_length(now - timedelta(days=5), now), 6)
        self.assertEqual(history_length(now - timedelta(days=90), now), 14)

    def test_series_always_sums_to_total(self):
        now = timezone.now()
        for total in (0, 1, 7, 250, 9_999):
            for age in (timedelta(hours=1), timedelta(days=1), timedelta(days=5), timedelta(days=40)):
                for seed in range(5):
                    series = generate_click_history(
                        total, now - age, now=now, rng=random.Random(seed)
                    )
                    values = [point["clicks"] for point in series]
                    self.assertEqual(sum(values), total)
                    self.assertTrue(all(v >= 0 for v in values))

    def test_first_point_is_posting_day(self):
        now = timezone.now()
        created = now - timedelta(days=3)
        series = generate_click_history(10, created, now=now, rng=random.Random(1))

        local = timezone.localtime(created)
        self.assertEqual(series[0]["day"], f"{local.day} {local:%b}")
        self.assertEqual(len(series), 4)

    def test_chart_stats(self):
        series = [{"day": "1 Mar", "clicks": 0}, {"day": "2 Mar", "clicks": 5}, {"day": "3 Mar", "clicks": 10}]
        stats = chart_stats(series)

        self.assertEqual(stats["total"], 15)
        self.assertEqual(stats["peak"], 10)
        self.assertEqual(stats["average"], 5)
        self.assertEqual([bar["height"] for bar in stats["bars"]], [3, 50, 100])
        self.assertEqual([bar["is_peak"] for bar in stats["bars"]], [False, False, True])

    def test_chart_stats_with_no_clicks(self):
        stats = chart_stats([{"day": "1 Mar", "clicks": 0}])
        self.assertEqual(stats["peak"], 0)
        self.assertFalse(stats["bars"][0]["is_peak"])


class ListingClickTests(TestCase):
    """Tests for clicking / un-clicking listings"""

    def setUp(self):
        self.client = Client()
        self.owner = create_user("owner")
        self.buyer = create_user("buyer")
        self.listing = create_listing(self.owner)
        self.url = reverse("market_app:toggle_click", args=[self.listing.id])

    def test_click_then_unclick(self):
        self.client.login(username="buyer", password="testpass123")

        response = self.client.post(self.url, HTTP_X_REQUESTED_WITH="XMLHttpRequest")
        self.assertEqual(response.json(), {"success": True, "clicked": True, "clicks": 1})
        self.assertTrue(ListingClick.objects.filter(user=self.buyer, listing=self.listing).exists())

        response = self.client.post(self.url, HTTP_X_REQUESTED_WITH="XMLHttpRequest")
        self.assertEqual(response.json(), {"success": True, "clicked": False, "clicks": 0})
        self.assertFalse(ListingClick.objects.exists())

    def test_click_counts_are_per_user(self):
        other = create_user("other")
        toggle_click(self.buyer, self.listing)
        result = toggle_click(other, self.listing)

        self.assertEqual(result.clicks, 2)
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.clicks, 2)

    def test_anonymous_json_click_requires_login(self):
        response = self.client.post(self.url, HTTP_X_REQUESTED_WITH="XMLHttpRequest")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"success": False, "requires_login": True})

    def test_anonymous_form_click_redirects_to_login(self):
        response = self.client.post(self.url)

        self.assertEqual(response.status_code, 302)
        self.assertIn("login", response.url.lower())

    def test_click_requires_post(self):
        self.client.login(username="buyer", password="testpass123")
        self.assertEqual(self.client.get(self.url).status_code, 405)

    def test_failed_write_leaves_nothing_behind(self):
        self.client.login(username="buyer", password="testpass123")
        with mock.patch(
            "market_app.utils.clicks.ListingClick.objects.create",
            side_effect=DatabaseError("disk I/O error"),
        ):
            response = self.client.post(self.url, HTTP_X_REQUESTED_WITH="XMLHttpRequest")

        self.assertEqual(response.status_code, 503)
        self.assertFalse(response.json()["success"])
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.clicks, 0)

    def test_detail_reports_existing_click(self):
        toggle_click(self.buyer, self.listing)
        self.client.login(username="buyer", password="testpass123")

        response = self.client.get(reverse("market_app:listing_detail", args=[self.listing.id]))
        self.assertTrue(response.context["has_clicked"])


class DeleteListingTests(TestCase):
    """Tests for the delete_listing view"""

    def setUp(self):
        self.client = Client()
        self.owner = create_user("owner")
        create_user("other")
        self.listing = create_listing(self.owner, clicks=250)
        self.url = reverse("market_app:delete_listing", args=[self.listing.id])

    def test_owner_can_delete_and_keeps_clicks(self):
        self.client.login(username="owner", password="testpass123")
        response = self.client.post(self.url)

        self.assertRedirects(response, reverse("market_app:profile"))
        self.assertEqual(Listing.objects.count(), 0)
        profile = Profile.objects.get(user=self.owner)
        self.assertEqual(profile.lifetime_clicks, 250)
        self.assertEqual(profile.get_trust_summary().score, 2)

    def test_delete_denied_for_non_owner(self):
        self.client.login(username="other", password="testpass123")
        response = self.client.post(self.url, follow=True)

        self.assertEqual(Listing.objects.count(), 1)
        self.assertTrue(any("not authorized" in m.lower() for m in messages_of(response)))

    def test_delete_requires_login(self):
        response = self.client.post(self.url)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(Listing.objects.count(), 1)


class FakePaystack:
    """Stands in for PaystackClient and returns a canned verification."""

    def __init__(self, amount="25", status="success", error=None):
        self.amount = Decimal(amount)
        self.status = status
        self.error = error
        self.references = []

    def verify(self, reference):
        self.references.append(reference)
        if self.error:
            raise self.error
        return PaymentVerification(
            status=self.status, amount=self.amount, currency="GHS", customer_email="payer@ug.edu.gh"
        )


class VerifyAndActivateTests(TestCase):
    """Tests for Paystack verification and badge activation"""

    def setUp(self):
        self.user = create_user("payer")
        self.now = timezone.now()
        self.payload = {
            "reference": "T123456789",
            "user_id": self.user.id,
            "plan_id": "3months",
            "plan_label": "3 Months",
            "amount": "25",
            "months": 3,
        }

    def test_success_activates_badge(self):
        record = verify_and_activate(self.payload, client=FakePaystack(), now=self.now)

        profile = Profile.objects.get(user=self.user)
        self.assertTrue(profile.is_premium)
        self.assertEqual(profile.premium_expires_at, self.now + timedelta(days=90))
        self.assertTrue(profile.is_verified)
        self.assertEqual(record.paystack_reference, "T123456789")
        self.assertEqual(record.amount_paid, Decimal("25"))
        self.assertEqual(record.paystack_email, "payer@ug.edu.gh")

    def test_months_fall_back_to_plan(self):
        payload = {**self.payload, "plan_id": "1year"}
        del payload["months"]
        verify_and_activate(payload, client=FakePaystack(), now=self.now)

        profile = Profile.objects.get(user=self.user)
        self.assertEqual(profile.premium_expires_at, self.now + timedelta(days=360))

    def test_reference_can_only_be_used_once(self):
        verify_and_activate(self.payload, client=FakePaystack(), now=self.now)
        later = self.now + timedelta(days=10)

        with self.assertRaises(DuplicateReference) as ctx:
            verify_and_activate(self.payload, client=FakePaystack(), now=later)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(VerificationRequest.objects.count(), 1)
        profile = Profile.objects.get(user=self.user)
        self.assertEqual(profile.premium_expires_at, self.now + timedelta(days=90))

    def test_missing_fields(self):
        with self.assertRaises(MissingFields):
            verify_and_activate({"reference": "T1"}, client=FakePaystack())

    def test_failed_verification(self):
        client = FakePaystack(error=PaymentVerificationError("PAYSTACK_VERIFY_FAILED:not found"))
        with self.assertRaises(VerificationFailed):
            verify_and_activate(self.payload, client=client)
        self.assertFalse(Profile.objects.get(user=self.user).is_premium)

    def test_abandoned_transaction_is_not_accepted(self):
        with self.assertRaises(VerificationFailed):
            verify_and_activate(self.payload, client=FakePaystack(status="abandoned"))

    def test_underpayment(self):
        with self.assertRaises(AmountMismatch) as ctx:
            verify_and_activate(self.payload, client=FakePaystack(amount="10"))
        self.assertIn("Expected GH₵25", ctx.exception.message)
        self.assertFalse(VerificationRequest.objects.exists())

    def test_unknown_user(self):
        payload = {**self.payload, "user_id": 999_999}
        with self.assertRaises(ActivationFailed) as ctx:
            verify_and_activate(payload, client=FakePaystack())
        self.assertIn("T123456789", ctx.exception.message)
        self.assertFalse(VerificationRequest.objects.exists())

    def test_posted_amount_does_not_lower_plan_price(self):
        """A GH₵1 payment cannot buy the yearly plan by posting amount=1"""
        payload = {**self.payload, "plan_id": "1year", "months": 12, "amount": 1}
        with self.assertRaises(AmountMismatch) as ctx:
            verify_and_activate(payload, client=FakePaystack(amount="1"))

        self.assertIn("Expected GH₵80", ctx.exception.message)
        self.assertFalse(Profile.objects.get(user=self.user).is_premium)

    def test_inflated_months_rejected(self):
        client = FakePaystack(amount="10")
        payload = {**self.payload, "plan_id": "1month", "months": 1000, "amount": 10}
        with self.assertRaises(PaymentError) as ctx:
            verify_and_activate(payload, client=client)

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(client.references, [])
        self.assertFalse(Profile.objects.get(user=self.user).is_premium)

    def test_duration_comes_from_plan(self):
        payload = {**self.payload, "plan_id": "1month", "months": "1", "amount": "10"}
        verify_and_activate(payload, client=FakePaystack(amount="10"), now=self.now)

        profile = Profile.objects.get(user=self.user)
        self.assertEqual(profile.premium_expires_at, self.now + timedelta(days=30))

    def test_unknown_plan_rejected(self):
        client = FakePaystack()
        with self.assertRaises(PaymentError) as ctx:
            verify_and_activate({**self.payload, "plan_id": "forever"}, client=client)
        self.assertEqual(ctx.exception.message, "Unknown plan.")
        self.assertEqual(client.references, [])

    def test_user_id_must_be_an_integer(self):
        for bad in (True, 1.9, "abc", "1.5", [1]):
            client = FakePaystack()
            with self.assertRaises(PaymentError) as ctx:
                verify_and_activate({**self.payload, "user_id": bad}, client=client)
            self.assertEqual(ctx.exception.message, "Invalid user.")
            self.assertEqual(client.references, [])

    def test_user_id_as_digit_string(self):
        record = verify_and_activate(
            {**self.payload, "user_id": str(self.user.id)}, client=FakePaystack()
        )
        self.assertEqual(record.user, self.user)

    def test_non_finite_amount_rejected(self):
        for bad in ("NaN", "Infinity", "-Infinity", "abc"):
            client = FakePaystack()
            with self.assertRaises(PaymentError) as ctx:
                verify_and_activate({**self.payload, "amount": bad}, client=client)
            self.assertEqual(ctx.exception.status_code, 400)
            self.assertEqual(ctx.exception.message, "Invalid amount.")
            self.assertEqual(client.references, [])


@override_settings(PAYSTACK_SECRET_KEY="sk_test_abc", PAYSTACK_BASE_URL="https://api.paystack.co")
class PaystackClientTests(TestCase):
    """Tests for the Paystack HTTP client"""

    def _response(self, status_code, body):
        response = mock.Mock(status_code=status_code, content=json.dumps(body).encode())
        response.json.return_value = body
        return response

    @mock.patch("market_app.utils.payments.requests.get")
    def test_verify_success(self, mock_get):
        mock_get.return_value = self._response(
            200,
            {
                "status": True,
                "data": {
                    "status": "success",
                    "amount": 2500,
                    "currency": "ghs",
                    "customer": {"email": "payer@ug.edu.gh"},
                },
            },
        )

        result = PaystackClient().verify(" T1 ")

        self.assertTrue(result.succeeded)
        self.assertEqual(result.amount, Decimal("25"))
        self.assertEqual(result.currency, "GHS")
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "https://api.paystack.co/transaction/verify/T1")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_abc")

    @mock.patch("market_app.utils.payments.requests.get")
    def test_verify_rejected(self, mock_get):
        mock_get.return_value = self._response(
            400, {"status": False, "message": "Transaction reference not found"}
        )
        with self.assertRaises(PaymentVerificationError):
            PaystackClient().verify("T1")

    @mock.patch("market_app.utils.payments.requests.get")
    def test_verify_unreachable(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("timed out")
        with self.assertRaises(PaymentVerificationError):
            PaystackClient().verify("T1")


class VerifyPaymentEndpointTests(TestCase):
    """Tests for POST /api/verify-payment/"""

    def setUp(self):
        self.client = Client()
        self.user = create_user("payer")
        self.url = reverse("market_app:verify_payment")
        self.payload = {
            "reference": "T987",
            "user_id": self.user.id,
            "plan_id": "1month",
            "amount": 10,
            "months": 1,
        }

    def _post(self, payload):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return self.client.post(self.url, data=body, content_type="application/json")

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_success(self, client_cls):
        client_cls.return_value = FakePaystack(amount="10")
        response = self._post(self.payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        self.assertTrue(Profile.objects.get(user=self.user).is_verified)

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_duplicate_reference(self, client_cls):
        client_cls.return_value = FakePaystack(amount="10")
        self._post(self.payload)
        response = self._post(self.payload)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "This payment reference has already been used.")

    def test_missing_fields(self):
        response = self._post({"reference": "T987"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required fields.")

    def test_invalid_json(self):
        response = self._post("{not json")
        self.assertEqual(response.status_code, 400)

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_verification_failure(self, client_cls):
        client_cls.return_value = FakePaystack(error=PaymentVerificationError("nope"))
        response = self._post(self.payload)
        self.assertEqual(response.status_code, 402)

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_amount_mismatch(self, client_cls):
        client_cls.return_value = FakePaystack(amount="5")
        response = self._post(self.payload)
        self.assertEqual(response.status_code, 402)
        self.assertIn("mismatch", response.json()["error"])

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_unknown_user(self, client_cls):
        client_cls.return_value = FakePaystack(amount="10")
        response = self._post({**self.payload, "user_id": 424242})

        self.assertEqual(response.status_code, 500)
        self.assertIn("ref: T987", response.json()["error"])

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_unexpected_error(self, client_cls):
        client_cls.return_value.verify.side_effect = RuntimeError("boom")
        response = self._post(self.payload)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Server error. Please try again.")

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(self.url).status_code, 405)

    def test_verify_page_lists_plans(self):
        response = self.client.get(reverse("market_app:verify"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["id"] for p in response.context["plans"]], ["1month", "3months", "1year"])
        self.assertEqual(response.context["selected_plan"]["id"], "3months")
        self.assertEqual(response.context["plans"][2]["per_month"], Decimal("6.67"))

    def test_verify_page_wires_paystack_checkout(self):
        self.client.login(username="payer", password="testpass123")
        response = self.client.get(reverse("market_app:verify"))

        self.assertContains(response, "PaystackPop")
        self.assertContains(response, "newTransaction")
        self.assertContains(response, f'data-verify-url="{self.url}"')
        self.assertContains(response, f'data-user="{self.user.id}"')
        self.assertContains(response, 'value="1year" data-amount="80"')
        self.assertContains(response, "fetch(button.dataset.verifyUrl")

    def test_anonymous_verify_page_has_no_pay_button(self):
        response = self.client.get(reverse("market_app:verify"))
        self.assertNotContains(response, 'id="pay"')

    @mock.patch("market_app.utils.payments.PaystackClient")
    def test_underpaid_plan_over_http(self, client_cls):
        client_cls.return_value = FakePaystack(amount="1")
        response = self._post({**self.payload, "plan_id": "1year", "months": 12, "amount": 1})

        self.assertEqual(response.status_code, 402)
        self.assertFalse(Profile.objects.get(user=self.user).is_premium)

    def test_nan_amount_over_http(self):
        response = self._post({**self.payload, "amount": "NaN"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid amount.")


class SuggestionTests(TestCase):
    """Tests for the public suggestion board"""

    def setUp(self):
        self.client = Client()
        self.url = reverse("market_app:suggestions")
        self.feed_url = reverse("market_app:suggestions_feed")

    def test_page_loads(self):
        Suggestion.objects.create(name="Esi", message="Add a dark mode")
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "suggestions.html")
        self.assertEqual(len(response.context["suggestions"]), 1)

    def test_ajax_post(self):
        response = self.client.post(
            self.url, {"name": "Yaw", "message": "More schools please"},
            HTTP_X_REQUESTED_WITH="XMLHttpRequest",
        )

        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["suggestion"]["name"], "Yaw")
        self.assertEqual(Suggestion.objects.count(), 1)

    def test_blank_name_is_anonymous(self):
        response = self.client.post(self.url, {"name": "  ", "message": "Nice app"}, follow=True)

        self.assertEqual(Suggestion.objects.get().name, "Anonymous")
        self.assertIn("Thanks for your suggestion!", messages_of(response))

    def test_empty_message_rejected(self):
        response = self.client.post(
            self.url, {"name": "Yaw", "message": "   "}, HTTP_X_REQUESTED_WITH="XMLHttpRequest"
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Suggestion.objects.exists())

    def test_feed_returns_newer_suggestions(self):
        first = Suggestion.objects.create(message="one")
        second = Suggestion.objects.create(message="two")

        data = self.client.get(self.feed_url, {"after": first.id}).json()
        self.assertEqual([s["id"] for s in data["suggestions"]], [second.id])

        data = self.client.get(self.feed_url).json()
        self.assertEqual([s["message"] for s in data["suggestions"]], ["one", "two"])

    def test_feed_rejects_bad_cursor(self):
        response = self.client.get(self.feed_url, {"after": "abc"})
        self.assertEqual(response.status_code, 400)

    def test_page_polls_feed_and_posts_with_ajax(self):
        latest = Suggestion.objects.create(message="latest")
        response = self.client.get(self.url)

        self.assertContains(response, f'data-feed-url="{self.feed_url}"')
        self.assertContains(response, 'feed.dataset.feedUrl + "?after=" + lastId')
        self.assertContains(response, '"X-Requested-With": "XMLHttpRequest"')
        self.assertContains(response, f'data-id="{latest.id}"')


class AccountTests(TestCase):
    """Tests for signup, login and emailed auth links"""

    def setUp(self):
        self.client = Client()
        self.password = "Campus-Trade-2024!"
        self.signup_data = {
            "full_name": "Akosua Mensah",
            "username": "akosua_m",
            "email": "Akosua@ug.edu.gh",
            "school": "University of Ghana",
            "whatsapp_number": "0241234567",
            "password": self.password,
            "confirm_password": self.password,
        }

    def _signup(self):
        return self.client.post(reverse("market_app:signup"), self.signup_data)

    def test_signup_creates_inactive_account_and_sends_email(self):
        response = self._signup()

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "email_sent.html")
        user = User.objects.get(username="akosua_m")
        self.assertFalse(user.is_active)
        self.assertEqual(user.email, "akosua@ug.edu.gh")
        self.assertEqual(user.profile.full_name, "Akosua Mensah")
        self.assertEqual(user.profile.handle, "akosua_m")
        self.assertEqual(user.profile.school, "University of Ghana")
        self.assertEqual(len(mail.outbox), 1)
        code = AuthCode.objects.get(user=user, kind=AuthCode.SIGNUP).code
        self.assertIn(f"code={code}", mail.outbox[0].body)

    def test_signup_rejects_duplicate_email_and_mismatched_passwords(self):
        create_user("someone")
        data = {**self.signup_data, "email": "someone@ug.edu.gh", "confirm_password": "different"}
        response = self.client.post(reverse("market_app:signup"), data)

        self.assertEqual(response.status_code, 400)
        form = response.context["form"]
        self.assertIn("Email already registered.", form.errors["email"])
        self.assertIn("Passwords do not match.", form.errors["confirm_password"])

    def test_inactive_user_cannot_log_in(self):
        self._signup()
        response = self.client.post(
            reverse("market_app:login"), {"email": "akosua@ug.edu.gh", "password": self.password}
        )
        self.assertEqual(response.status_code, 403)

    def test_confirmation_link_activates_and_logs_in(self):
        self._signup()
        code = AuthCode.objects.get().code

        response = self.client.get(reverse("market_app:auth_callback"), {"code": code})

        self.assertRedirects(response, "/")
        user = User.objects.get(username="akosua_m")
        self.assertTrue(user.is_active)
        self.assertEqual(int(self.client.session["_auth_user_id"]), user.id)

    def test_code_cannot_be_reused(self):
        self._signup()
        code = AuthCode.objects.get().code
        self.client.get(reverse("market_app:auth_callback"), {"code": code})
        self.client.logout()

        response = self.client.get(reverse("market_app:auth_callback"), {"code": code})
        self.assertEqual(response.url, "/login/?error=auth_callback_failed")

    def test_missing_or_expired_code_fails(self):
        user = create_user("ghost")
        auth_code = issue_auth_code(user, AuthCode.MAGIC_LINK)
        auth_code.expires_at = timezone.now() - timedelta(minutes=1)
        auth_code.save()

        self.assertIsNone(redeem_auth_code(auth_code.code))
        response = self.client.get(reverse("market_app:auth_callback"))
        self.assertEqual(response.url, "/login/?error=auth_callback_failed")

    def test_callback_follows_safe_next_only(self):
        user = create_user("kwame")
        url = reverse("market_app:auth_callback")

        code = issue_auth_code(user, AuthCode.MAGIC_LINK).code
        response = self.client.get(url, {"code": code, "next": "/upload/"})
        self.assertEqual(response.url, "/upload/")

        code = issue_auth_code(user, AuthCode.MAGIC_LINK).code
        response = self.client.get(url, {"code": code, "next": "https://evil.example.com/"})
        self.assertEqual(response.url, "/")

        code = issue_auth_code(user, AuthCode.MAGIC_LINK).code
        response = self.client.get(url, {"code": code, "next": "//evil.example.com/"})
        self.assertEqual(response.url, "/")

    def test_recovery_goes_to_reset_password(self):
        user = create_user("kwame")
        code = issue_auth_code(user, AuthCode.RECOVERY).code

        response = self.client.get(reverse("market_app:auth_callback"), {"code": code})
        self.assertRedirects(response, reverse("market_app:reset_password"))

    def test_forgot_password_does_not_reveal_accounts(self):
        create_user("kwame")
        url = reverse("market_app:forgot_password")

        response = self.client.post(url, {"email": "kwame@ug.edu.gh"})
        self.assertTemplateUsed(response, "email_sent.html")
        self.assertEqual(len(mail.outbox), 1)

        response = self.client.post(url, {"email": "nobody@ug.edu.gh"})
        self.assertTemplateUsed(response, "email_sent.html")
        self.assertEqual(len(mail.outbox), 1)

    def test_login_with_email(self):
        create_user("kwame")
        response = self.client.post(
            reverse("market_app:login"),
            {"email": "kwame@ug.edu.gh", "password": "testpass123", "next": "/profile/"},
        )
        self.assertEqual(response.url, "/profile/")

    def test_login_with_wrong_password(self):
        create_user("kwame")
        response = self.client.post(
            reverse("market_app:login"), {"email": "kwame@ug.edu.gh", "password": "nope"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("Invalid email or password.", messages_of(response))


class ProfileTests(TestCase):
    """Tests for the signed-in user's profile pages"""

    def setUp(self):
        self.client = Client()
        self.user = create_user("kojo", full_name="Kojo Asante")
        create_user("taken", handle="taken")
        self.client.login(username="kojo", password="testpass123")

    def test_profile_page(self):
        create_listing(self.user, clicks=300)
        create_listing(self.user, title="Expired", expires_at=timezone.now() - timedelta(days=1))

        response = self.client.get(reverse("market_app:profile"))

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "profile.html")
        self.assertEqual(response.context["trust"].score, 3)
        self.assertEqual(len(response.context["user_listings"]), 2)
        self.assertEqual(
            sorted(l.is_live for l in response.context["user_listings"]), [False, True]
        )

    def test_edit_profile(self):
        response = self.client.post(
            reverse("market_app:edit_profile"),
            {
                "full_name": "Kojo A.",
                "handle": "@Kojo.A",
                "bio": "Selling textbooks",
                "whatsapp_number": "+233 20 000 1111",
                "school": "UCC",
            },
            follow=True,
        )

        self.assertIn("Profile updated successfully.", messages_of(response))
        profile = Profile.objects.get(user=self.user)
        self.assertEqual(profile.handle, "kojo.a")
        self.assertEqual(profile.school, "UCC")

    def test_edit_profile_rejects_taken_handle(self):
        response = self.client.post(
            reverse("market_app:edit_profile"), {"full_name": "Kojo", "handle": "taken"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("That username is already taken.", messages_of(response))

    def test_dashboard_redirects_to_profile(self):
        response = self.client.get(reverse("market_app:dashboard"))
        self.assertRedirects(response, reverse("market_app:profile"))


@override_settings(SITE_URL="https://unimart.example")
class SeoTests(TestCase):
    """Tests for robots.txt, the sitemap and the social preview image"""

    def setUp(self):
        self.client = Client()
        self.user = create_user("seller")
        self.live = create_listing(self.user, title="Live item")
        self.expired = create_listing(
            self.user, title="Expired item", expires_at=timezone.now() - timedelta(days=1)
        )

    def test_robots_txt(self):
        response = self.client.get(reverse("market_app:robots"))
        body = response.content.decode()

        self.assertEqual(response["Content-Type"], "text/plain")
        self.assertIn("Disallow: /profile", body)
        self.assertIn("User-agent: GPTBot", body)
        self.assertIn("Sitemap: https://unimart.example/sitemap.xml", body)

    def test_sitemap_lists_active_listings(self):
        response = self.client.get(reverse("market_app:sitemap"))
        body = response.content.decode()

        self.assertEqual(response.status_code, 200)
        self.assertIn(reverse("market_app:listing_detail", args=[self.live.id]), body)
        self.assertNotIn(reverse("market_app:listing_detail", args=[self.expired.id]), body)
        self.assertIn(reverse("market_app:seller_profile", args=[self.user.id]), body)

    def test_sitemap_skips_unconfirmed_sellers(self):
        pending = create_user("pending")
        pending.is_active = False
        pending.save()

        body = self.client.get(reverse("market_app:sitemap")).content.decode()

        self.assertIn(reverse("market_app:seller_profile", args=[self.user.id]) + "<", body)
        self.assertNotIn(reverse("market_app:seller_profile", args=[pending.id]) + "<", body)

    def test_opengraph_image(self):
        response = self.client.get(reverse("market_app:opengraph_image"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "image/png")
        image = Image.open(BytesIO(response.content))
        self.assertEqual(image.size, (1200, 630))


class ManagementCommandTests(TestCase):
    """Tests for the periodic cleanup commands"""

    def setUp(self):
        self.user = create_user("seller")

    def test_purge_expired_listings(self):
        create_listing(self.user, title="Live")
        create_listing(self.user, title="Gone", clicks=40, expires_at=timezone.now() - timedelta(days=2))
        out = StringIO()

        call_command("purge_expired_listings", stdout=out)

        self.assertEqual(list(Listing.objects.values_list("title", flat=True)), ["Live"])
        self.assertEqual(Profile.objects.get(user=self.user).lifetime_clicks, 40)
        self.assertIn("Deleted 1 expired listing(s).", out.getvalue())

    def test_purge_dry_run_keeps_listings(self):
        create_listing(self.user, title="Gone", expires_at=timezone.now() - timedelta(days=2))
        call_command("purge_expired_listings", "--dry-run", stdout=StringIO())
        self.assertEqual(Listing.objects.count(), 1)

    def test_expire_premium_badges(self):
        self.user.profile.is_premium = True
        self.user.profile.premium_expires_at = timezone.now() - timedelta(days=1)
        self.user.profile.save()
        current = create_user("current")
        make_verified(current)

        call_command("expire_premium_badges", stdout=StringIO())

        self.assertFalse(Profile.objects.get(user=self.user).is_premium)
        self.assertTrue(Profile.objects.get(user=current).is_premium)
