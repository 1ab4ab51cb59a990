import re
from decimal import Decimal
from urllib.parse import quote

from django.contrib.auth.models import User
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q, Sum
from django.db.models.signals import post_save
from django.dispatch import receiver
from django.urls import reverse
from django.utils import timezone

from .utils.trust import TrustSummary


CATEGORY_CHOICES = [
    ("Electronics", "Electronics"),
    ("Clothing", "Clothing"),
    ("Books", "Books"),
    ("Food", "Food"),
    ("Beauty", "Beauty"),
    ("Sports", "Sports"),
    ("Home", "Home"),
    ("Other", "Other"),
]

CONDITION_CHOICES = [
    ("new", "Brand New"),
    ("like-new", "Fairly Used"),
    ("used", "Used"),
]

MAX_PRICE = Decimal("99999.99")


class Profile(models.Model):
    # Link to Django's built-in User (for authentication)
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="profile")

    full_name = models.CharField(max_length=120, blank=True)
    # Public handle shown on listings, separate from the login username
    handle = models.CharField(
        max_length=30, unique=True, null=True, blank=True, db_column="username"
    )
    school = models.CharField(max_length=120, blank=True, db_index=True)
    whatsapp_number = models.CharField(max_length=20, blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    bio = models.TextField(max_length=300, blank=True)
    avatar = models.ImageField(upload_to="uploads/avatars/", blank=True, null=True)

    # Verified seller badge
    is_premium = models.BooleanField(default=False)
    premium_expires_at = models.DateTimeField(blank=True, null=True)

    # Clicks earned by listings that have since been removed
    lifetime_clicks = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "profiles"

    def __str__(self):
        return f"{self.user.email or self.user.username} Profile"

    @property
    def is_verified(self):
        """Premium flag set and not yet lapsed."""
        if not self.is_premium:
            return False
        return self.premium_expires_at is None or self.premium_expires_at > timezone.now()

    @property
    def display_name(self):
        return self.full_name or self.handle or self.user.get_full_name() or self.user.username

    @property
    def contact_number(self):
        return self.whatsapp_number or self.phone_number

    def whatsapp_link(self, text=None):
        digits = re.sub(r"\D", "", str(self.contact_number or ""))
        if not digits:
            return None
        link = f"https://wa.me/{digits}"
        if text:
            link += "?text=" + quote(text, safe="")
        return link

    @property
    def active_clicks(self):
        """Sum of clicks on listings this user still has."""
        return self.user.listings.aggregate(total=Sum("clicks"))["total"] or 0

    @property
    def total_clicks(self):
        return self.lifetime_clicks + self.active_clicks

    def get_trust_summary(self):
        return TrustSummary.from_clicks(self.total_clicks)

    def get_absolute_url(self):
        return reverse("market_app:seller_profile", kwargs={"user_id": self.user_id})


class ListingQuerySet(models.QuerySet):
    def active(self, now=None):
        """Listings that have no expiry or whose expiry is still ahead."""
        now = now or timezone.now()
        return self.filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))

    def expired(self, now=None):
        now = now or timezone.now()
        return self.filter(expires_at__isnull=False, expires_at__lte=now)

    def search(self, query):
        query = (query or "").strip()
        if not query:
            return self
        return self.filter(Q(title__icontains=query) | Q(content__icontains=query))

    def with_tag(self, tag):
        # tags are stored as a comma separated list, match whole entries only
        tag = (tag or "").strip().lower()
        if not tag:
            return self
        return self.filter(
            Q(tags=tag)
            | Q(tags__startswith=f"{tag},")
            | Q(tags__endswith=f",{tag}")
            | Q(tags__contains=f",{tag},")
        )

    def for_school(self, school):
        if not school or school == "All":
            return self
        return self.filter(owner__profile__school=school)


class Listing(models.Model):
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name="listings")
    title = models.CharField(max_length=120)
    content = models.TextField(max_length=2000)
    image = models.ImageField(upload_to="uploads/listings/", blank=True, null=True)
    price = models.DecimalField(
        max_digits=7,
        decimal_places=2,
        blank=True,
        null=True,
        validators=[MinValueValidator(Decimal("0.00")), MaxValueValidator(MAX_PRICE)],
    )
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default="Electronics")
    condition = models.CharField(max_length=10, choices=CONDITION_CHOICES, default="used")
    tags = models.CharField(max_length=250, blank=True)  # simple CSV, lower case
    clicks = models.PositiveIntegerField(default=0)
    comments_count = models.PositiveIntegerField(default=0)
    expires_at = models.DateTimeField(blank=True, null=True, db_index=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ListingQuerySet.as_manager()

    class Meta:
        db_table = "postings"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["owner", "created_at"], name="postings_owner_created_idx"),
        ]

    def __str__(self):
        return self.title

    def get_absolute_url(self):
        return reverse("market_app:listing_detail", kwargs={"listing_id": self.pk})

    @property
    def tag_list(self):
        return [t for t in (self.tags or "").split(",") if t]

    def set_tags(self, tags):
        self.tags = ",".join(tags)

    def is_active(self, now=None):
        now = now or timezone.now()
        return self.expires_at is None or self.expires_at > now

    def whatsapp_link(self):
        profile = getattr(self.owner, "profile", None)
        if profile is None:
            return None
        return profile.whatsapp_link(f'Hi, I\'m interested in "{self.title}"')


class ListingClick(models.Model):
    """One row per user who currently has a click on a listing."""

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="listing_clicks")
    listing = models.ForeignKey(Listing, on_delete=models.CASCADE, related_name="click_records")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ["user", "listing"]

    def __str__(self):
        return f"{self.user} clicked {self.listing}"


class VerificationRequest(models.Model):
    STATUS_CHOICES = [
        ("approved", "Approved"),
        ("rejected", "Rejected"),
    ]

    user = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="verification_requests"
    )
    plan_id = models.CharField(max_length=20)
    plan_label = models.CharField(max_length=50, blank=True)
    months = models.PositiveSmallIntegerField(default=1)
    amount_paid = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0.00"))
    # Unique at the database level so a reference can only be credited once
    paystack_reference = models.CharField(max_length=100, unique=True)
    paystack_email = models.EmailField(blank=True, null=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="approved")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "verification_requests"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.paystack_reference} ({self.plan_label or self.plan_id})"


class Suggestion(models.Model):
    name = models.CharField(max_length=60, default="Anonymous")
    message = models.TextField(max_length=1000)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "suggestions"
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.name}: {self.message[:40]}"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class AuthCode(models.Model):
    """One-time code emailed for signup confirmation, magic links and recovery."""

    SIGNUP = "signup"
    MAGIC_LINK = "magiclink"
    RECOVERY = "recovery"
    KIND_CHOICES = [
        (SIGNUP, "Signup confirmation"),
        (MAGIC_LINK, "Magic link"),
        (RECOVERY, "Password recovery"),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="auth_codes")
    code = models.CharField(max_length=64, unique=True)
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    created_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField()
    used_at = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"{self.get_kind_display()} code for {self.user}"

    def is_usable(self, now=None):
        now = now or timezone.now()
        return self.used_at is None and self.expires_at > now

    def mark_used(self):
        self.used_at = timezone.now()
        self.save(update_fields=["used_at"])


# Signal to automatically create profile when User is created
@receiver(post_save, sender=User)
def create_user_profile(sender, instance, created, **kwargs):
    if created:
        Profile.objects.create(user=instance)


@receiver(post_save, sender=User)
def save_user_profile(sender, instance, **kwargs):
    if hasattr(instance, "profile"):
        instance.profile.save()
