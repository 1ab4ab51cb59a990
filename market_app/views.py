# market_app/views.py
import json
import logging
from decimal import Decimal
from io import BytesIO

from django.conf import settings
from django.contrib import messages
from django.contrib.auth import login, logout, update_session_auth_hash
from django.contrib.auth.decorators import login_required
from django.contrib.auth.forms import SetPasswordForm
from django.core.paginator import Paginator
from django.db import transaction
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.urls import reverse
from django.utils import timezone
from django.utils.http import url_has_allowed_host_and_scheme
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST
from PIL import Image, ImageDraw, ImageFont

from .forms import EmailForm, ListingForm, LoginForm, ProfileForm, SignupForm, SuggestionForm
from .models import CATEGORY_CHOICES, AuthCode, Listing, ListingClick, Profile, Suggestion, User
from .tokens import redeem_auth_code, send_auth_email
from .utils.click_history import chart_stats, generate_click_history
from .utils.clicks import ClickError, has_clicked, toggle_click
from .utils.payments import PaymentError, get_plans, verify_and_activate
from .utils.quota import check_upload_quota, listing_expiry

logger = logging.getLogger(__name__)

TAG_SUGGESTIONS = [
    "phone", "laptop", "charger", "headphones", "textbook", "notes", "shoes",
    "sneakers", "dress", "hoodie", "bag", "watch", "perfume", "skincare",
    "snacks", "furniture", "mattress", "fan", "kettle", "football",
    "vintage", "rare", "limited", "bundle", "set", "brand-new", "sealed",
    "original", "authentic", "gift",
]


def _wants_json(request):
    return (
        request.headers.get("X-Requested-With") == "XMLHttpRequest"
        or "application/json" in request.headers.get("Accept", "")
    )


def _safe_next(request, default="/"):
    next_url = request.GET.get("next") or request.POST.get("next") or default
    if not next_url.startswith("/") or not url_has_allowed_host_and_scheme(
        next_url, allowed_hosts={request.get_host()}, require_https=request.is_secure()
    ):
        return default
    return next_url


def listing_to_dict(listing, clicked_ids=()):
    profile = getattr(listing.owner, "profile", None)
    return {
        "id": listing.id,
        "title": listing.title,
        "content": listing.content,
        "price": str(listing.price) if listing.price is not None else None,
        "category": listing.category,
        "condition": listing.condition,
        "tags": listing.tag_list,
        "image_url": listing.image.url if listing.image else None,
        "clicks": listing.clicks,
        "clicked": listing.id in clicked_ids,
        "created_at": listing.created_at.isoformat(),
        "expires_at": listing.expires_at.isoformat() if listing.expires_at else None,
        "url": listing.get_absolute_url(),
        "seller": {
            "id": listing.owner_id,
            "name": profile.display_name if profile else listing.owner.username,
            "school": profile.school if profile else "",
            "is_verified": bool(profile and profile.is_verified),
        },
    }


def home(request):
    query = request.GET.get("q", "").strip()
    tag = request.GET.get("tag", "").strip().lower()
    school = request.GET.get("school", "All").strip() or "All"
    category = request.GET.get("category", "").strip()

    listings = (
        Listing.objects.active()
        .select_related("owner", "owner__profile")
        .search(query)
        .with_tag(tag)
        .for_school(school)
    )
    if category in dict(CATEGORY_CHOICES):
        listings = listings.filter(category=category)
    else:
        category = ""

    page = Paginator(listings, settings.UNIMART["PAGE_SIZE"]).get_page(request.GET.get("page"))

    clicked_ids = set()
    if request.user.is_authenticated:
        clicked_ids = set(
            ListingClick.objects.filter(
                user=request.user, listing_id__in=[l.id for l in page.object_list]
            ).values_list("listing_id", flat=True)
        )

    if request.GET.get("format") == "json":
        return JsonResponse(
            {
                "success": True,
                "listings": [listing_to_dict(l, clicked_ids) for l in page.object_list],
                "page": page.number,
                "has_more": page.has_next(),
            }
        )

    schools = (
        Profile.objects.exclude(school="")
        .order_by("school")
        .values_list("school", flat=True)
        .distinct()
    )
    active_filters = sum([school != "All", bool(tag), bool(category)])

    context = {
        "page": page,
        "listings": page.object_list,
        "clicked_ids": clicked_ids,
        "schools": list(schools),
        "q": query,
        "tag": tag,
        "school": school,
        "category": category,
        "active_filters": active_filters,
    }
    return render(request, "home.html", context)


def listing_detail(request, listing_id):
    listing = get_object_or_404(
        Listing.objects.active().select_related("owner", "owner__profile"), pk=listing_id
    )
    seller_profile = listing.owner.profile
    history = generate_click_history(listing.clicks, listing.created_at)

    context = {
        "listing": listing,
        "seller": listing.owner,
        "seller_profile": seller_profile,
        "seller_trust": seller_profile.get_trust_summary(),
        "whatsapp_link": listing.whatsapp_link(),
        "tags": listing.tag_list,
        "chart": chart_stats(history),
        "has_clicked": has_clicked(request.user, listing),
        "is_owner": request.user.is_authenticated and request.user.id == listing.owner_id,
    }
    return render(request, "listing_detail.html", context)


@require_POST
def toggle_listing_click(request, listing_id):
    """Click / un-click a listing to express interest."""
    wants_json = _wants_json(request)
    if not request.user.is_authenticated:
        if wants_json:
            return JsonResponse({"success": False, "requires_login": True}, status=401)
        login_url = reverse("market_app:login")
        return redirect(f"{login_url}?next={reverse('market_app:listing_detail', args=[listing_id])}")

    listing = get_object_or_404(Listing.objects.active(), pk=listing_id)
    try:
        result = toggle_click(request.user, listing)
    except ClickError as e:
        if wants_json:
            return JsonResponse({"success": False, "error": str(e)}, status=503)
        messages.error(request, str(e))
        return redirect("market_app:listing_detail", listing_id=listing.id)

    if wants_json:
        return JsonResponse({"success": True, "clicked": result.clicked, "clicks": result.clicks})
    return redirect("market_app:listing_detail", listing_id=listing.id)


@login_required
def upload(request):
    quota = check_upload_quota(request.user)
    user_profile = request.user.profile  # type: ignore
    listing_days = (
        settings.UNIMART["VERIFIED_LISTING_DAYS"]
        if user_profile.is_verified
        else settings.UNIMART["FREE_LISTING_DAYS"]
    )

    if request.method == "POST":
        form = ListingForm(request.POST, request.FILES)
        if not quota.can_upload:
            next_allowed = timezone.localtime(quota.next_allowed).strftime("%b %d, %Y %I:%M %p")
            messages.error(
                request, f"Upload limit reached. {quota.reason} Next upload: {next_allowed}."
            )
        elif form.is_valid():
            listing = form.save(commit=False)
            listing.owner = request.user
            listing.expires_at = listing_expiry(request.user)
            listing.save()
            logger.info(f"Listing {listing.id} created by user {request.user.id}")
            messages.success(
                request, f"Listing published! It stays live for {listing_days} days."
            )
            return redirect("market_app:listing_detail", listing_id=listing.id)
        else:
            for errors in form.errors.values():
                for error in errors:
                    messages.error(request, error)
    else:
        form = ListingForm()

    context = {
        "form": form,
        "quota": quota,
        "listing_days": listing_days,
        "max_tags": settings.UNIMART["MAX_TAGS"],
        "tag_suggestions": TAG_SUGGESTIONS,
    }
    return render(request, "upload.html", context)


@login_required
@require_POST
def delete_listing(request, listing_id):
    listing = get_object_or_404(Listing, pk=listing_id)
    if listing.owner_id != request.user.id:
        messages.error(request, "You are not authorized to delete this listing.")
        return redirect("market_app:home")

    title = listing.title
    # the pre_delete signal moves its clicks onto the owner's lifetime count
    listing.delete()
    messages.success(request, f'"{title}" was removed.')
    return redirect("market_app:profile")


@login_required
def profile(request):
    """The signed-in user's own profile: listings, trust and badge status."""
    user = request.user
    user_profile = user.profile  # type: ignore
    now = timezone.now()
    listings = list(user.listings.all())
    for listing in listings:
        listing.is_live = listing.is_active(now)

    context = {
        "profile": user_profile,
        "user_listings": listings,
        "trust": user_profile.get_trust_summary(),
        "quota": check_upload_quota(user),
        "whatsapp_link": user_profile.whatsapp_link(),
    }
    return render(request, "profile.html", context)


def seller_profile(request, user_id):
    seller = get_object_or_404(User.objects.select_related("profile"), id=user_id)
    context = {
        "seller": seller,
        "profile": seller.profile,
        "listings": seller.listings.active(),
        "trust": seller.profile.get_trust_summary(),
        "whatsapp_link": seller.profile.whatsapp_link(),
    }
    return render(request, "seller_profile.html", context)


def profile_redirect(request, user_id):
    return redirect("market_app:seller_profile", user_id=user_id, permanent=True)


@login_required
def edit_profile(request):
    user_profile = request.user.profile  # type: ignore
    if request.method == "POST":
        previous_avatar = user_profile.avatar.name if user_profile.avatar else None
        form = ProfileForm(request.POST, request.FILES, instance=user_profile)
        if form.is_valid():
            if request.POST.get("delete_avatar") == "true" and previous_avatar:
                user_profile.avatar.delete(save=False)
                user_profile.avatar = None
            form.save()
            messages.success(request, "Profile updated successfully.")
            return redirect("market_app:profile")
        for errors in form.errors.values():
            for error in errors:
                messages.error(request, error)
    else:
        form = ProfileForm(instance=user_profile)

    return render(request, "profile_edit.html", {"form": form, "profile": user_profile})


@login_required
def dashboard(request):
    return redirect("market_app:profile")


def suggestions(request):
    if request.method == "POST":
        form = SuggestionForm(request.POST)
        if form.is_valid():
            suggestion = form.save()
            if _wants_json(request):
                return JsonResponse({"success": True, "suggestion": suggestion.to_dict()})
            messages.success(request, "Thanks for your suggestion!")
            return redirect("market_app:suggestions")

        error = next(iter(form.errors.values()))[0]
        if _wants_json(request):
            return JsonResponse({"success": False, "error": error}, status=400)
        messages.error(request, error)
    else:
        form = SuggestionForm()

    context = {
        "form": form,
        "suggestions": Suggestion.objects.all(),
    }
    return render(request, "suggestions.html", context)


@require_GET
def suggestions_feed(request):
    """Suggestions newer than ?after=<id>, for clients polling the feed."""
    after = request.GET.get("after")
    feed = Suggestion.objects.all()
    if after:
        try:
            feed = feed.filter(id__gt=int(after))
        except ValueError:
            return JsonResponse({"success": False, "error": "Invalid 'after' id."}, status=400)
    return JsonResponse({"success": True, "suggestions": [s.to_dict() for s in feed]})


def verify(request):
    user_profile = request.user.profile if request.user.is_authenticated else None  # type: ignore
    plans = [
        {**plan, "per_month": (plan["price"] / plan["months"]).quantize(Decimal("0.01"))}
        for plan in get_plans()
    ]
    context = {
        "plans": plans,
        "selected_plan": plans[1] if len(plans) > 1 else plans[0],
        "profile": user_profile,
        "paystack_public_key": settings.PAYSTACK_PUBLIC_KEY,
    }
    return render(request, "verify.html", context)


@csrf_exempt
@require_POST
def verify_payment(request):
    """
    Called after the Paystack popup succeeds. Verifies the reference with
    Paystack and activates the verified badge on the user's profile.
    """
    try:
        payload = json.loads(request.body or b"{}")
    except ValueError:
        return JsonResponse({"success": False, "error": "Invalid JSON body."}, status=400)
    if not isinstance(payload, dict):
        return JsonResponse({"success": False, "error": "Invalid JSON body."}, status=400)

    try:
        verify_and_activate(payload)
    except PaymentError as e:
        return JsonResponse({"success": False, "error": e.message}, status=e.status_code)
    except Exception as e:
        logger.error(f"verify-payment error: {str(e)}", exc_info=True)
        return JsonResponse(
            {"success": False, "error": "Server error. Please try again."}, status=500
        )
    return JsonResponse({"success": True})


def legal(request):
    return render(request, "legal.html")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

def login_view(request):
    if request.user.is_authenticated:
        return redirect("market_app:home")

    form = LoginForm(request.POST or None)
    if request.method == "POST":
        if not form.is_valid():
            messages.error(request, "Please provide both email and password.")
            return render(request, "login.html", {"form": form}, status=400)

        email = form.cleaned_data["email"].strip().lower()
        password = form.cleaned_data["password"]
        user = User.objects.filter(email__iexact=email).first()

        # Don't reveal whether email exists for security
        if user is None or not user.check_password(password):
            messages.error(request, "Invalid email or password.")
            return render(request, "login.html", {"form": form}, status=400)

        if not user.is_active:
            messages.warning(
                request,
                "Please confirm your email before logging in. "
                "Check your inbox for the confirmation link.",
            )
            return render(request, "login.html", {"form": form}, status=403)

        login(request, user, backend="django.contrib.auth.backends.ModelBackend")
        if not form.cleaned_data.get("remember_me"):
            # Set session to expire when browser closes
            request.session.set_expiry(0)
        messages.success(request, f"Welcome back, {user.profile.display_name}!")  # type: ignore
        return redirect(_safe_next(request))

    if request.GET.get("error") == "auth_callback_failed":
        messages.error(request, "That link is invalid or has expired. Please try again.")
    return render(request, "login.html", {"form": form})


@login_required
def logout_view(request):
    logout(request)
    messages.success(request, "You have been logged out successfully.")
    return redirect("market_app:home")


class SignupView(View):
    template_name = "signup.html"

    def get(self, request):
        return render(request, self.template_name, {"form": SignupForm()})

    def post(self, request):
        form = SignupForm(request.POST)
        if not form.is_valid():
            return render(request, self.template_name, {"form": form}, status=400)

        cd = form.cleaned_data
        with transaction.atomic():
            user = User.objects.create_user(
                username=cd["username"],
                email=cd["email"],
                password=cd["password"],
                is_active=False,
            )
            # The Profile is created by the post_save signal
            user_profile = user.profile  # type: ignore
            user_profile.full_name = cd["full_name"].strip()
            user_profile.handle = cd["username"]
            user_profile.school = cd.get("school", "").strip()
            user_profile.whatsapp_number = cd.get("whatsapp_number", "").strip()
            user_profile.save()

        try:
            send_auth_email(request, user, AuthCode.SIGNUP)
        except Exception as e:
            # the account exists; the user can ask for a magic link later
            logger.error(f"Could not send confirmation email to user {user.id}: {str(e)}")

        return render(request, "email_sent.html", {"email": user.email, "kind": AuthCode.SIGNUP})


def _email_link_view(request, kind, template_name):
    form = EmailForm(request.POST or None)
    if request.method == "POST" and form.is_valid():
        user = User.objects.filter(email__iexact=form.cleaned_data["email"]).first()
        if user is not None:
            try:
                send_auth_email(request, user, kind, next_url=_safe_next(request))
            except Exception as e:
                logger.error(f"Could not send {kind} email to user {user.id}: {str(e)}")
                messages.error(request, "Couldn't send the email right now. Try again shortly.")
                return render(request, template_name, {"form": form})
        # same answer whether or not the address is registered
        return render(request, "email_sent.html", {"email": form.cleaned_data["email"], "kind": kind})
    return render(request, template_name, {"form": form})


def magic_link(request):
    return _email_link_view(request, AuthCode.MAGIC_LINK, "magic_link.html")


def forgot_password(request):
    return _email_link_view(request, AuthCode.RECOVERY, "forgot_password.html")


def auth_callback(request):
    """
    Landing page for emailed links: exchanges the one-time code for a
    session, then sends password recoveries to the reset page and
    everything else to ?next= (or home).
    """
    auth_code = redeem_auth_code(request.GET.get("code"))
    if auth_code is None:
        logger.warning("Auth callback with a missing, expired or used code")
        return redirect(f"{reverse('market_app:login')}?error=auth_callback_failed")

    user = auth_code.user
    if not user.is_active:
        user.is_active = True
        user.save(update_fields=["is_active"])
    login(request, user, backend="django.contrib.auth.backends.ModelBackend")

    if auth_code.kind == AuthCode.RECOVERY:
        return redirect("market_app:reset_password")
    return redirect(_safe_next(request))


@login_required
def reset_password(request):
    form = SetPasswordForm(request.user, request.POST or None)
    if request.method == "POST" and form.is_valid():
        user = form.save()
        update_session_auth_hash(request, user)
        messages.success(request, "Your password has been updated.")
        return redirect("market_app:profile")
    return render(request, "reset_password.html", {"form": form})


# ---------------------------------------------------------------------------
# SEO
# ---------------------------------------------------------------------------

ROBOTS_ALLOW = ["/", "/post/", "/seller/", "/verify"]
ROBOTS_DISALLOW = [
    "/profile",
    "/profile/edit",
    "/upload",
    "/login",
    "/signup",
    "/reset-password",
    "/auth/",
    "/api/",
]
BLOCKED_CRAWLERS = [
    "GPTBot",
    "ChatGPT-User",
    "CCBot",
    "anthropic-ai",
    "Claude-Web",
    "Omgilibot",
    "FacebookBot",
]


@require_GET
def robots_txt(request):
    lines = ["User-agent: *"]
    lines += [f"Allow: {path}" for path in ROBOTS_ALLOW]
    lines += [f"Disallow: {path}" for path in ROBOTS_DISALLOW]
    lines.append("")
    # AI crawlers are kept out entirely
    lines += [f"User-agent: {bot}" for bot in BLOCKED_CRAWLERS]
    lines.append("Disallow: /")
    lines.append("")
    lines.append(f"Host: {settings.SITE_URL}")
    lines.append(f"Sitemap: {settings.SITE_URL}/sitemap.xml")
    return HttpResponse("\n".join(lines) + "\n", content_type="text/plain")


OG_SIZE = (1200, 630)
OG_BACKGROUND = (15, 31, 110)
OG_ACCENT = (249, 115, 22)


def _og_font(size):
    try:
        return ImageFont.truetype("DejaVuSans-Bold.ttf", size)
    except OSError:
        return ImageFont.load_default()


@require_GET
def opengraph_image(request):
    """1200x630 social preview card rendered on the fly."""
    live_count = Listing.objects.active().count()

    image = Image.new("RGB", OG_SIZE, OG_BACKGROUND)
    draw = ImageDraw.Draw(image)
    draw.rectangle([0, OG_SIZE[1] - 24, OG_SIZE[0], OG_SIZE[1]], fill=OG_ACCENT)
    draw.text((80, 170), "UniMart", font=_og_font(120), fill=(255, 255, 255))
    draw.text(
        (80, 330), "Buy & sell on campus", font=_og_font(54), fill=OG_ACCENT
    )
    draw.text(
        (80, 430),
        f"{live_count} live listing{'s' if live_count != 1 else ''} from students near you",
        font=_og_font(36),
        fill=(226, 232, 240),
    )

    buffer = BytesIO()
    image.save(buffer, "PNG")
    response = HttpResponse(buffer.getvalue(), content_type="image/png")
    response["Cache-Control"] = "public, max-age=3600"
    return response
