import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

from django.conf import settings
from django.core.mail import send_mail
from django.urls import reverse
from django.utils import timezone

from .models import AuthCode

logger = logging.getLogger(__name__)

EMAIL_SUBJECTS = {
    AuthCode.SIGNUP: "Confirm your UniMart account",
    AuthCode.MAGIC_LINK: "Your UniMart login link",
    AuthCode.RECOVERY: "Reset your UniMart password",
}


def new_email_token(hours_valid=1):
    return secrets.token_hex(32), timezone.now() + timedelta(hours=hours_valid)


def issue_auth_code(user, kind):
    lifetime = settings.UNIMART["AUTH_CODE_LIFETIME"]
    code, _ = new_email_token()
    return AuthCode.objects.create(
        user=user, code=code, kind=kind, expires_at=timezone.now() + lifetime
    )


def redeem_auth_code(code):
    """Return the AuthCode for `code` and mark it used, or None if unusable."""
    if not code:
        return None
    auth_code = AuthCode.objects.select_related("user").filter(code=code).first()
    if auth_code is None or not auth_code.is_usable():
        return None
    auth_code.mark_used()
    return auth_code


def send_auth_email(request, user, kind, next_url="/"):
    """Issue a code of `kind` and email the callback link for it."""
    auth_code = issue_auth_code(user, kind)
    callback_url = request.build_absolute_uri(reverse("market_app:auth_callback"))
    link = f"{callback_url}?code={auth_code.code}"
    if kind != AuthCode.RECOVERY and next_url and next_url != "/":
        link += "&" + urlencode({"next": next_url})

    name = getattr(getattr(user, "profile", None), "display_name", "") or user.username
    body = (
        f"Hi {name},\n\n"
        f"Use this link to continue:\n{link}\n\n"
        "This link expires in 1 hour and can only be used once."
    )
    send_mail(EMAIL_SUBJECTS[kind], body, settings.DEFAULT_FROM_EMAIL, [user.email])
    logger.info(f"Sent {kind} email to user {user.id}")
    return auth_code
