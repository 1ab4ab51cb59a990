"""
Verified-seller payments.

The browser completes a Paystack checkout and then posts the transaction
reference here. The reference is checked with Paystack, the amount is
compared against the plan price, and the seller badge is activated. The
audit row carrying the reference is inserted first, inside the same
transaction, and the reference column is unique, so one reference can
never activate a badge twice.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..models import Profile, VerificationRequest

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


class PaymentError(Exception):
    status_code = 400
    message = "Payment could not be processed."

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class MissingFields(PaymentError):
    status_code = 400
    message = "Missing required fields."


class VerificationFailed(PaymentError):
    status_code = 402
    message = "Payment could not be verified with Paystack. Please contact support."


class AmountMismatch(PaymentError):
    status_code = 402


class DuplicateReference(PaymentError):
    status_code = 409
    message = "This payment reference has already been used."


class ActivationFailed(PaymentError):
    status_code = 500


class PaymentVerificationError(Exception):
    """Paystack did not confirm the transaction."""


@dataclass
class PaymentVerification:
    status: str
    amount: Decimal
    currency: str
    customer_email: str
    raw: dict | None = None

    @property
    def succeeded(self):
        return self.status == "success"


class PaystackClient:
    def __init__(self, secret_key=None, base_url=None, timeout=None):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT

    def verify(self, reference):
        ref = (reference or "").strip()
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.get(
                f"{self.base_url}/transaction/verify/{ref}", headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise PaymentVerificationError(f"PAYSTACK_UNREACHABLE:{e}") from e

        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if r.status_code < 200 or r.status_code >= 300 or j.get("status") is not True:
            msg = (j.get("message") or f"HTTP {r.status_code}").strip()
            raise PaymentVerificationError(f"PAYSTACK_VERIFY_FAILED:{msg}")

        data = j.get("data") or {}
        # Paystack amounts are in the minor unit (pesewas)
        try:
            amount = Decimal(str(data.get("amount") or 0)) / 100
        except InvalidOperation:
            amount = Decimal("0")
        customer_email = ((data.get("customer") or {}).get("email") or "").strip()
        return PaymentVerification(
            status=(data.get("status") or "").strip().lower(),
            amount=amount,
            currency=(data.get("currency") or "GHS").strip().upper(),
            customer_email=customer_email,
            raw=j,
        )


def get_plans():
    return settings.UNIMART["PLANS"]


def get_plan(plan_id):
    for plan in get_plans():
        if plan["id"] == plan_id:
            return plan
    return None


def _to_decimal(value):
    if isinstance(value, bool):
        raise PaymentError("Invalid amount.")
    try:
        amount = Decimal(str(value if value not in (None, "") else 0))
    except InvalidOperation:
        raise PaymentError("Invalid amount.")
    if not amount.is_finite() or amount < 0:
        raise PaymentError("Invalid amount.")
    return amount


def _to_user_id(value):
    # JSON true/false and floats are not user ids
    if isinstance(value, bool):
        raise PaymentError("Invalid user.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise PaymentError("Invalid user.")


def _months_for(plan, months):
    """The plan decides the duration; a posted month count must agree with it."""
    if months not in (None, ""):
        if isinstance(months, bool):
            raise PaymentError("Invalid plan duration.")
        try:
            months = int(months)
        except (TypeError, ValueError):
            raise PaymentError("Invalid plan duration.")
        if months != plan["months"]:
            raise PaymentError("Plan duration does not match the selected plan.")
    return plan["months"]


def verify_and_activate(payload, client=None, now=None):
    """
    Verify a Paystack reference and activate the verified badge.

    The price and duration come from the configured plan, never from the
    payload. Raises a PaymentError subclass describing the failure; returns
    the saved VerificationRequest on success.
    """
    reference = str(payload.get("reference") or "").strip()
    user_id = payload.get("user_id")
    plan_id = str(payload.get("plan_id") or "").strip()
    if not reference or user_id in (None, "") or not plan_id:
        raise MissingFields()
    user_id = _to_user_id(user_id)

    plan = get_plan(plan_id)
    if plan is None:
        raise PaymentError("Unknown plan.")
    # validated so a malformed body fails before Paystack is called
    _to_decimal(payload.get("amount"))
    months = _months_for(plan, payload.get("months"))
    price = plan["price"]
    plan_label = str(payload.get("plan_label") or "").strip() or plan["label"]

    client = client or PaystackClient()
    try:
        verification = client.verify(reference)
    except PaymentVerificationError as e:
        logger.error(f"Paystack verification failed for {reference}: {str(e)}")
        raise VerificationFailed()
    if not verification.succeeded:
        logger.error(
            f"Paystack reported status '{verification.status}' for {reference}"
        )
        raise VerificationFailed()

    if verification.amount < price:
        logger.warning(
            f"Underpaid {plan_id} for {reference}: {verification.amount} < {price}"
        )
        raise AmountMismatch(
            f"Payment amount mismatch. Expected GH₵{price}, received GH₵{verification.amount}."
        )

    now = now or timezone.now()
    try:
        with transaction.atomic():
            profile = Profile.objects.select_for_update().filter(user_id=user_id).first()
            if profile is None:
                raise ActivationFailed(
                    "Payment verified but failed to activate your badge. "
                    f"Contact support with ref: {reference}"
                )
            record = VerificationRequest.objects.create(
                user_id=profile.user_id,
                plan_id=plan_id,
                plan_label=plan_label,
                amount_paid=verification.amount,
                months=months,
                paystack_reference=reference,
                paystack_email=verification.customer_email or None,
                status="approved",
            )
            profile.is_premium = True
            profile.premium_expires_at = now + timedelta(days=months * DAYS_PER_MONTH)
            profile.save(update_fields=["is_premium", "premium_expires_at", "updated_at"])
    except IntegrityError:
        logger.warning(f"Duplicate payment reference rejected: {reference}")
        raise DuplicateReference()

    logger.info(
        f"Verified badge activated for user {profile.user_id} "
        f"({plan_id}, {months} month(s), ref {reference})"
    )
    return record
