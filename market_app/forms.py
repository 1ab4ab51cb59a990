import re

from django import forms
from django.conf import settings
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError

from .models import CATEGORY_CHOICES, CONDITION_CHOICES, MAX_PRICE, Listing, Profile, Suggestion, User

HANDLE_RE = re.compile(r"^[a-z0-9_.]{3,30}$")


def normalize_handle(value):
    return (value or "").strip().lstrip("@").lower()


def validate_handle_format(handle):
    if not HANDLE_RE.match(handle):
        raise ValidationError(
            "Usernames are 3-30 characters: letters, numbers, dots and underscores."
        )


class SignupForm(forms.Form):
    full_name = forms.CharField(max_length=120)
    username = forms.CharField(max_length=30)
    email = forms.EmailField(max_length=254)
    school = forms.CharField(max_length=120, required=False)
    whatsapp_number = forms.CharField(max_length=20, required=False)
    password = forms.CharField(widget=forms.PasswordInput)
    confirm_password = forms.CharField(widget=forms.PasswordInput)

    def clean_email(self):
        email = self.cleaned_data["email"].strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise ValidationError("Email already registered.")
        return email

    def clean_username(self):
        u = normalize_handle(self.cleaned_data["username"])
        validate_handle_format(u)
        if User.objects.filter(username=u).exists() or Profile.objects.filter(handle=u).exists():
            raise ValidationError("Username already taken.")
        return u

    def clean(self):
        cd = super().clean()
        if cd.get("password") != cd.get("confirm_password"):
            self.add_error("confirm_password", "Passwords do not match.")
        elif cd.get("password"):
            try:
                validate_password(cd["password"])
            except ValidationError as e:
                self.add_error("password", e)
        return cd


class LoginForm(forms.Form):
    email = forms.EmailField()
    password = forms.CharField(widget=forms.PasswordInput)
    remember_me = forms.BooleanField(required=False)


class EmailForm(forms.Form):
    email = forms.EmailField()

    def clean_email(self):
        return self.cleaned_data["email"].strip().lower()


class ListingForm(forms.ModelForm):
    tags = forms.CharField(max_length=250, required=False)
    category = forms.ChoiceField(choices=CATEGORY_CHOICES)
    condition = forms.ChoiceField(choices=CONDITION_CHOICES)
    # validated in clean_price so the messages are friendlier than the model's
    price = forms.DecimalField(max_digits=12, decimal_places=2, required=False)

    class Meta:
        model = Listing
        fields = ["title", "content", "price", "category", "condition", "image"]

    def clean_title(self):
        title = self.cleaned_data["title"].strip()
        if not title:
            raise ValidationError("Title is required.")
        return title

    def clean_content(self):
        content = self.cleaned_data["content"].strip()
        if not content:
            raise ValidationError("Description is required.")
        return content

    def clean_price(self):
        price = self.cleaned_data.get("price")
        if price is None:
            return None
        if price < 0:
            raise ValidationError("Price cannot be negative.")
        if price > MAX_PRICE:
            raise ValidationError("Price cannot exceed GH₵99,999.99.")
        return price

    def clean_tags(self):
        raw = self.cleaned_data.get("tags") or ""
        tags = []
        for tag in re.split(r"[,\n]", raw):
            tag = tag.strip().strip("#").lower()
            if tag and tag not in tags:
                tags.append(tag)
        max_tags = settings.UNIMART["MAX_TAGS"]
        if len(tags) > max_tags:
            raise ValidationError(f"You can add at most {max_tags} tags.")
        return tags

    def clean_image(self):
        image = self.cleaned_data.get("image")
        max_mb = settings.UNIMART["MAX_IMAGE_MB"]
        if image and hasattr(image, "size") and image.size > max_mb * 1024 * 1024:
            raise ValidationError(f"Images must be {max_mb} MB or smaller.")
        return image

    def save(self, commit=True):
        listing = super().save(commit=False)
        listing.set_tags(self.cleaned_data.get("tags") or [])
        if commit:
            listing.save()
        return listing


class ProfileForm(forms.ModelForm):
    handle = forms.CharField(max_length=30, required=False, label="Username")

    class Meta:
        model = Profile
        fields = ["full_name", "handle", "bio", "whatsapp_number", "school", "avatar"]

    def clean_handle(self):
        handle = normalize_handle(self.cleaned_data.get("handle"))
        if not handle:
            return None
        validate_handle_format(handle)
        taken = Profile.objects.filter(handle=handle).exclude(pk=self.instance.pk).exists()
        if taken:
            raise ValidationError("That username is already taken.")
        return handle

    def clean_whatsapp_number(self):
        number = (self.cleaned_data.get("whatsapp_number") or "").strip()
        if number and len(re.sub(r"\D", "", number)) < 7:
            raise ValidationError("Enter a valid WhatsApp number, including the country code.")
        return number


class SuggestionForm(forms.ModelForm):
    name = forms.CharField(max_length=60, required=False)

    class Meta:
        model = Suggestion
        fields = ["name", "message"]

    def clean_name(self):
        return (self.cleaned_data.get("name") or "").strip() or "Anonymous"

    def clean_message(self):
        message = (self.cleaned_data.get("message") or "").strip()
        if not message:
            raise ValidationError("Message cannot be empty.")
        return message
