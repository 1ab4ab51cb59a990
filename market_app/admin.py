from django.contrib import admin

from .models import AuthCode, Listing, ListingClick, Profile, Suggestion, VerificationRequest


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ["user", "handle", "full_name", "school", "is_premium", "premium_expires_at", "lifetime_clicks"]
    search_fields = ["user__email", "user__username", "handle", "full_name", "school"]
    list_filter = ["is_premium", "school"]
    readonly_fields = ["created_at", "updated_at"]


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ["title", "price", "category", "owner", "clicks", "created_at", "expires_at"]
    list_filter = ["category", "condition", "created_at"]
    search_fields = ["title", "content", "tags", "owner__username"]
    readonly_fields = ["created_at", "updated_at"]
    date_hierarchy = "created_at"


@admin.register(VerificationRequest)
class VerificationRequestAdmin(admin.ModelAdmin):
    list_display = ["paystack_reference", "user", "plan_label", "amount_paid", "months", "status", "created_at"]
    list_filter = ["status", "plan_id", "created_at"]
    search_fields = ["paystack_reference", "paystack_email", "user__email"]
    readonly_fields = ["created_at"]


@admin.register(Suggestion)
class SuggestionAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "message_preview", "created_at"]
    search_fields = ["name", "message"]
    readonly_fields = ["created_at"]

    def message_preview(self, obj):
        return obj.message[:50] + "..." if len(obj.message) > 50 else obj.message
    message_preview.short_description = "Message"


admin.site.register(ListingClick)
admin.site.register(AuthCode)

admin.site.site_header = "UniMart Admin"
admin.site.site_title = "UniMart Admin Portal"
admin.site.index_title = "Welcome to UniMart Admin Portal"
