from django.contrib.sitemaps.views import sitemap
from django.urls import path
from django.views.generic import RedirectView

from . import views
from .sitemaps import sitemaps

app_name = "market_app"

urlpatterns = [
    path("", views.home, name="home"),
    path("post/<int:listing_id>/", views.listing_detail, name="listing_detail"),
    path("post/<int:listing_id>/click/", views.toggle_listing_click, name="toggle_click"),
    path("post/<int:listing_id>/delete/", views.delete_listing, name="delete_listing"),
    path("upload/", views.upload, name="upload"),
    path("create/", RedirectView.as_view(pattern_name="market_app:upload"), name="create"),
    path("profile/", views.profile, name="profile"),
    path("profile/edit/", views.edit_profile, name="edit_profile"),
    path("profile/<int:user_id>/", views.profile_redirect, name="profile_redirect"),
    path("seller/<int:user_id>/", views.seller_profile, name="seller_profile"),
    path("dashboard/", views.dashboard, name="dashboard"),
    path("suggestions/", views.suggestions, name="suggestions"),
    path("suggestions/feed/", views.suggestions_feed, name="suggestions_feed"),
    path("verify/", views.verify, name="verify"),
    path("api/verify-payment/", views.verify_payment, name="verify_payment"),
    path("legal/", views.legal, name="legal"),
    # accounts
    path("login/", views.login_view, name="login"),
    path("logout/", views.logout_view, name="logout"),
    path("signup/", views.SignupView.as_view(), name="signup"),
    path("magic-link/", views.magic_link, name="magic_link"),
    path("forgot-password/", views.forgot_password, name="forgot_password"),
    path("reset-password/", views.reset_password, name="reset_password"),
    path("auth/callback/", views.auth_callback, name="auth_callback"),
    # seo
    path("sitemap.xml", sitemap, {"sitemaps": sitemaps}, name="sitemap"),
    path("robots.txt", views.robots_txt, name="robots"),
    path("opengraph-image.png", views.opengraph_image, name="opengraph_image"),
]
