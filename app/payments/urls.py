"""
URL configuration for the payments app.

Routes are grouped under three prefixes:
    - payments/        Charges, ledger reads and reconciliation
    - refunds/         Refund requests, decisions and listings
    - payment-config/  Processor configuration management

All routes are prefixed with /api/v1/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views

app_name = "payments"

payment_patterns = [
    path("payments/", views.PaymentListView.as_view(), name="payment-list"),
    path("payments/charge/", views.ChargeView.as_view(), name="charge"),
    path("payments/parent/<int:parent_id>/", views.ParentPaymentListView.as_view(), name="parent-payments"),
    path("payments/sync/refunds/", views.RefundSyncAllView.as_view(), name="sync-refunds"),
    path("payments/sync/refunds/by-date/", views.RefundSyncByDateView.as_view(), name="sync-refunds-by-date"),
    path("payments/sync/unknown-refunds/", views.UnknownPaymentRefundsView.as_view(), name="unknown-refunds"),
    path("payments/<str:payment_ref>/details/", views.PaymentDetailView.as_view(), name="payment-detail"),
    path(
        "payments/<str:payment_ref>/refund-eligibility/",
        views.RefundEligibilityView.as_view(),
        name="refund-eligibility",
    ),
    path(
        "payments/<str:payment_ref>/sync-refunds/",
        views.PaymentRefundSyncView.as_view(),
        name="payment-sync-refunds",
    ),
]

refund_patterns = [
    path("refunds/request/", views.RefundRequestView.as_view(), name="refund-request"),
    path("refunds/process/", views.RefundProcessView.as_view(), name="refund-process"),
    path("refunds/all/", views.RefundedPaymentListView.as_view(), name="refund-all"),
    path("refunds/pending/", views.PendingRefundListView.as_view(), name="refund-pending"),
]

config_patterns = [
    path("payment-config/", views.ConfigurationListView.as_view(), name="config-list"),
    path("payment-config/frontend/config/", views.FrontendConfigView.as_view(), name="config-frontend"),
    path("payment-config/system/active/", views.ActiveConfigurationView.as_view(), name="config-active"),
    path("payment-config/test/all/", views.ConfigurationTestAllView.as_view(), name="config-test-all"),
    path("payment-config/<uuid:pk>/", views.ConfigurationDetailView.as_view(), name="config-detail"),
    path("payment-config/<uuid:pk>/activate/", views.ConfigurationActivateView.as_view(), name="config-activate"),
    path("payment-config/<uuid:pk>/test/", views.ConfigurationTestView.as_view(), name="config-test"),
]

urlpatterns = payment_patterns + refund_patterns + config_patterns
