from django.urls import path

from .views import (
    CheckoutView,
    CustomerOrdersView,
    ExpiryCheckView,
    OrderDetailView,
    OrdersCollectionView,
    OrdersPingView,
    OrderStatusView,
    ReportPaymentView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("customer/<int:customer_id>/", CustomerOrdersView.as_view(), name="customer-orders"),
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<uuid:oid>/expiry-check/", ExpiryCheckView.as_view(), name="expiry-check"),
    path("<uuid:oid>/report-payment/", ReportPaymentView.as_view(), name="report-payment"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="order-status"),
]
