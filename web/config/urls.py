from django.urls import include, path

from apps.orders.views import GatewayWebhookView

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/payments/webhook/", GatewayWebhookView.as_view(), name="payments-webhook"),
    path("api/", include("apps.monitoring.urls")),
]
