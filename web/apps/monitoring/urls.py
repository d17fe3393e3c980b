from django.urls import path

from .api import health_view

app_name = "monitoring"

# mounted under /api/ next to the orders and payments routes
urlpatterns = [
    path("health/", health_view, name="health"),
]
