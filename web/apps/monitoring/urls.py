from django.urls import path

from .api import health_view

app_name = "monitoring"

# liveness of the gateway plus its catalog upstream and session cache
urlpatterns = [
    path("health/", health_view, name="health"),
]
