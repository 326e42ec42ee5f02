from django.urls import include, path

urlpatterns = [
    path("api/shop/", include("apps.shop.urls")),
    path("api/", include("apps.monitoring.urls")),
]
