from django.urls import path

from .views import (
    AdminCatalogView,
    AdminItemToggleView,
    AdminItemsView,
    AdminModifiersView,
    CartView,
    CatalogView,
    CheckoutView,
    ShopPingView,
)

app_name = "shop"

urlpatterns = [
    path("ping/", ShopPingView.as_view(), name="ping"),
    path("catalog/", CatalogView.as_view(), name="catalog"),
    path("cart/", CartView.as_view(), name="cart"),  # GET view / POST add / DELETE clear
    path("cart/checkout/", CheckoutView.as_view(), name="checkout"),
    path("admin/catalog/", AdminCatalogView.as_view(), name="admin-catalog"),
    path("admin/items/", AdminItemsView.as_view(), name="admin-items"),
    path("admin/items/<int:item_id>/toggle/", AdminItemToggleView.as_view(), name="admin-item-toggle"),
    path("admin/modifiers/", AdminModifiersView.as_view(), name="admin-modifiers"),
]
