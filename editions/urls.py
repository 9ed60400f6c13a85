from django.urls import path
from .views import (
    ActivateLineView,
    OrderWebhookView,
    ProductEditionsView,
    ReconcileProductView,
    RestoreLineView,
    RetireLineView,
)

urlpatterns = [
    path("webhooks/orders/", OrderWebhookView.as_view(), name="order-webhook"),
    path("lines/activate/", ActivateLineView.as_view(), name="activate-line"),
    path("lines/retire/", RetireLineView.as_view(), name="retire-line"),
    path("lines/restore/", RestoreLineView.as_view(), name="restore-line"),
    path("products/<str:product_id>/", ProductEditionsView.as_view(), name="product-editions"),
    path(
        "products/<str:product_id>/reconcile/",
        ReconcileProductView.as_view(),
        name="reconcile-product",
    ),
]
