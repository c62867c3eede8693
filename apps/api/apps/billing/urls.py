"""Billing URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from .views import CompletedTreatmentViewSet, PaymentViewSet

router = DefaultRouter()
router.register(r'treatments', CompletedTreatmentViewSet, basename='completed-treatment')
router.register(r'payments', PaymentViewSet, basename='payment')

urlpatterns = [
    path('', include(router.urls)),
]
