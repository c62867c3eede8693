"""Integration URLs."""
from django.urls import path
from .views import convert_preview

urlpatterns = [
    path('exchange-rates/convert/', convert_preview, name='exchange-rate-convert'),
]
