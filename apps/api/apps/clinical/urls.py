"""
Clinical URLs - per-patient settings read by billing.
"""
from django.urls import path

from .views import PatientHistoricalBypassView

urlpatterns = [
    path(
        'patients/<uuid:pk>/historical-bypass/',
        PatientHistoricalBypassView.as_view(),
        name='patient-historical-bypass'
    ),
]
