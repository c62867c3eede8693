"""
Clinical views - per-patient historical bypass.
"""
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.clinical.models import Patient, get_patient_bypass, set_patient_bypass
from apps.clinical.permissions import HistoricalBypassPermission
from apps.clinical.serializers import HistoricalBypassSerializer
from apps.core.observability.events import log_historical_bypass_changed


class PatientHistoricalBypassView(APIView):
    """
    GET /api/v1/clinical/patients/{id}/historical-bypass/
    PUT /api/v1/clinical/patients/{id}/historical-bypass/

    When on, the patient's visits before the historical cutoff are priced
    and signed like current visits.

    Body (PUT):
    {
        "bypass_historical_mode": true
    }
    """
    permission_classes = [HistoricalBypassPermission]

    def _get_patient(self, pk):
        try:
            return Patient.objects.get(pk=pk)
        except Patient.DoesNotExist:
            return None

    def get(self, request, pk):
        patient = self._get_patient(pk)
        if patient is None:
            return Response({'error': 'Patient not found'}, status=status.HTTP_404_NOT_FOUND)

        serializer = HistoricalBypassSerializer({
            'patient': patient.pk,
            'bypass_historical_mode': get_patient_bypass(patient),
        })
        return Response(serializer.data)

    def put(self, request, pk):
        patient = self._get_patient(pk)
        if patient is None:
            return Response({'error': 'Patient not found'}, status=status.HTTP_404_NOT_FOUND)

        serializer = HistoricalBypassSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        setting = set_patient_bypass(patient, serializer.validated_data['bypass_historical_mode'])
        log_historical_bypass_changed(setting, changed_by=request.user)

        return Response(
            HistoricalBypassSerializer({
                'patient': patient.pk,
                'bypass_historical_mode': setting.bypass_historical_mode,
            }).data,
            status=status.HTTP_200_OK
        )
