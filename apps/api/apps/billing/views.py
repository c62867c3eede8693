"""Billing views."""
from rest_framework import mixins, viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.core.exceptions import ValidationError
from django.http import Http404
import time

from apps.core.observability import metrics, get_sanitized_logger
from apps.integrations.exchange_rates import NoRateAvailable

from .exceptions import BeneficiaryCapacityError, PersistenceError
from .ledger import add_payment, delete_payment, get_summary
from .models import CompletedTreatment, Payment
from .permissions import CanManagePayments
from .serializers import (
    CompletedTreatmentCreateSerializer,
    CompletedTreatmentPreviewSerializer,
    CompletedTreatmentSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PaymentSummarySerializer,
    PricingPreviewSerializer,
)
from .services import price_completed_treatment, save_completed_treatment

logger = get_sanitized_logger(__name__)


def validation_error_payload(error: ValidationError, error_type: str = 'validation_error') -> dict:
    if hasattr(error, 'error_dict'):
        detail = error.message_dict
    else:
        detail = error.messages
    return {'error': detail, 'error_type': error_type}


class CompletedTreatmentViewSet(mixins.ListModelMixin,
                                mixins.RetrieveModelMixin,
                                viewsets.GenericViewSet):
    """
    Completed treatments with their payment ledger.

    Additional endpoints:
    - POST /treatments/preview/ - Price a selection without saving
    - GET /treatments/{id}/summary/ - Payment summary
    - GET|POST /treatments/{id}/payments/ - List / record payments
    """
    queryset = CompletedTreatment.objects.all().select_related('patient', 'promotion').prefetch_related(
        'lines', 'beneficiaries'
    )
    serializer_class = CompletedTreatmentSerializer
    permission_classes = [IsAuthenticated]
    ordering_fields = ['visit_date', 'created_at', 'final_total']
    ordering = ['-visit_date', '-created_at']

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get('patient'):
            queryset = queryset.filter(patient_id=params['patient'])
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('role'):
            queryset = queryset.filter(role=params['role'])
        return queryset

    def create(self, request, *args, **kwargs):
        """
        Save a completed treatment (individual or group promotion).

        POST /api/v1/billing/treatments/
        {
            "patient": "uuid",
            "visit_date": "2026-03-01",
            "lines": [{"treatment_id": 1, "quantity": 2}, {"promotion_id": 3}],
            "discount_type": "percentage",
            "discount_value": "10",
            "signature_ref": "signatures/abc.png",
            "beneficiaries": ["uuid"],        // group promotions only
            "request_id": "client-generated"  // optional, makes retries safe
        }

        Returns:
        - 201: Saved (or already saved for this request_id)
        - 400: Validation error, capacity exceeded
        - 500: Persistence failure, nothing was written
        """
        start_time = time.time()
        serializer = CompletedTreatmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            treatment = save_completed_treatment(
                patient=data['patient'],
                visit_date=data['visit_date'],
                lines=serializer.get_line_inputs(),
                manual_discount=serializer.get_manual_discount(),
                signature_ref=data['signature_ref'],
                beneficiaries=data['beneficiaries'],
                doctor_notes=data['doctor_notes'],
                currency=data.get('currency'),
                request_id=data.get('request_id'),
                created_by=request.user,
            )
        except BeneficiaryCapacityError as e:
            return Response(
                validation_error_payload(e, 'beneficiary_capacity'),
                status=status.HTTP_400_BAD_REQUEST
            )
        except ValidationError as e:
            metrics.completed_treatments_saved_total.labels(role='unknown', result='validation_error').inc()
            logger.warning(
                'Completed treatment rejected - validation error',
                extra={'patient_id': str(data['patient'].pk), 'error': str(e)}
            )
            return Response(validation_error_payload(e), status=status.HTTP_400_BAD_REQUEST)
        except PersistenceError:
            return Response(
                {
                    'error': 'Completed treatment could not be saved',
                    'error_type': 'persistence_error',
                    'message': 'Nothing was saved; the request can be retried unchanged',
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        treatment = self.get_queryset().get(pk=treatment.pk)
        logger.info(
            'Completed treatment created',
            extra={
                'treatment_id': str(treatment.id),
                'role': treatment.role,
                'duration_ms': int((time.time() - start_time) * 1000),
            }
        )
        output_serializer = CompletedTreatmentSerializer(treatment, context={'request': request})
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'], url_path='preview')
    def preview(self, request):
        """
        Price a selection as the save would, without writing anything.

        POST /api/v1/billing/treatments/preview/
        """
        serializer = CompletedTreatmentPreviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        context, gate, pricing = price_completed_treatment(
            data['patient'],
            data['visit_date'],
            serializer.get_line_inputs(),
            serializer.get_manual_discount(),
        )
        output = PricingPreviewSerializer({
            'subtotal': pricing.subtotal,
            'discount': pricing.discount,
            'total': pricing.total,
            'reasons': list(pricing.reasons),
            'discount_reason': pricing.discount_reason,
            'is_historical': context.is_historical,
            'bypass': context.bypass,
            'requires_signature': gate.requires_signature,
        })
        return Response(output.data, status=status.HTTP_200_OK)

    @action(detail=True, methods=['get'], url_path='summary')
    def summary(self, request, pk=None):
        """
        GET /api/v1/billing/treatments/{id}/summary/

        Always recomputed from the payment ledger.
        """
        treatment = self.get_object()
        summary = get_summary(treatment.pk)
        return Response(PaymentSummarySerializer(summary).data, status=status.HTTP_200_OK)

    @action(
        detail=True,
        methods=['get', 'post'],
        url_path='payments',
        permission_classes=[CanManagePayments]
    )
    def payments(self, request, pk=None):
        """
        GET /api/v1/billing/treatments/{id}/payments/
        - List the ledger of this treatment

        POST /api/v1/billing/treatments/{id}/payments/
        - Payload: {
            "amount": "100.00",
            "currency": "USD",
            "method": "efectivo",
            "note": "",                      // optional
            "idempotency_key": "pay-abc-123" // optional
          }
        - Returns: recomputed payment summary

        Business Rules:
        - amount > 0, known method, supported currency
        - foreign-currency amounts are converted at commit time and stored
          with the rate used
        - status and paid amount are recomputed, never accepted from the client
        """
        treatment = self.get_object()

        if request.method == 'GET':
            payments = treatment.payments.order_by('paid_at')
            serializer = PaymentSerializer(payments, many=True)
            return Response(serializer.data, status=status.HTTP_200_OK)

        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            summary = add_payment(
                treatment.pk,
                amount=data['amount'],
                currency=data['currency'],
                method=data['method'],
                note=data.get('note'),
                idempotency_key=data.get('idempotency_key'),
                created_by=request.user,
            )
        except NoRateAvailable as e:
            return Response(
                validation_error_payload(e, 'no_rate_available'),
                status=status.HTTP_400_BAD_REQUEST
            )
        except ValidationError as e:
            logger.warning(
                'Payment rejected - validation error',
                extra={'treatment_id': str(treatment.pk), 'error': str(e)}
            )
            return Response(validation_error_payload(e), status=status.HTTP_400_BAD_REQUEST)

        return Response(PaymentSummarySerializer(summary).data, status=status.HTTP_201_CREATED)


class PaymentViewSet(mixins.RetrieveModelMixin,
                     mixins.DestroyModelMixin,
                     viewsets.GenericViewSet):
    """
    Individual ledger entries. Payments are never updated; a wrong entry is
    deleted and entered again.
    """
    queryset = Payment.objects.all().select_related('treatment')
    serializer_class = PaymentSerializer
    permission_classes = [CanManagePayments]

    def destroy(self, request, *args, **kwargs):
        """
        DELETE /api/v1/billing/payments/{id}/

        Returns the recomputed summary of the treatment the payment belonged to.
        """
        payment = self.get_object()
        try:
            summary = delete_payment(payment.pk)
        except Payment.DoesNotExist:
            raise Http404('Payment already deleted')
        return Response(PaymentSummarySerializer(summary).data, status=status.HTTP_200_OK)
