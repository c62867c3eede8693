"""Integration views - exchange-rate preview."""
from django.conf import settings
from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.billing.currency import get_default_currency
from apps.core.observability import get_sanitized_logger

from .exchange_rates import NoRateAvailable, convert

logger = get_sanitized_logger(__name__)


class ConversionQuerySerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    # 'from' is a keyword, so the query parameter is mapped by hand
    from_currency = serializers.CharField(max_length=3)
    to_currency = serializers.CharField(max_length=3)

    def _validate_currency(self, value):
        value = value.upper()
        if value not in settings.SUPPORTED_CURRENCIES:
            raise serializers.ValidationError(f'Unsupported currency: {value}')
        return value

    def validate_from_currency(self, value):
        return self._validate_currency(value)

    def validate_to_currency(self, value):
        return self._validate_currency(value)


class ConversionResultSerializer(serializers.Serializer):
    original_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    original_currency = serializers.CharField()
    converted_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    target_currency = serializers.CharField()
    rate = serializers.DecimalField(max_digits=14, decimal_places=6)
    source = serializers.CharField()
    timestamp = serializers.DateTimeField()


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def convert_preview(request):
    """
    Live conversion preview while a foreign-currency payment is typed in.

    GET /api/v1/billing/exchange-rates/convert/?amount=100&from=USD&to=HNL

    'to' defaults to the clinic currency.

    Returns:
    - 200: Conversion (source: identity | api | fallback)
    - 400: Invalid parameters or no rate for the pair
    """
    query = ConversionQuerySerializer(data={
        'amount': request.query_params.get('amount'),
        'from_currency': request.query_params.get('from'),
        'to_currency': request.query_params.get('to') or get_default_currency(),
    })
    query.is_valid(raise_exception=True)
    data = query.validated_data

    try:
        result = convert(data['amount'], data['from_currency'], data['to_currency'])
    except NoRateAvailable as e:
        logger.warning(
            'Conversion preview failed - no rate',
            extra={'from_currency': data['from_currency'], 'to_currency': data['to_currency']}
        )
        return Response(
            {'error': e.messages, 'error_type': 'no_rate_available'},
            status=status.HTTP_400_BAD_REQUEST
        )

    return Response(ConversionResultSerializer(result).data, status=status.HTTP_200_OK)
