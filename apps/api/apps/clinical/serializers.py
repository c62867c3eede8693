from rest_framework import serializers


class HistoricalBypassSerializer(serializers.Serializer):
    patient = serializers.UUIDField(read_only=True)
    bypass_historical_mode = serializers.BooleanField()
