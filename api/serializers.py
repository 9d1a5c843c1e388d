"""
Serializers for the property import and catalog API.
"""

import re

from rest_framework import serializers

from .models import Property, ScrapingConfig, ScrapingLog, StagingProperty

MAX_IMAGES = 10

PRICE_RANGES = {
    '0-100000': (0, 100000),
    '100000-200000': (100000, 200000),
    '200000-350000': (200000, 350000),
    '350000-500000': (350000, 500000),
    '500000+': (500000, None),
}


class StagingPropertySerializer(serializers.ModelSerializer):
    """Staged draft with the already-imported flag for reviewers."""

    already_imported = serializers.SerializerMethodField()

    class Meta:
        model = StagingProperty
        fields = '__all__'

    def get_already_imported(self, obj) -> bool:
        return bool(getattr(obj, 'already_imported', False))


class PropertySerializer(serializers.ModelSerializer):
    """Catalog property, also used for manual entry."""

    class Meta:
        model = Property
        fields = '__all__'
        read_only_fields = ['status', 'created_at', 'updated_at', 'sold_at']

    def validate_price(self, value):
        if value is None or value <= 0:
            raise serializers.ValidationError("Price must be greater than zero.")
        return value

    def validate_area(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Area cannot be negative.")
        return value

    def validate_address_state(self, value):
        value = (value or '').upper()
        if value and not re.fullmatch(r'[A-Z]{2}', value):
            raise serializers.ValidationError("State must be a 2-letter code.")
        return value

    def validate_images(self, value):
        if not isinstance(value, list) or not all(isinstance(url, str) for url in value):
            raise serializers.ValidationError("Images must be a list of URLs.")
        return value[:MAX_IMAGES]


class ScrapingConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = ScrapingConfig
        fields = '__all__'
        read_only_fields = ['last_run_at', 'created_at', 'updated_at']


class ScrapingLogSerializer(serializers.ModelSerializer):
    config_name = serializers.CharField(source='config.name', read_only=True)

    class Meta:
        model = ScrapingLog
        fields = [
            'id', 'config', 'config_name', 'status', 'properties_found', 'properties_new',
            'error_message', 'started_at', 'finished_at',
        ]


# ============================================================================
# Request bodies
# ============================================================================

class RunScrapingRequestSerializer(serializers.Serializer):
    config_id = serializers.IntegerField()
    states = serializers.ListField(child=serializers.CharField(max_length=2), required=False, allow_empty=True)
    url = serializers.CharField(required=False, allow_blank=True)
    run_async = serializers.BooleanField(required=False, default=False)


class ImportUrlRequestSerializer(serializers.Serializer):
    url = serializers.CharField()
    stage = serializers.BooleanField(required=False, default=False)


class ImportScreenshotRequestSerializer(serializers.Serializer):
    image_data_url = serializers.CharField(required=False, allow_blank=True)
    image = serializers.FileField(required=False)
    source_url = serializers.CharField(required=False, allow_blank=True, default='')
    stage = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get('image_data_url') and not attrs.get('image'):
            raise serializers.ValidationError("A screenshot is required (image_data_url or image).")
        return attrs


class IdListRequestSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class PropertyStatusRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Property.Status.choices)


class ImageUploadRequestSerializer(serializers.Serializer):
    file = serializers.FileField()


# ============================================================================
# Responses
# ============================================================================

class AddressSerializer(serializers.Serializer):
    street = serializers.CharField(allow_blank=True)
    neighborhood = serializers.CharField(allow_blank=True)
    city = serializers.CharField(allow_blank=True)
    state = serializers.CharField(allow_blank=True)
    zipcode = serializers.CharField(allow_blank=True)


class DraftSerializer(serializers.Serializer):
    """Normalized draft returned by the import endpoints."""

    external_id = serializers.CharField()
    title = serializers.CharField()
    type = serializers.CharField()
    price = serializers.CharField(allow_null=True)
    original_price = serializers.CharField(allow_null=True)
    discount = serializers.IntegerField(allow_null=True)
    address = AddressSerializer()
    bedrooms = serializers.IntegerField(allow_null=True)
    bathrooms = serializers.IntegerField(allow_null=True)
    parking_spaces = serializers.IntegerField(allow_null=True)
    area = serializers.CharField()
    description = serializers.CharField(allow_blank=True)
    images = serializers.ListField(child=serializers.CharField())
    accepts_fgts = serializers.BooleanField()
    accepts_financing = serializers.BooleanField()
    modality = serializers.CharField(allow_blank=True)
    source_url = serializers.CharField(allow_blank=True)
    auction_date = serializers.CharField(allow_null=True)


class ImportResultSerializer(serializers.Serializer):
    data = DraftSerializer()
    method = serializers.CharField()
    staging_id = serializers.IntegerField(allow_null=True)
    raw_content = serializers.CharField(required=False)


class CrawlResultSerializer(serializers.Serializer):
    run_id = serializers.IntegerField()
    status = serializers.CharField()
    found = serializers.IntegerField()
    new = serializers.IntegerField()
    outcome = serializers.CharField()
    failed = serializers.IntegerField()
    error_message = serializers.CharField(allow_null=True)


class PaginationMetadataSerializer(serializers.Serializer):
    total_results = serializers.IntegerField()
    total_pages = serializers.IntegerField()
    current_page = serializers.IntegerField()
    per_page = serializers.IntegerField()
    has_next = serializers.BooleanField()
    has_previous = serializers.BooleanField()


class ErrorSerializer(serializers.Serializer):
    """Serializer for error responses."""

    error = serializers.CharField()
    message = serializers.CharField()
    status_code = serializers.IntegerField()
