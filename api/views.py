"""
API views for property import, staging review and the catalog.
"""

import logging
from decimal import Decimal

from rest_framework import status, serializers
from rest_framework.decorators import api_view, parser_classes
from rest_framework.parsers import JSONParser, MultiPartParser, FormParser
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter, inline_serializer
from drf_spectacular.types import OpenApiTypes

from scrapers.importers import screenshot_importer, url_importer
from .models import ScrapingConfig
from .serializers import (
    PRICE_RANGES,
    CrawlResultSerializer,
    ErrorSerializer,
    IdListRequestSerializer,
    ImageUploadRequestSerializer,
    ImportResultSerializer,
    ImportScreenshotRequestSerializer,
    ImportUrlRequestSerializer,
    PaginationMetadataSerializer,
    PropertySerializer,
    PropertyStatusRequestSerializer,
    RunScrapingRequestSerializer,
    ScrapingConfigSerializer,
    ScrapingLogSerializer,
    StagingPropertySerializer,
)
from .staging import PropertyNotFound, staging_service
from .store import property_store
from .tasks import execute_crawl, run_scraping
from .uploads import image_store

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 24
MAX_PER_PAGE = 100
DEFAULT_LOG_LIMIT = 20


def get_paginated_response_schema(resource_serializer_class, name):
    """Helper to generate paginated response schema."""
    return inline_serializer(
        name=name,
        fields={
            'count': serializers.IntegerField(),
            'results': resource_serializer_class(many=True),
            'pagination': PaginationMetadataSerializer(),
        }
    )


def build_paginated_response(results, total_results, current_page, per_page=DEFAULT_PER_PAGE):
    """Build a standardized paginated response wrapper."""
    total_pages = max(1, (total_results + per_page - 1) // per_page)
    return {
        'count': len(results),
        'results': results,
        'pagination': {
            'total_results': total_results,
            'total_pages': total_pages,
            'current_page': current_page,
            'per_page': per_page,
            'has_next': current_page < total_pages,
            'has_previous': current_page > 1,
        }
    }


def bad_request(message):
    return Response(
        {'error': 'Bad Request', 'message': message, 'status_code': 400},
        status=status.HTTP_400_BAD_REQUEST
    )


def validation_error(serializer):
    return Response(
        {
            'error': 'Bad Request',
            'message': 'Invalid request body',
            'status_code': 400,
            'details': serializer.errors,
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def int_param(request, name, default):
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default


CountSerializer = inline_serializer(name='CountResponse', fields={'deleted': serializers.IntegerField()})


# ============================================================================
# Scraping Endpoints
# ============================================================================

@extend_schema(
    summary="Run a crawl",
    description=(
        "Crawls the configured seed pages (or one manual URL) and stages every new property. "
        "Runs synchronously and returns the run counts, or queues a Celery task when run_async is true."
    ),
    request=RunScrapingRequestSerializer,
    responses={
        200: CrawlResultSerializer,
        202: inline_serializer(name='QueuedRun', fields={'task_id': serializers.CharField()}),
        404: ErrorSerializer,
        409: ErrorSerializer,
    },
    tags=['Scraping']
)
@api_view(['POST'])
def run_crawl(request):
    """Start a scraping run."""
    serializer = RunScrapingRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    data = serializer.validated_data

    if data['run_async']:
        task = run_scraping.delay(data['config_id'], states=data.get('states'), url=data.get('url') or None)
        logger.info(f"Queued crawl for config {data['config_id']} as task {task.id}")
        return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)

    result = execute_crawl(data['config_id'], states=data.get('states'), url=data.get('url') or None)
    return Response(result.to_dict())


@extend_schema(
    summary="List or create scraping configs",
    request=ScrapingConfigSerializer,
    responses={200: ScrapingConfigSerializer(many=True), 201: ScrapingConfigSerializer},
    tags=['Scraping']
)
@api_view(['GET', 'POST'])
def scraping_configs(request):
    """List scraping configs, or create one."""
    if request.method == 'POST':
        serializer = ScrapingConfigSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)
        serializer.save()
        return Response(serializer.data, status=status.HTTP_201_CREATED)

    configs = ScrapingConfig.objects.all()
    return Response(ScrapingConfigSerializer(configs, many=True).data)


@extend_schema(
    summary="List scraping runs",
    description="Most recent runs first.",
    parameters=[
        OpenApiParameter(name='config_id', type=OpenApiTypes.INT, description='Only runs of this config'),
        OpenApiParameter(name='limit', type=OpenApiTypes.INT, description='Maximum runs returned (default 20)'),
    ],
    responses={200: ScrapingLogSerializer(many=True)},
    tags=['Scraping']
)
@api_view(['GET'])
def scraping_logs(request):
    """List recent scraping runs."""
    config_id = request.query_params.get('config_id')
    limit = min(max(int_param(request, 'limit', DEFAULT_LOG_LIMIT), 1), MAX_PER_PAGE)
    runs = property_store.list_runs(config_id=int(config_id) if config_id and config_id.isdigit() else None,
                                    limit=limit)
    return Response(ScrapingLogSerializer(runs, many=True).data)


# ============================================================================
# Import Endpoints
# ============================================================================

@extend_schema(
    summary="Import a property from a URL",
    description=(
        "Fetches the page and extracts a property draft. With stage=true the draft is also "
        "staged for review unless its external id is already known."
    ),
    request=ImportUrlRequestSerializer,
    responses={
        200: ImportResultSerializer,
        409: ErrorSerializer,
        422: ErrorSerializer,
        502: ErrorSerializer,
        503: ErrorSerializer,
    },
    tags=['Import']
)
@api_view(['POST'])
def import_url(request):
    """Import one listing from any URL."""
    serializer = ImportUrlRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    data = serializer.validated_data

    result = url_importer.import_url(data['url'], store=property_store if data['stage'] else None)
    return Response(result.to_dict())


@extend_schema(
    summary="Import a property from a screenshot",
    description="Sends the screenshot (data URL or image file, at most 5MB) to the vision extraction service.",
    request=ImportScreenshotRequestSerializer,
    responses={
        200: ImportResultSerializer,
        400: ErrorSerializer,
        409: ErrorSerializer,
        422: ErrorSerializer,
        503: ErrorSerializer,
    },
    tags=['Import']
)
@api_view(['POST'])
@parser_classes([JSONParser, MultiPartParser, FormParser])
def import_screenshot(request):
    """Import one listing from a screenshot."""
    serializer = ImportScreenshotRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    data = serializer.validated_data

    uploaded = data.get('image')
    if uploaded is not None:
        image, content_type = uploaded.read(), getattr(uploaded, 'content_type', '') or ''
    else:
        image, content_type = data['image_data_url'], ''

    result = screenshot_importer.import_screenshot(
        image,
        content_type=content_type,
        source_url=data.get('source_url', ''),
        store=property_store if data['stage'] else None,
    )
    return Response(result.to_dict())


# ============================================================================
# Staging Endpoints
# ============================================================================

@extend_schema(
    summary="List staged properties",
    description="Newest first. already_imported flags records whose external id is in the catalog.",
    parameters=[
        OpenApiParameter(name='status', type=OpenApiTypes.STR, enum=['pending', 'imported', 'ignored']),
    ],
    responses={200: StagingPropertySerializer(many=True)},
    tags=['Staging']
)
@api_view(['GET'])
def staging_list(request):
    """List staged properties."""
    records = staging_service.list_staging(request.query_params.get('status') or None)
    return Response(StagingPropertySerializer(records, many=True).data)


@extend_schema(
    summary="Import a staged property into the catalog",
    request=None,
    responses={
        201: inline_serializer(name='ImportedProperty', fields={'property_id': serializers.IntegerField()}),
        404: ErrorSerializer,
        409: ErrorSerializer,
        500: ErrorSerializer,
    },
    tags=['Staging']
)
@api_view(['POST'])
def staging_import(request, staging_id):
    """Promote a pending staged property."""
    property_id = staging_service.import_one(staging_id)
    return Response({'property_id': property_id}, status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Ignore a staged property",
    request=None,
    responses={204: None, 404: ErrorSerializer, 409: ErrorSerializer},
    tags=['Staging']
)
@api_view(['POST'])
def staging_ignore(request, staging_id):
    """Mark a pending staged property as ignored."""
    staging_service.ignore(staging_id)
    return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    summary="Delete a staged property",
    responses={204: None, 404: ErrorSerializer},
    tags=['Staging']
)
@api_view(['DELETE'])
def staging_delete(request, staging_id):
    """Delete a staged property in any status."""
    staging_service.delete(staging_id)
    return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    summary="Import several staged properties",
    description="Imports in order and continues past failures.",
    request=IdListRequestSerializer,
    responses={
        200: inline_serializer(
            name='BulkImportResult',
            fields={
                'imported': serializers.IntegerField(),
                'errors': serializers.IntegerField(),
                'failed_ids': serializers.ListField(child=serializers.IntegerField()),
                'property_ids': serializers.ListField(child=serializers.IntegerField()),
            }
        ),
    },
    tags=['Staging']
)
@api_view(['POST'])
def staging_bulk_import(request):
    """Import a list of staged properties."""
    serializer = IdListRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    return Response(staging_service.bulk_import(serializer.validated_data['ids']))


@extend_schema(
    summary="Delete several staged properties",
    request=IdListRequestSerializer,
    responses={200: CountSerializer},
    tags=['Staging']
)
@api_view(['POST'])
def staging_bulk_delete(request):
    """Delete a list of staged properties."""
    serializer = IdListRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    return Response({'deleted': staging_service.bulk_delete(serializer.validated_data['ids'])})


@extend_schema(
    summary="Clear the staging area",
    description="Deletes every staged property regardless of status.",
    request=None,
    responses={200: CountSerializer},
    tags=['Staging']
)
@api_view(['POST'])
def staging_clear(request):
    """Delete all staged properties."""
    return Response({'deleted': staging_service.clear_all()})


# ============================================================================
# Catalog Endpoints
# ============================================================================

@extend_schema(
    summary="List or create catalog properties",
    description="GET browses the catalog, newest first. POST creates a property by manual entry.",
    parameters=[
        OpenApiParameter(name='state', type=OpenApiTypes.STR, description='Two-letter state code'),
        OpenApiParameter(name='type', type=OpenApiTypes.STR, enum=['house', 'apartment', 'land', 'commercial']),
        OpenApiParameter(name='status', type=OpenApiTypes.STR, enum=['available', 'sold']),
        OpenApiParameter(name='price_range', type=OpenApiTypes.STR, enum=list(PRICE_RANGES)),
        OpenApiParameter(name='search', type=OpenApiTypes.STR, description='City or title contains'),
        OpenApiParameter(name='page', type=OpenApiTypes.INT, description='Page number'),
        OpenApiParameter(name='per_page', type=OpenApiTypes.INT, description='Results per page'),
    ],
    request=PropertySerializer,
    responses={
        200: get_paginated_response_schema(PropertySerializer, 'PaginatedPropertyResponse'),
        201: PropertySerializer,
    },
    tags=['Properties']
)
@api_view(['GET', 'POST'])
def properties(request):
    """Browse the catalog or add a property manually."""
    if request.method == 'POST':
        serializer = PropertySerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)
        record = serializer.save()
        logger.info(f"Property {record.pk} created by manual entry")
        return Response(PropertySerializer(record).data, status=status.HTTP_201_CREATED)

    params = request.query_params
    filters = {
        'state': params.get('state'),
        'type': params.get('type'),
        'status': params.get('status'),
        'search': params.get('search'),
    }

    price_range = params.get('price_range')
    if price_range:
        if price_range not in PRICE_RANGES:
            return bad_request(f"price_range must be one of {', '.join(PRICE_RANGES)}")
        low, high = PRICE_RANGES[price_range]
        filters['min_price'] = Decimal(low)
        filters['max_price'] = Decimal(high) if high is not None else None

    page = max(int_param(request, 'page', 1), 1)
    per_page = min(max(int_param(request, 'per_page', DEFAULT_PER_PAGE), 1), MAX_PER_PAGE)

    queryset = property_store.catalog_queryset(filters)
    start = (page - 1) * per_page
    serializer = PropertySerializer(queryset[start:start + per_page], many=True)
    return Response(build_paginated_response(
        results=serializer.data,
        total_results=queryset.count(),
        current_page=page,
        per_page=per_page,
    ))


@extend_schema(
    summary="Get or delete a catalog property",
    responses={200: PropertySerializer, 204: None, 404: ErrorSerializer},
    tags=['Properties']
)
@api_view(['GET', 'DELETE'])
def property_detail(request, property_id):
    """Property detail page data, or delete it."""
    if request.method == 'DELETE':
        staging_service.delete_property(property_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    record = property_store.get_catalog(property_id)
    if record is None:
        raise PropertyNotFound(property_id)
    return Response(PropertySerializer(record).data)


@extend_schema(
    summary="Mark a property available or sold",
    description="sold sets sold_at; available clears it.",
    request=PropertyStatusRequestSerializer,
    responses={200: PropertySerializer, 404: ErrorSerializer},
    tags=['Properties']
)
@api_view(['POST'])
def property_status(request, property_id):
    """Change a catalog property's status."""
    serializer = PropertyStatusRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    record = staging_service.update_property_status(property_id, serializer.validated_data['status'])
    return Response(PropertySerializer(record).data)


@extend_schema(
    summary="Clear the catalog",
    description="Deletes every catalog property.",
    request=None,
    responses={200: CountSerializer},
    tags=['Properties']
)
@api_view(['POST'])
def properties_clear(request):
    """Delete all catalog properties."""
    return Response({'deleted': staging_service.clear_properties()})


# ============================================================================
# Upload Endpoints
# ============================================================================

@extend_schema(
    summary="Upload a property image",
    description="Images only, at most 5MB. Falls back to an inline data URL when storage is unavailable.",
    request={'multipart/form-data': ImageUploadRequestSerializer},
    responses={
        201: inline_serializer(
            name='UploadedImage',
            fields={'url': serializers.CharField(), 'stored': serializers.BooleanField()}
        ),
        400: ErrorSerializer,
    },
    tags=['Uploads']
)
@api_view(['POST'])
@parser_classes([MultiPartParser, FormParser])
def upload_image(request):
    """Store one image and return its URL."""
    serializer = ImageUploadRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error(serializer)
    return Response(image_store.put(serializer.validated_data['file']), status=status.HTTP_201_CREATED)
