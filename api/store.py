"""
Django ORM implementation of the persistence interface used by the
scraping pipeline and the staging service.
"""

import logging
from typing import Iterable, List, Optional, Set

from django.db.models import Q, QuerySet
from django.utils import timezone

from scrapers.drafts import PropertyDraft
from .models import Property, ScrapingConfig, ScrapingLog, StagingProperty

logger = logging.getLogger(__name__)


class RunAlreadyFinished(Exception):
    """A scraping run can only be finished once."""

    def __init__(self, run_id):
        super().__init__(f"Scraping run {run_id} is already finished")
        self.run_id = run_id


class PropertyStore:
    """Row-level operations over staging, catalog and run-log tables."""

    # ========================================================================
    # Dedup lookups
    # ========================================================================

    def find_by_external_ids(self, ids: Iterable[str]) -> Set[str]:
        """External ids from `ids` present in staging or in the catalog."""
        ids = list(set(ids))
        if not ids:
            return set()
        staged = StagingProperty.objects.filter(external_id__in=ids).values_list('external_id', flat=True)
        promoted = Property.objects.filter(external_id__in=ids).values_list('external_id', flat=True)
        return set(staged) | set(promoted)

    def catalog_external_ids(self, ids: Iterable[str]) -> Set[str]:
        ids = [external_id for external_id in set(ids) if external_id]
        if not ids:
            return set()
        return set(Property.objects.filter(external_id__in=ids).values_list('external_id', flat=True))

    # ========================================================================
    # Staging
    # ========================================================================

    def insert_staging(self, draft: PropertyDraft) -> int:
        record = StagingProperty.objects.create(
            raw_data={'draft': draft.to_dict(), 'extraction': draft.raw_data},
            **draft.to_record_fields(),
        )
        logger.debug(f"Staged {record.external_id} as {record.pk}")
        return record.pk

    def get_staging(self, staging_id) -> Optional[StagingProperty]:
        return StagingProperty.objects.filter(pk=staging_id).first()

    def update_staging_status(self, staging_id, status: str, reviewed_at=None,
                              expected_status: Optional[str] = None) -> int:
        """
        Set status and reviewed_at.

        Args:
            expected_status: Only update when the row is still in this status

        Returns:
            Number of rows updated (0 or 1)
        """
        queryset = StagingProperty.objects.filter(pk=staging_id)
        if expected_status is not None:
            queryset = queryset.filter(status=expected_status)
        return queryset.update(status=status, reviewed_at=reviewed_at)

    def delete_staging(self, staging_id) -> int:
        deleted, _ = StagingProperty.objects.filter(pk=staging_id).delete()
        return deleted

    def delete_staging_bulk(self, ids: Iterable) -> int:
        deleted, _ = StagingProperty.objects.filter(pk__in=list(ids)).delete()
        return deleted

    def delete_staging_all(self) -> int:
        deleted, _ = StagingProperty.objects.all().delete()
        return deleted

    def list_staging(self, status: Optional[str] = None) -> List[StagingProperty]:
        queryset = StagingProperty.objects.all()
        if status:
            queryset = queryset.filter(status=status)
        return list(queryset.order_by('-scraped_at', '-id'))

    # ========================================================================
    # Catalog
    # ========================================================================

    def insert_catalog(self, fields: dict) -> int:
        record = Property.objects.create(**fields)
        logger.debug(f"Catalog property {record.pk} created ({record.external_id})")
        return record.pk

    def get_catalog(self, property_id) -> Optional[Property]:
        return Property.objects.filter(pk=property_id).first()

    def update_catalog_status(self, property_id, status: str, sold_at=None) -> int:
        return Property.objects.filter(pk=property_id).update(
            status=status, sold_at=sold_at, updated_at=timezone.now()
        )

    def delete_catalog(self, property_id) -> int:
        deleted, _ = Property.objects.filter(pk=property_id).delete()
        return deleted

    def delete_catalog_all(self) -> int:
        deleted, _ = Property.objects.all().delete()
        return deleted

    def catalog_queryset(self, filters: Optional[dict] = None) -> QuerySet:
        """
        Catalog rows, newest first, as a lazy queryset.

        Supported filters: state, type, status, min_price, max_price and
        search (city or title, case-insensitive).
        """
        filters = filters or {}
        queryset = Property.objects.all()

        if filters.get('state'):
            queryset = queryset.filter(address_state__iexact=filters['state'])
        if filters.get('type'):
            queryset = queryset.filter(type=filters['type'])
        if filters.get('status'):
            queryset = queryset.filter(status=filters['status'])
        if filters.get('min_price') is not None:
            queryset = queryset.filter(price__gte=filters['min_price'])
        if filters.get('max_price') is not None:
            queryset = queryset.filter(price__lte=filters['max_price'])
        if filters.get('search'):
            term = filters['search']
            queryset = queryset.filter(Q(address_city__icontains=term) | Q(title__icontains=term))

        return queryset.order_by('-created_at', '-id')

    def list_catalog(self, filters: Optional[dict] = None) -> List[Property]:
        return list(self.catalog_queryset(filters))

    # ========================================================================
    # Configs and run log
    # ========================================================================

    def get_config(self, config_id) -> Optional[ScrapingConfig]:
        return ScrapingConfig.objects.filter(pk=config_id).first()

    def touch_config(self, config_id):
        ScrapingConfig.objects.filter(pk=config_id).update(last_run_at=timezone.now())

    def log_run_start(self, config_id) -> int:
        log = ScrapingLog.objects.create(config_id=config_id, status=ScrapingLog.Status.RUNNING)
        return log.pk

    def log_run_finish(self, run_id, status: str, found: int, new: int, error: Optional[str] = None):
        """
        Close a running run.

        Raises:
            RunAlreadyFinished: if the run is not running anymore
        """
        updated = ScrapingLog.objects.filter(pk=run_id, status=ScrapingLog.Status.RUNNING).update(
            status=status,
            properties_found=found,
            properties_new=new,
            error_message=error,
            finished_at=timezone.now(),
        )
        if not updated:
            raise RunAlreadyFinished(run_id)

    def list_runs(self, config_id=None, limit: int = 20) -> List[ScrapingLog]:
        queryset = ScrapingLog.objects.select_related('config')
        if config_id is not None:
            queryset = queryset.filter(config_id=config_id)
        return list(queryset.order_by('-started_at', '-id')[:limit])


property_store = PropertyStore()
