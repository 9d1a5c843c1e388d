"""
Staging review state machine and catalog promotion.

Staged drafts move pending -> imported (promotion) or pending -> ignored
(review), exactly once. Catalog properties move freely between available
and sold.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from django.utils import timezone

from .models import Property, StagingProperty
from .store import PropertyStore, property_store

logger = logging.getLogger(__name__)

LISTING_COLUMNS = [
    'title', 'type', 'price', 'original_price', 'discount',
    'address_street', 'address_neighborhood', 'address_city', 'address_state', 'address_zipcode',
    'bedrooms', 'bathrooms', 'parking_spaces', 'area',
    'description', 'images', 'accepts_fgts', 'accepts_financing', 'modality', 'source_url', 'auction_date',
]


class StagingError(Exception):
    """Base exception for review and catalog operations."""
    pass


class StagingNotFound(StagingError):
    def __init__(self, staging_id):
        super().__init__(f"Staged property {staging_id} not found")
        self.staging_id = staging_id


class PropertyNotFound(StagingError):
    def __init__(self, property_id):
        super().__init__(f"Property {property_id} not found")
        self.property_id = property_id


class ConfigNotFound(StagingError):
    def __init__(self, config_id):
        super().__init__(f"Scraping config {config_id} not found")
        self.config_id = config_id


class InvalidTransition(StagingError):
    """The record is not in a state that allows the requested action."""

    def __init__(self, staging_id, current: str, action: str):
        super().__init__(f"Cannot {action} staged property {staging_id}: status is {current}")
        self.staging_id = staging_id
        self.current = current
        self.action = action


class PromotionInconsistency(StagingError):
    """
    The catalog row was created but the staged record could not be marked
    imported. The staged record still looks promotable.
    """

    def __init__(self, staging_id, property_id, cause: Optional[Exception] = None):
        detail = f": {cause}" if cause else ''
        super().__init__(
            f"Staged property {staging_id} was copied to catalog property {property_id} "
            f"but could not be marked imported{detail}"
        )
        self.staging_id = staging_id
        self.property_id = property_id


def catalog_fields(record: StagingProperty) -> Dict[str, Any]:
    """Catalog column values copied from a staged record."""
    fields = {column: getattr(record, column) for column in LISTING_COLUMNS}
    fields['external_id'] = record.external_id
    fields['status'] = Property.Status.AVAILABLE
    return fields


class StagingService:
    """Review actions over staged drafts and admin actions over the catalog."""

    def __init__(self, store: Optional[PropertyStore] = None):
        self.store = store or property_store

    def _get_pending(self, staging_id, action: str) -> StagingProperty:
        record = self.store.get_staging(staging_id)
        if record is None:
            raise StagingNotFound(staging_id)
        if record.status != StagingProperty.Status.PENDING:
            raise InvalidTransition(staging_id, record.status, action)
        return record

    # ========================================================================
    # Review
    # ========================================================================

    def import_one(self, staging_id) -> int:
        """
        Promote a pending draft into the catalog.

        The catalog insert runs first; if it fails nothing else changes. If
        it succeeds but the staged record cannot be marked imported, the
        failure is raised as PromotionInconsistency.

        Returns:
            The new catalog property id

        Raises:
            StagingNotFound, InvalidTransition, PromotionInconsistency
        """
        record = self._get_pending(staging_id, 'import')

        property_id = self.store.insert_catalog(catalog_fields(record))

        try:
            updated = self.store.update_staging_status(
                staging_id,
                StagingProperty.Status.IMPORTED,
                reviewed_at=timezone.now(),
                expected_status=StagingProperty.Status.PENDING,
            )
        except Exception as e:
            logger.error(f"Promotion of {staging_id} left catalog property {property_id} behind: {e}")
            raise PromotionInconsistency(staging_id, property_id, e) from e

        if updated != 1:
            logger.error(f"Promotion of {staging_id} left catalog property {property_id} behind: record changed")
            raise PromotionInconsistency(staging_id, property_id)

        logger.info(f"Imported staged property {staging_id} ({record.external_id}) as {property_id}")
        return property_id

    def ignore(self, staging_id):
        self._get_pending(staging_id, 'ignore')
        updated = self.store.update_staging_status(
            staging_id,
            StagingProperty.Status.IGNORED,
            reviewed_at=timezone.now(),
            expected_status=StagingProperty.Status.PENDING,
        )
        if not updated:
            record = self.store.get_staging(staging_id)
            if record is None:
                raise StagingNotFound(staging_id)
            raise InvalidTransition(staging_id, record.status, 'ignore')
        logger.info(f"Ignored staged property {staging_id}")

    def delete(self, staging_id):
        """Remove a staged record in any status."""
        if not self.store.delete_staging(staging_id):
            raise StagingNotFound(staging_id)
        logger.info(f"Deleted staged property {staging_id}")

    def bulk_import(self, ids: Iterable) -> Dict[str, Any]:
        """
        Import each id in order, continuing past failures.

        Returns:
            {'imported': n, 'errors': n, 'failed_ids': [...], 'property_ids': [...]}
        """
        imported = 0
        failed_ids = []
        property_ids = []

        for staging_id in ids:
            try:
                property_ids.append(self.import_one(staging_id))
                imported += 1
            except PromotionInconsistency:
                # Already logged as an error; must not be counted as imported
                failed_ids.append(staging_id)
            except Exception as e:
                logger.warning(f"Bulk import: {staging_id} failed: {e}")
                failed_ids.append(staging_id)

        logger.info(f"Bulk import finished: {imported} imported, {len(failed_ids)} errors")
        return {
            'imported': imported,
            'errors': len(failed_ids),
            'failed_ids': failed_ids,
            'property_ids': property_ids,
        }

    def bulk_delete(self, ids: Iterable) -> int:
        deleted = self.store.delete_staging_bulk(ids)
        logger.info(f"Bulk deleted {deleted} staged properties")
        return deleted

    def clear_all(self) -> int:
        deleted = self.store.delete_staging_all()
        logger.warning(f"Cleared staging: {deleted} records deleted")
        return deleted

    def list_staging(self, status: Optional[str] = None) -> List[StagingProperty]:
        """
        Staged records, newest first, each with an `already_imported` flag
        (its external id exists in the catalog).
        """
        records = self.store.list_staging(status)
        in_catalog = self.store.catalog_external_ids(record.external_id for record in records)
        for record in records:
            record.already_imported = record.external_id in in_catalog
        return records

    # ========================================================================
    # Catalog
    # ========================================================================

    def update_property_status(self, property_id, status: str) -> Property:
        """
        Move a catalog property between available and sold.

        sold sets sold_at to now; available clears it. Setting the current
        status again changes nothing.
        """
        if status not in Property.Status.values:
            raise ValueError(f"Invalid status: {status}")

        record = self.store.get_catalog(property_id)
        if record is None:
            raise PropertyNotFound(property_id)
        if record.status == status:
            return record

        sold_at = timezone.now() if status == Property.Status.SOLD else None
        self.store.update_catalog_status(property_id, status, sold_at=sold_at)
        logger.info(f"Property {property_id} marked {status}")
        return self.store.get_catalog(property_id)

    def delete_property(self, property_id):
        if not self.store.delete_catalog(property_id):
            raise PropertyNotFound(property_id)
        logger.info(f"Deleted property {property_id}")

    def clear_properties(self) -> int:
        deleted = self.store.delete_catalog_all()
        logger.warning(f"Cleared catalog: {deleted} properties deleted")
        return deleted


staging_service = StagingService()
