"""
Data models for staged drafts, the property catalog and scraping runs.
"""

from django.db import models

from scrapers.drafts import PropertyType as DraftType


class PropertyType(models.TextChoices):
    HOUSE = DraftType.HOUSE.value, DraftType.HOUSE.label
    APARTMENT = DraftType.APARTMENT.value, DraftType.APARTMENT.label
    LAND = DraftType.LAND.value, DraftType.LAND.label
    COMMERCIAL = DraftType.COMMERCIAL.value, DraftType.COMMERCIAL.label


class ListingFields(models.Model):
    """Columns shared by staged drafts and catalog properties."""

    title = models.CharField(max_length=255)
    type = models.CharField(max_length=20, choices=PropertyType.choices, default=PropertyType.HOUSE)
    price = models.DecimalField(max_digits=14, decimal_places=2)
    original_price = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    discount = models.IntegerField(null=True, blank=True)

    address_street = models.CharField(max_length=255, blank=True)
    address_neighborhood = models.CharField(max_length=120, blank=True)
    address_city = models.CharField(max_length=120, blank=True)
    address_state = models.CharField(max_length=2, blank=True)
    address_zipcode = models.CharField(max_length=10, blank=True)

    bedrooms = models.IntegerField(null=True, blank=True)
    bathrooms = models.IntegerField(null=True, blank=True)
    parking_spaces = models.IntegerField(null=True, blank=True)
    area = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    description = models.TextField(blank=True)
    images = models.JSONField(default=list, blank=True)
    accepts_fgts = models.BooleanField(default=False)
    accepts_financing = models.BooleanField(default=False)
    modality = models.CharField(max_length=100, blank=True)
    source_url = models.URLField(max_length=1000, blank=True)
    auction_date = models.DateField(null=True, blank=True)

    class Meta:
        abstract = True


class StagingProperty(ListingFields):
    """A draft waiting for review."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        IMPORTED = 'imported', 'Imported'
        IGNORED = 'ignored', 'Ignored'

    external_id = models.CharField(max_length=100, unique=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    raw_data = models.JSONField(default=dict, blank=True)
    scraped_at = models.DateTimeField(auto_now_add=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-scraped_at', '-id']
        verbose_name = 'Staged property'
        verbose_name_plural = 'Staged properties'

    def __str__(self):
        return f"{self.external_id} - {self.title} ({self.status})"


class Property(ListingFields):
    """A promoted catalog property."""

    class Status(models.TextChoices):
        AVAILABLE = 'available', 'Available'
        SOLD = 'sold', 'Sold'

    # Not unique: re-importing a listing whose external id is already in
    # the catalog creates a second row (the staging list flags it instead)
    external_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.AVAILABLE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    sold_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name = 'Property'
        verbose_name_plural = 'Properties'

    def __str__(self):
        return f"{self.title} - R$ {self.price}"


class ScrapingConfig(models.Model):
    """A named crawl target: which states, types and price range to collect."""

    name = models.CharField(max_length=255)
    states = models.JSONField(default=list, blank=True)
    property_types = models.JSONField(default=list, blank=True)
    modalities = models.JSONField(default=list, blank=True)
    min_price = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    max_price = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    seed_urls = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    last_run_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = 'Scraping config'
        verbose_name_plural = 'Scraping configs'

    def __str__(self):
        return self.name


class ScrapingLog(models.Model):
    """One crawl run. Finished exactly once."""

    class Status(models.TextChoices):
        RUNNING = 'running', 'Running'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    config = models.ForeignKey(ScrapingConfig, on_delete=models.CASCADE, related_name='logs')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.RUNNING)
    properties_found = models.IntegerField(default=0)
    properties_new = models.IntegerField(default=0)
    error_message = models.TextField(null=True, blank=True)
    started_at = models.DateTimeField(auto_now_add=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-started_at', '-id']
        verbose_name = 'Scraping log'
        verbose_name_plural = 'Scraping logs'

    def __str__(self):
        return f"Run {self.pk} of {self.config_id} ({self.status})"
