from django.contrib import admin
from .models import Property, ScrapingConfig, ScrapingLog, StagingProperty


@admin.register(StagingProperty)
class StagingPropertyAdmin(admin.ModelAdmin):
    list_display = ['external_id', 'title', 'price', 'address_city', 'address_state', 'status', 'scraped_at']
    search_fields = ['external_id', 'title', 'address_city']
    list_filter = ['status', 'type', 'address_state', 'scraped_at']


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = ['title', 'price', 'discount', 'address_city', 'address_state', 'status', 'created_at']
    search_fields = ['title', 'external_id', 'address_city']
    list_filter = ['status', 'type', 'address_state', 'created_at']


@admin.register(ScrapingConfig)
class ScrapingConfigAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'last_run_at', 'created_at']
    search_fields = ['name']
    list_filter = ['is_active']


@admin.register(ScrapingLog)
class ScrapingLogAdmin(admin.ModelAdmin):
    list_display = ['config', 'status', 'properties_found', 'properties_new', 'started_at', 'finished_at']
    list_filter = ['status', 'started_at']
