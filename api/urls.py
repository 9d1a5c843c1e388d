"""
URL configuration for the API app.
"""

from django.urls import path
from . import views

urlpatterns = [
    # Scraping endpoints
    path('scraping/run', views.run_crawl, name='scraping-run'),
    path('scraping/configs', views.scraping_configs, name='scraping-configs'),
    path('scraping/logs', views.scraping_logs, name='scraping-logs'),

    # Import endpoints
    path('import/url', views.import_url, name='import-url'),
    path('import/screenshot', views.import_screenshot, name='import-screenshot'),

    # Staging endpoints
    path('staging', views.staging_list, name='staging-list'),
    path('staging/bulk-import', views.staging_bulk_import, name='staging-bulk-import'),
    path('staging/bulk-delete', views.staging_bulk_delete, name='staging-bulk-delete'),
    path('staging/clear', views.staging_clear, name='staging-clear'),
    path('staging/<int:staging_id>', views.staging_delete, name='staging-delete'),
    path('staging/<int:staging_id>/import', views.staging_import, name='staging-import'),
    path('staging/<int:staging_id>/ignore', views.staging_ignore, name='staging-ignore'),

    # Catalog endpoints
    path('properties', views.properties, name='properties'),
    path('properties/clear', views.properties_clear, name='properties-clear'),
    path('properties/<int:property_id>', views.property_detail, name='property-detail'),
    path('properties/<int:property_id>/status', views.property_status, name='property-status'),

    # Uploads
    path('uploads/images', views.upload_image, name='upload-image'),
]
