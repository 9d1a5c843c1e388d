"""
Celery configuration for the imoveis_caixa project.

Crawls are request-triggered: the API enqueues one task per run and nothing
is scheduled on a timer.
"""

import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'imoveis_caixa.settings')

app = Celery('imoveis_caixa')

# Load config from Django settings, using CELERY_ namespace
app.config_from_object('django.conf:settings', namespace='CELERY')

app.autodiscover_tasks()
