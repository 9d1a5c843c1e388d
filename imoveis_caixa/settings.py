"""
Django settings for the imoveis_caixa project.

Everything environment-specific is read once from the process environment.
"""

import os
from pathlib import Path


def env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name: str, default: list) -> list:
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-imoveis-caixa-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', ['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'drf_spectacular',
    'api',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'imoveis_caixa.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'imoveis_caixa.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('SQLITE_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'pt-br'
TIME_ZONE = 'America/Fortaleza'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
MEDIA_URL = '/media/'
MEDIA_ROOT = os.environ.get('MEDIA_ROOT', str(BASE_DIR / 'media'))

REDIS_URL = os.environ.get('REDIS_URL', '')

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.redis.RedisCache',
            'LOCATION': REDIS_URL,
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        }
    }

# Celery
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', REDIS_URL or 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']

# REST framework
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'EXCEPTION_HANDLER': 'api.exceptions.custom_exception_handler',
    'DEFAULT_RENDERER_CLASSES': ['rest_framework.renderers.JSONRenderer'],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
        'rest_framework.parsers.MultiPartParser',
        'rest_framework.parsers.FormParser',
    ],
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'Imóveis Caixa API',
    'DESCRIPTION': 'Property import, staging review and catalog API',
    'VERSION': '1.0.0',
}

NORTHEAST_STATES = ['AL', 'BA', 'CE', 'MA', 'PB', 'PE', 'PI', 'RN', 'SE']

# Scraper pipeline configuration. Read into a CrawlSettings object at the
# edges (views, tasks, commands) and injected from there.
SCRAPER_SETTINGS = {
    'SEED_URLS': env_list('SCRAPER_SEED_URLS', [
        'https://www.leilaoimovel.com.br/imoveis/caixa',
        'https://www.leilaoimovel.com.br/imoveis/caixa/venda-direta',
    ]),
    'DETAIL_URL_PATTERN': os.environ.get(
        'SCRAPER_DETAIL_URL_PATTERN',
        r'^https?://(?:www\.)?leilaoimovel\.com\.br/imovel/',
    ),
    'DEFAULT_STATES': env_list('SCRAPER_DEFAULT_STATES', NORTHEAST_STATES),
    'MAX_PAGES': int(os.environ.get('SCRAPER_MAX_PAGES', 15)),
    'MAX_CONSECUTIVE_EMPTY_PAGES': int(os.environ.get('SCRAPER_MAX_CONSECUTIVE_EMPTY_PAGES', 2)),
    'LAST_PAGE_THRESHOLD': int(os.environ.get('SCRAPER_LAST_PAGE_THRESHOLD', 8)),
    'MAX_DETAIL_BATCH': int(os.environ.get('SCRAPER_MAX_DETAIL_BATCH', 25)),
    'DETAIL_CONCURRENCY': int(os.environ.get('SCRAPER_DETAIL_CONCURRENCY', 3)),
    'REQUEST_DELAY': float(os.environ.get('SCRAPER_REQUEST_DELAY', 0.5)),
    'LISTING_TIMEOUT': float(os.environ.get('SCRAPER_LISTING_TIMEOUT', 45)),
    'DETAIL_TIMEOUT': float(os.environ.get('SCRAPER_DETAIL_TIMEOUT', 30)),
    'IMPORT_TIMEOUT': float(os.environ.get('SCRAPER_IMPORT_TIMEOUT', 30)),
    'MAX_RETRIES': int(os.environ.get('SCRAPER_MAX_RETRIES', 0)),
    'MIN_LISTING_HTML_LENGTH': 1000,
    'MIN_DETAIL_HTML_LENGTH': 500,
    'MIN_IMPORT_CONTENT_LENGTH': 100,
    'RENDER_URL': os.environ.get('RENDER_URL', 'https://api.firecrawl.dev/v1/scrape'),
    'RENDER_API_KEY': os.environ.get('FIRECRAWL_API_KEY', ''),
    'RENDER_WAIT_MS': int(os.environ.get('RENDER_WAIT_MS', 3000)),
    'IMPORT_RENDER_WAIT_MS': int(os.environ.get('IMPORT_RENDER_WAIT_MS', 2000)),
    'AI_API_KEY': os.environ.get('AI_API_KEY', ''),
    'AI_BASE_URL': os.environ.get('AI_BASE_URL', '') or None,
    'AI_MODEL': os.environ.get('AI_MODEL', 'google/gemini-3-flash-preview'),
    'AI_TIMEOUT': float(os.environ.get('AI_TIMEOUT', 45)),
    'USER_AGENTS': env_list('SCRAPER_USER_AGENTS', []),
    'RUN_LOCK_TIMEOUT': int(os.environ.get('SCRAPER_RUN_LOCK_TIMEOUT', 30 * 60)),
}

UPLOAD_SETTINGS = {
    'MAX_IMAGE_BYTES': 5 * 1024 * 1024,
    'IMAGE_PREFIX': 'property-images/',
}

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
