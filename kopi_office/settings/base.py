"""
Base settings for the kopi_office project.
Shared between local (shop back office) and cloud deployments.
"""

from pathlib import Path
import os

from django.urls import reverse_lazy

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-q3v!x0k#r8l2p$m7c@w9z&t1b5n4y6h^e+d(f)a-s_g=j8u2')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')


# Application definition
INSTALLED_APPS = [
    "unfold",
    "unfold.contrib.filters",
    "unfold.contrib.forms",
    "unfold.contrib.inlines",
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'stock',
    'corsheaders',
    'rest_framework',
    'drf_spectacular',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'kopi_office.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
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

WSGI_APPLICATION = 'kopi_office.wsgi.application'


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'Asia/Kuala_Lumpur')
USE_I18N = True
USE_TZ = True


# Static files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# CORS
CORS_ALLOW_ALL_ORIGINS = True


# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# STOCK
# =============================================================================
STOCK_CURRENCY_LABEL = os.getenv('STOCK_CURRENCY_LABEL', 'RM')
STOCK_COST_CACHE_TIMEOUT = int(os.getenv('STOCK_COST_CACHE_TIMEOUT', '300'))
STOCK_PO_NUMBER_PREFIX = os.getenv('STOCK_PO_NUMBER_PREFIX', 'PO')
STOCK_MAX_PAGE_SIZE = int(os.getenv('STOCK_MAX_PAGE_SIZE', '100'))


# Unfold Admin Configuration
UNFOLD = {
    "SITE_TITLE": "Kopi Office Admin",
    "SITE_HEADER": "Kopi Office",
    "SITE_URL": "/",
    "SITE_SYMBOL": "local_cafe",

    "SIDEBAR": {
        "show_search": True,
        "show_all_applications": True,
        "navigation": [
            {
                "title": "Inventory",
                "separator": True,
                "items": [
                    {
                        "title": "Materials",
                        "icon": "inventory_2",
                        "link": reverse_lazy("admin:stock_material_changelist"),
                    },
                    {
                        "title": "Products",
                        "icon": "local_cafe",
                        "link": reverse_lazy("admin:stock_product_changelist"),
                    },
                    {
                        "title": "Consumption Ledger",
                        "icon": "receipt_long",
                        "link": reverse_lazy("admin:stock_inventoryconsumption_changelist"),
                    },
                ],
            },
            {
                "title": "Purchasing & Audit",
                "separator": True,
                "items": [
                    {
                        "title": "Purchase Orders",
                        "icon": "shopping_cart",
                        "link": reverse_lazy("admin:stock_purchaseorder_changelist"),
                    },
                    {
                        "title": "Stock Checks",
                        "icon": "fact_check",
                        "link": reverse_lazy("admin:stock_stockchecklog_changelist"),
                    },
                ],
            },
        ],
    },
}

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',

    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ],
}


SPECTACULAR_SETTINGS = {
    'TITLE': 'Kopi Office',
    'DESCRIPTION': 'Kopi Office back-office stock API documentation',
    'VERSION': '1.0.0',
}
