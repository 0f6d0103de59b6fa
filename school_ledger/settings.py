"""
Django settings for the school_ledger project.

Scope:
- Branch, academic session and class catalog snapshots
- Student enrollments
- Fee balances, payment posting and income records
- Reservation lifecycle and concessions
- Promotion eligibility and dropout
"""
import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _env_flag(name, default='False'):
    return os.getenv(name, default).lower() in {'1', 'true', 'yes'}


DEBUG = _env_flag('DJANGO_DEBUG')
SECRET_KEY = os.getenv(
    'DJANGO_SECRET_KEY',
    'change-this-secret-key-in-production-5c1f0a8e2b7d4f6a9e3c8b1d7a2f4e60',
)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
    if host.strip()
]


INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'apps.core.schools.apps.SchoolsConfig',
    'apps.core.academic_sessions.apps.AcademicSessionsConfig',
    'apps.core.academics.apps.AcademicsConfig',
    'apps.core.students.apps.StudentsConfig',
    'apps.core.fees.apps.FeesConfig',
    'apps.core.admissions.apps.AdmissionsConfig',
    'apps.core.promotions.apps.PromotionsConfig',
]


MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]


ROOT_URLCONF = 'school_ledger.urls'

WSGI_APPLICATION = 'school_ledger.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('DJANGO_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'school-ledger',
    }
}


LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True


SECURE_SSL_REDIRECT = _env_flag('DJANGO_SECURE_SSL_REDIRECT')
SECURE_HSTS_SECONDS = int(os.getenv('DJANGO_SECURE_HSTS_SECONDS', '0'))
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')


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
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}


TEST_RUNNER = 'apps.core.test_runner.InstalledAppsOnlyDiscoverRunner'

# Fee ledger
FEE_TUITION_TERM_WEIGHTS = (1, 1, 1)
FEE_TRANSPORT_TERM_WEIGHTS = (1, 1)
FEE_PAYMENT_REQUIRE_BOOK_FEE_FIRST = _env_flag('FEE_PAYMENT_REQUIRE_BOOK_FEE_FIRST')
FEE_PAYMENT_REQUIRE_SEQUENTIAL_TERMS = _env_flag('FEE_PAYMENT_REQUIRE_SEQUENTIAL_TERMS')
FEE_OUTSTANDING_CACHE_TIMEOUT = int(os.getenv('FEE_OUTSTANDING_CACHE_TIMEOUT', '300'))

# Admissions
ADMISSIONS_DEFAULT_ADMISSION_FEE = os.getenv('ADMISSIONS_DEFAULT_ADMISSION_FEE', '3000.00')
ADMISSIONS_REQUIRE_APPLICATION_FEE = _env_flag('ADMISSIONS_REQUIRE_APPLICATION_FEE')
