import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-change-me')
DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in ('1', 'true', 'yes')
ALLOWED_HOSTS = [h for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'bookings',
    'payments',
    'mpesa_proxy',
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

ROOT_URLCONF = 'hostel_project.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'hostel_project.wsgi.application'
ASGI_APPLICATION = 'hostel_project.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('DJANGO_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'Africa/Nairobi')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# M-Pesa (Daraja)
MPESA_ENV = os.getenv('MPESA_ENV', 'sandbox')
MPESA_BASE_URL = os.getenv(
    'MPESA_BASE_URL',
    'https://sandbox.safaricom.co.ke' if MPESA_ENV == 'sandbox' else 'https://api.safaricom.co.ke',
)
# Only the proxy reads the consumer credentials.
MPESA_CONSUMER_KEY = os.getenv('MPESA_CONSUMER_KEY', '')
MPESA_CONSUMER_SECRET = os.getenv('MPESA_CONSUMER_SECRET', '')
MPESA_SHORTCODE = os.getenv('MPESA_SHORTCODE', '174379')
MPESA_PASSKEY = os.getenv(
    'MPESA_PASSKEY',
    'bfb279f9aa9bdbcf158e97dd71a467cd2e0c893059b10f78e6b72ada1ed2c919',
)
MPESA_CALLBACK_URL = os.getenv('MPESA_CALLBACK_URL', 'https://example.com/callback')
MPESA_ACCOUNT_REFERENCE = os.getenv('MPESA_ACCOUNT_REFERENCE', 'Hostel')
MPESA_TRANSACTION_DESC = os.getenv('MPESA_TRANSACTION_DESC', 'Hostel fees')
MPESA_PROXY_URL = os.getenv('MPESA_PROXY_URL', 'http://localhost:8000/api/mpesa')
MPESA_HTTP_TIMEOUT = int(os.getenv('MPESA_HTTP_TIMEOUT', '30'))
MPESA_POLL_INTERVAL = float(os.getenv('MPESA_POLL_INTERVAL', '5'))
MPESA_POLL_MAX_ATTEMPTS = int(os.getenv('MPESA_POLL_MAX_ATTEMPTS', '30'))

# Billable line items: code -> (label, default monthly amount). Room rent comes
# from the student's allocated room.
HOSTEL_BILLABLE_ITEMS = {
    'room': ('Room Rent', 0),
    'wifi': ('WiFi', 1000),
    'electricity': ('Electricity', 500),
    'water': ('Water', 300),
    'gym': ('Gym', 800),
    'meal': ('Meal Plan', 3000),
    'maintenance': ('Maintenance', 49),
}

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

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
        'level': 'WARNING',
    },
    'loggers': {
        'django': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'payments': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'mpesa_proxy': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'bookings': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
