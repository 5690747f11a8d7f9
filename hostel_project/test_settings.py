from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

MPESA_CONSUMER_KEY = 'test-consumer-key'
MPESA_CONSUMER_SECRET = 'test-consumer-secret'
MPESA_PROXY_URL = 'http://proxy.test/api/mpesa'
MPESA_BASE_URL = 'https://sandbox.safaricom.co.ke'
MPESA_POLL_INTERVAL = 0
MPESA_POLL_MAX_ATTEMPTS = 30

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

LOGGING['loggers']['payments']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['loggers']['mpesa_proxy']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['loggers']['bookings']['level'] = 'CRITICAL'  # noqa: F405
