import logging

from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .config import ProxyConfig

logger = logging.getLogger(__name__)


class MpesaProxyConfig(AppConfig):
    name = 'mpesa_proxy'
    verbose_name = 'M-Pesa proxy'

    def ready(self):
        config = ProxyConfig.from_settings(settings)
        missing = config.missing()
        if missing:
            logger.error('Missing required environment variables:')
            for name in missing:
                logger.error('- %s', name)
            raise ImproperlyConfigured(f"M-Pesa proxy cannot start without {', '.join(missing)}")
        self.config = config
        logger.info('M-Pesa proxy configured: %r', config)
