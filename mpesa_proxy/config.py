from dataclasses import dataclass


@dataclass(frozen=True)
class ProxyConfig:
    """Credentials and endpoints the proxy needs; built once at startup."""

    base_url: str
    consumer_key: str
    consumer_secret: str
    timeout: int = 30

    @classmethod
    def from_settings(cls, settings):
        return cls(
            base_url=settings.MPESA_BASE_URL.rstrip('/'),
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            timeout=getattr(settings, 'MPESA_HTTP_TIMEOUT', 30),
        )

    def missing(self):
        missing = []
        if not self.consumer_key:
            missing.append('MPESA_CONSUMER_KEY')
        if not self.consumer_secret:
            missing.append('MPESA_CONSUMER_SECRET')
        return missing

    def __repr__(self):
        return (
            f"ProxyConfig(base_url={self.base_url!r}, "
            f"consumer_key={'***' if self.consumer_key else None}, "
            f"consumer_secret={'***' if self.consumer_secret else None}, timeout={self.timeout})"
        )
