"""requests transport adapter with a tunable TLS version range"""

import ssl

from requests.adapters import HTTPAdapter

from .retry_policy import AttemptTier


def build_ssl_context(tier: AttemptTier, verify: bool = True) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    context.minimum_version = tier.tls_min
    context.maximum_version = tier.tls_max
    return context


class TLSTierAdapter(HTTPAdapter):
    """HTTPAdapter whose pool uses the TLS range and pool size of one attempt tier"""

    def __init__(self, tier: AttemptTier, verify: bool = True, **kwargs):
        self.tier = tier
        self.verify = verify
        kwargs.setdefault("pool_connections", 1 if tier.fresh_transport else 10)
        kwargs.setdefault("pool_maxsize", tier.pool_maxsize)
        # Retries are owned by the client's tier ladder
        kwargs.setdefault("max_retries", 0)
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_context"] = build_ssl_context(self.tier, self.verify)
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):
        kwargs["ssl_context"] = build_ssl_context(self.tier, self.verify)
        return super().proxy_manager_for(*args, **kwargs)
