"""Declarative attempt tiers consumed by the resilient HTTP client"""

import ssl
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..utils.config import NetworkSettings


@dataclass(frozen=True)
class AttemptTier:
    """One attempt of the transport ladder."""
    name: str
    timeout: float
    tls_min: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    tls_max: ssl.TLSVersion = ssl.TLSVersion.MAXIMUM_SUPPORTED
    # None: decided by tunnel detection; False: always "Connection: close"
    keep_alive: Optional[bool] = None
    fresh_transport: bool = False
    no_cache: bool = False
    pool_maxsize: int = 10


@dataclass(frozen=True)
class RetryPolicy:
    tiers: Tuple[AttemptTier, ...]

    def __post_init__(self):
        if not self.tiers:
            raise ValueError("RetryPolicy needs at least one tier")

    def __len__(self) -> int:
        return len(self.tiers)

    def tier(self, attempt_number: int) -> AttemptTier:
        """Tier for a 1-based attempt number."""
        return self.tiers[attempt_number - 1]

    @classmethod
    def default(
        cls,
        standard_timeout: float = 30.0,
        pinned_tls_timeout: float = 15.0,
        conservative_timeout: float = 60.0,
    ) -> "RetryPolicy":
        """
        standard:     broadest TLS range, pooled connections
        tls-pinned:   shorter timeout, TLS ceiling pinned to 1.2 to get past
                      middleboxes that break newer handshakes
        conservative: longest timeout, one connection per host, no cache,
                      forced close on a freshly built transport
        """
        tiers: List[AttemptTier] = [
            AttemptTier(
                name="standard",
                timeout=standard_timeout,
            ),
            AttemptTier(
                name="tls-pinned",
                timeout=pinned_tls_timeout,
                tls_max=ssl.TLSVersion.TLSv1_2,
            ),
            AttemptTier(
                name="conservative",
                timeout=conservative_timeout,
                keep_alive=False,
                fresh_transport=True,
                no_cache=True,
                pool_maxsize=1,
            ),
        ]
        return cls(tiers=tuple(tiers))

    @classmethod
    def from_settings(cls, settings: NetworkSettings) -> "RetryPolicy":
        return cls.default(
            standard_timeout=settings.standard_timeout,
            pinned_tls_timeout=settings.pinned_tls_timeout,
            conservative_timeout=settings.conservative_timeout,
        )
