"""Keepa API adapter."""

from price_monitor.adapters.keepa.client import (
    KeepaClient,
    amazon_product_url,
    keepa_graph_url,
    keepa_product_url,
)
from price_monitor.adapters.keepa.errors import (
    KeepaAuthError,
    KeepaError,
    KeepaRequestError,
    parse_retry_after_ms,
)

__all__ = [
    "KeepaAuthError",
    "KeepaClient",
    "KeepaError",
    "KeepaRequestError",
    "amazon_product_url",
    "keepa_graph_url",
    "keepa_product_url",
    "parse_retry_after_ms",
]
