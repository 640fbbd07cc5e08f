"""Keepa API client: Product Finder search and product detail lookup."""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from price_monitor.adapters.keepa.errors import (
    KeepaAuthError,
    KeepaRequestError,
    parse_retry_after_ms,
)
from price_monitor.core import CategoryProfile, ProductSource


logger = logging.getLogger(__name__)

API_BASE = "https://api.keepa.com"
GRAPH_BASE = "https://graph.keepa.com/pricehistory.png"

# Keepa domain id -> Amazon marketplace TLD
DOMAIN_TLDS = {
    1: "com",
    2: "co.uk",
    3: "de",
    4: "fr",
    5: "co.jp",
    6: "ca",
    8: "it",
    9: "es",
    10: "in",
    11: "com.mx",
}


def domain_tld(domain: int) -> str:
    return DOMAIN_TLDS.get(domain, "co.jp")


def amazon_product_url(asin: str, domain: int = 5) -> str:
    return f"https://www.amazon.{domain_tld(domain)}/dp/{asin}"


def keepa_product_url(asin: str, domain: int = 5) -> str:
    return f"https://keepa.com/#!product/{domain}-{asin}"


def keepa_graph_url(
    asin: str,
    domain: int = 5,
    range_days: int = 3,
    width: int = 1200,
    height: int = 600,
) -> str:
    """Price history graph image URL (Keepa caps the image size)."""
    params = {
        "asin": asin,
        "domain": domain_tld(domain),
        "width": max(300, min(width, 1000)),
        "height": max(150, min(height, 1000)),
        "range": range_days,
        "bb": 1,
        "amazon": 1,
        "new": 1,
        "used": 0,
        "salesrank": 1,
    }
    return f"{GRAPH_BASE}?{urlencode(params)}"


def extract_asins(data: dict[str, Any]) -> list[str]:
    """Identifiers from a Finder response, whichever shape it came in."""
    if isinstance(data.get("asinList"), list):
        raw = data["asinList"]
    elif isinstance(data.get("products"), list):
        raw = [p.get("asin") for p in data["products"] if isinstance(p, dict)]
    elif isinstance(data.get("productIds"), list):
        raw = data["productIds"]
    else:
        raw = []
    return [str(a) for a in raw if a]


class KeepaClient(ProductSource):
    """Keepa API client with rate-limit aware retries."""

    def __init__(
        self,
        api_key: str,
        domain: int = 5,
        stats_days: int = 90,
        max_retries: int = 5,
        initial_retry_delay: float = 2.0,
        max_retry_delay: float = 60.0,
        request_delay: float = 0.15,
        timeout: float = 60.0,
        strict_finder: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.domain = domain
        self.stats_days = stats_days
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.request_delay = request_delay
        self.timeout = timeout
        self.strict_finder = strict_finder
        self.transport = transport
        self._last_request_time = 0.0

    async def search(self, profile: CategoryProfile, page: int, per_page: int) -> list[str]:
        """Run one Product Finder page for a category profile."""
        selection: dict[str, Any] = {
            "rootCategory": [profile.root_category],
            "sort": [["current_SALES", "asc"]],
            "productType": [0, 1, 2],
        }
        if self.strict_finder:
            selection["categories_include"] = [profile.root_category]
        selection.update(profile.selection)
        selection.update(page=page, perPage=per_page)

        data = await self._request("POST", "/query", json=selection)
        asins = extract_asins(data)

        if page == 0:
            logger.info(
                "[search:%s] totalResults=%s perPage=%d",
                profile.key,
                data.get("totalResults", "?"),
                per_page,
            )
        logger.debug("[search:%s] page=%d got=%d", profile.key, page, len(asins))
        return asins

    async def fetch_products(self, asins: list[str]) -> list[dict[str, Any]]:
        """Fetch product records (with stats) for up to 100 ASINs."""
        if not asins:
            return []

        data = await self._request(
            "GET",
            "/product",
            params={"asin": ",".join(asins), "stats": str(self.stats_days)},
        )
        products = data.get("products")
        if not isinstance(products, list):
            return []
        return [p for p in products if isinstance(p, dict)]

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Call the API with retry logic and request spacing."""
        query = {"key": self.api_key, "domain": str(self.domain), **(params or {})}
        last_error: Optional[KeepaRequestError] = None

        for attempt in range(self.max_retries):
            await self._wait_request_slot()

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.request(
                        method, f"{API_BASE}{path}", params=query, json=json
                    )
                self._last_request_time = asyncio.get_event_loop().time()
            except httpx.RequestError as e:
                last_error = KeepaRequestError(f"Keepa {path} network error: {e}")
                delay = self._backoff(attempt)
                logger.warning(
                    "Keepa %s network error, retrying after %.1fs (attempt %d/%d): %s",
                    path, delay, attempt + 1, self.max_retries, e,
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                continue

            if response.is_success:
                try:
                    data = response.json()
                except ValueError as e:
                    raise KeepaRequestError(
                        f"Keepa {path} returned invalid JSON", status=response.status_code
                    ) from e
                if not isinstance(data, dict):
                    raise KeepaRequestError(
                        f"Keepa {path} returned {type(data).__name__}, expected an object",
                        status=response.status_code,
                    )
                return data

            status = response.status_code
            body = response.text
            snippet = body[:500]

            if status in (401, 403):
                raise KeepaAuthError(f"Keepa {path} {status}: {snippet}")

            retry_after_ms = parse_retry_after_ms(body)
            last_error = KeepaRequestError(
                f"Keepa {path} {status}: {snippet}", status=status, retry_after_ms=retry_after_ms
            )

            if status == 429 or retry_after_ms is not None:
                delay = self._rate_limit_delay(retry_after_ms, attempt)
                logger.warning(
                    "Keepa rate limit on %s, retrying after %.1fs (attempt %d/%d)",
                    path, delay, attempt + 1, self.max_retries,
                )
            elif status >= 500:
                delay = self._backoff(attempt)
                logger.warning(
                    "Keepa server error %d on %s, retrying after %.1fs (attempt %d/%d)",
                    status, path, delay, attempt + 1, self.max_retries,
                )
            else:
                raise last_error

            if attempt < self.max_retries - 1:
                await asyncio.sleep(delay)

        if last_error:
            raise last_error
        raise KeepaRequestError(f"Keepa {path} failed after all retries")

    def _backoff(self, attempt: int) -> float:
        return min(self.initial_retry_delay * (2 ** attempt), self.max_retry_delay)

    def _rate_limit_delay(self, retry_after_ms: Optional[int], attempt: int) -> float:
        if retry_after_ms is None:
            return self._backoff(attempt)
        return min(retry_after_ms / 1000.0, self.max_retry_delay)

    async def _wait_request_slot(self) -> None:
        """Keep a minimum delay between consecutive requests."""
        if not self._last_request_time:
            return
        elapsed = asyncio.get_event_loop().time() - self._last_request_time
        if elapsed < self.request_delay:
            await asyncio.sleep(self.request_delay - elapsed)
