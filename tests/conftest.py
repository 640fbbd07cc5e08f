"""Shared test helpers."""

from typing import Any, Optional


TOYS_ROOT = 13299531


def make_product(
    asin: str = "B000TEST01",
    title: str = "Test toy",
    amazon_price: int = -1,
    new_price: int = 1500,
    rank: int = 1200,
    offers: Optional[int] = 5,
    drops30: Optional[int] = 10,
    images: Optional[str] = "abc123,def456",
    root_category: Optional[int] = TOYS_ROOT,
    **stats_extra: Any,
) -> dict[str, Any]:
    """Raw Keepa product record with the fields the extractor reads."""
    current = [amazon_price, new_price, -1, rank]
    stats: dict[str, Any] = {"current": current, **stats_extra}
    if offers is not None:
        stats["totalOfferCount"] = offers
    if drops30 is not None:
        stats["salesRankDrops30"] = drops30

    product: dict[str, Any] = {"asin": asin, "title": title, "stats": stats}
    if root_category is not None:
        product["rootCategory"] = root_category
    if images is not None:
        product["imagesCSV"] = images
    return product
