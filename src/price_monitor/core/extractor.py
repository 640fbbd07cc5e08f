"""Conversion of raw Keepa product records into comparable snapshots."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from price_monitor.core.entities import CategoryProfile, ItemSnapshot, optional_int


DIGITAL_KEYWORDS = ("ダウンロード", "download", "digital", "dl版")

IMAGE_BASE_URL = "https://m.media-amazon.com/images/I"

# Indexes into stats.current
AMAZON_PRICE = 0
NEW_PRICE = 1
SALES_RANK = 3


class Rejection(str, Enum):
    """Reason an item was excluded before diffing."""

    NO_IDENTIFIER = "no_identifier"
    OUT_OF_CATEGORY = "out_of_category"
    OWNER_STOCKED = "owner_stocked"
    DIGITAL = "digital"
    FEW_SELLERS = "few_sellers"
    PRICE_FLOOR = "price_floor"


@dataclass
class Extraction:
    """Either a usable snapshot or the reason the item was rejected."""

    snapshot: Optional[ItemSnapshot] = None
    rejection: Optional[Rejection] = None

    @property
    def admitted(self) -> bool:
        return self.snapshot is not None


def _current_value(current: list[Any], index: int) -> Optional[int]:
    """Positive value at ``index`` of ``stats.current`` or None."""
    if index >= len(current):
        return None
    value = optional_int(current[index])
    return value if value is not None and value > 0 else None


def main_image_url(product: dict[str, Any]) -> Optional[str]:
    images = product.get("imagesCSV")
    if not images or not isinstance(images, str):
        return None
    first = images.split(",")[0].strip()
    return f"{IMAGE_BASE_URL}/{first}.jpg" if first else None


def is_digital_title(title: str, keywords: tuple[str, ...] = DIGITAL_KEYWORDS) -> bool:
    lowered = title.lower()
    return any(keyword in lowered for keyword in keywords)


def in_root_category(product: dict[str, Any], root_category: int) -> bool:
    """True if any of the record's category fields places it under ``root_category``.

    Finder results can leak items from neighbouring trees, so the root is
    checked against ``rootCategory``, the ``categories`` path and the keys of
    ``salesRanks``.
    """
    if product.get("rootCategory") == root_category:
        return True
    categories = product.get("categories")
    if isinstance(categories, list) and root_category in categories:
        return True
    sales_ranks = product.get("salesRanks")
    if isinstance(sales_ranks, dict):
        return str(root_category) in sales_ranks or root_category in sales_ranks
    return False


class SnapshotExtractor:
    """Apply admission filters and normalize a product into an ItemSnapshot.

    Every rejection means the observation is dropped entirely: it is neither
    diffed nor written to state, and an already stored snapshot for the
    same ASIN is left as it was.
    """

    def __init__(
        self,
        min_price: int = 1000,
        min_sellers: int = 3,
        digital_keywords: tuple[str, ...] = DIGITAL_KEYWORDS,
        strict_category: bool = True,
    ) -> None:
        self.min_price = min_price
        self.min_sellers = min_sellers
        self.strict_category = strict_category
        self.digital_keywords = tuple(k.lower() for k in digital_keywords)

    def extract(self, product: dict[str, Any], profile: CategoryProfile) -> Extraction:
        asin = product.get("asin")
        if not asin or not isinstance(asin, str):
            return Extraction(rejection=Rejection.NO_IDENTIFIER)

        if self.strict_category and not in_root_category(product, profile.root_category):
            return Extraction(rejection=Rejection.OUT_OF_CATEGORY)

        stats = product.get("stats")
        if not isinstance(stats, dict):
            stats = {}
        current = stats.get("current")
        if not isinstance(current, list):
            current = []

        amazon_price = _current_value(current, AMAZON_PRICE)
        new_price = _current_value(current, NEW_PRICE)
        price = new_price if new_price is not None else amazon_price
        title = product.get("title") or "(no title)"
        sellers = optional_int(stats.get("totalOfferCount"), allow_negative=False)

        if amazon_price is not None:
            return Extraction(rejection=Rejection.OWNER_STOCKED)

        if profile.exclude_digital and is_digital_title(title, self.digital_keywords):
            return Extraction(rejection=Rejection.DIGITAL)

        if sellers is None or sellers < self.min_sellers:
            return Extraction(rejection=Rejection.FEW_SELLERS)

        if price is None or price < self.min_price:
            return Extraction(rejection=Rejection.PRICE_FLOOR)

        snapshot = ItemSnapshot(
            asin=asin,
            title=title,
            price=price,
            rank=_current_value(current, SALES_RANK),
            sellers=sellers,
            sold30=self._recent_sales(stats),
            image_url=main_image_url(product),
        )
        return Extraction(snapshot=snapshot)

    @staticmethod
    def _recent_sales(stats: dict[str, Any]) -> Optional[int]:
        for key in ("salesRankDrops30", "salesRankDrops90", "salesRankDrops180"):
            value = optional_int(stats.get(key), allow_negative=False)
            if value is not None:
                return value
        return None
