"""Core domain entities."""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Optional


STATE_VERSION = 1


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def optional_int(value: Any, allow_negative: bool = True) -> Optional[int]:
    """Normalize a maybe-missing numeric value to ``int`` or ``None``.

    ``None``, booleans, non-numeric values and ``NaN``/infinity all map to
    ``None``; the rest of the code never sees a float sentinel.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        number = int(value)
        if not allow_negative and number < 0:
            return None
        return number
    return None


@dataclass
class ItemSnapshot:
    """Last-known observed state of one tracked item."""

    asin: str
    title: str
    price: Optional[int] = None
    rank: Optional[int] = None
    sellers: Optional[int] = None
    sold30: Optional[int] = None
    image_url: Optional[str] = None
    first_seen_at: int = 0
    last_seen_at: int = 0
    last_notified_at: int = 0

    def __post_init__(self) -> None:
        if not self.asin:
            raise ValueError("ASIN cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        return {
            "asin": self.asin,
            "title": self.title,
            "price": self.price,
            "rank": self.rank,
            "sellers": self.sellers,
            "sold30": self.sold30,
            "imageUrl": self.image_url,
            "firstSeenAt": self.first_seen_at,
            "lastSeenAt": self.last_seen_at,
            "lastNotifiedAt": self.last_notified_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemSnapshot":
        """Build a snapshot from its persisted form.

        Raises:
            ValueError: if the record has no ASIN
        """
        asin = data.get("asin")
        if not isinstance(asin, str) or not asin:
            raise ValueError("Snapshot record has no ASIN")

        first_seen = optional_int(data.get("firstSeenAt"), allow_negative=False) or 0
        last_seen = optional_int(data.get("lastSeenAt"), allow_negative=False) or 0
        image_url = data.get("imageUrl")

        return cls(
            asin=asin,
            title=str(data.get("title") or ""),
            price=optional_int(data.get("price")),
            rank=optional_int(data.get("rank")),
            sellers=optional_int(data.get("sellers"), allow_negative=False),
            sold30=optional_int(data.get("sold30"), allow_negative=False),
            image_url=image_url if isinstance(image_url, str) else None,
            first_seen_at=first_seen,
            last_seen_at=max(last_seen, first_seen),
            last_notified_at=optional_int(data.get("lastNotifiedAt"), allow_negative=False) or 0,
        )


@dataclass
class PersistedState:
    """Full store: version tag, last update time and ASIN -> snapshot map."""

    version: int = STATE_VERSION
    updated_at: int = 0
    items: dict[str, ItemSnapshot] = field(default_factory=dict)

    def get(self, asin: str) -> Optional[ItemSnapshot]:
        return self.items.get(asin)

    def record(self, curr: ItemSnapshot, now: int, notified: bool) -> ItemSnapshot:
        """Store the latest observation of an item.

        Metrics are always replaced with ``curr``; ``first_seen_at`` survives
        from the previous snapshot and ``last_notified_at`` only moves when
        the item was accepted for notification.
        """
        prev = self.items.get(curr.asin)
        first_seen = prev.first_seen_at if prev and prev.first_seen_at else now
        last_notified = prev.last_notified_at if prev else 0
        if notified:
            last_notified = now

        snapshot = ItemSnapshot(
            asin=curr.asin,
            title=curr.title,
            price=curr.price,
            rank=curr.rank,
            sellers=curr.sellers,
            sold30=curr.sold30,
            image_url=curr.image_url,
            first_seen_at=first_seen,
            last_seen_at=max(now, first_seen),
            last_notified_at=last_notified,
        )
        self.items[curr.asin] = snapshot
        return snapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "items": {asin: snap.to_dict() for asin, snap in self.items.items()},
        }


@dataclass(frozen=True)
class CategoryProfile:
    """Named category-scoped scan configuration."""

    key: str
    label: str
    root_category: int
    exclude_digital: bool = False
    selection: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    limit: Optional[int] = None


@dataclass
class MetricChange:
    """One metric that crossed its threshold."""

    metric: str
    previous: Optional[int]
    current: Optional[int]
    delta: Optional[int] = None

    @property
    def reason(self) -> str:
        if self.delta is not None:
            return f"{self.metric} {self.delta:+d}"
        if self.previous is None:
            return f"{self.metric} appeared"
        return f"{self.metric} disappeared"


@dataclass
class ChangeDescriptor:
    """Result of comparing two snapshots."""

    significant: bool
    reasons: list[str] = field(default_factory=list)
    changes: list[MetricChange] = field(default_factory=list)
    is_new: bool = False


@dataclass
class NotificationItem:
    """Item accepted for notification, with everything the formatter needs."""

    snapshot: ItemSnapshot
    change: ChangeDescriptor
    amazon_url: str
    keepa_url: str
    graph_image_url: Optional[str] = None


@dataclass
class OutboundMessage:
    """Chat message: plain-text fallback plus optional layout blocks."""

    text: str
    blocks: list[dict[str, Any]] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": self.text}
        if self.blocks:
            payload["blocks"] = self.blocks
        return payload


@dataclass
class ProfileResult:
    """Outcome of scanning one category profile."""

    profile_key: str
    candidates: int = 0
    observed: int = 0
    accepted: int = 0
    sent: int = 0
    suppressed: int = 0
    over_budget: int = 0
    failed_batches: int = 0
    search_failed: bool = False
    rejected: dict[str, int] = field(default_factory=dict)


@dataclass
class RunSummary:
    """Outcome of one full scan-compare-notify-persist cycle."""

    notified: int = 0
    pruned: int = 0
    state_saved: bool = False
    profiles: list[ProfileResult] = field(default_factory=list)
