"""Re-notification cooldown."""

from typing import Optional

from price_monitor.core.entities import ItemSnapshot


HOUR_MS = 60 * 60 * 1000


class CooldownGate:
    """Suppress notifying the same item twice within a time window."""

    def __init__(self, window_ms: int = 6 * HOUR_MS) -> None:
        self.window_ms = window_ms

    @classmethod
    def from_hours(cls, hours: float) -> "CooldownGate":
        return cls(int(hours * HOUR_MS))

    def in_cooldown(self, prev: Optional[ItemSnapshot], now: int) -> bool:
        if prev is None or not prev.last_notified_at:
            return False
        return now - prev.last_notified_at < self.window_ms
