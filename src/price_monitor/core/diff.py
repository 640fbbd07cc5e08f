"""Snapshot comparison."""

from dataclasses import dataclass
from typing import Optional

from price_monitor.core.entities import ChangeDescriptor, ItemSnapshot, MetricChange


@dataclass(frozen=True)
class DiffThresholds:
    """Minimum absolute change per metric that counts as significant."""

    price: int = 200
    rank: int = 5000
    sellers: int = 1
    sold30: int = 5


class DiffEvaluator:
    """Decide whether an item changed enough since the last run to notify.

    Each metric is an independent trigger: any one crossing its threshold
    makes the result significant, and every crossing adds a reason. The
    comparison is on absolute deltas; direction only shows up in the reason.
    """

    METRICS = ("price", "rank", "sellers", "sold30")

    def __init__(self, thresholds: Optional[DiffThresholds] = None) -> None:
        self.thresholds = thresholds or DiffThresholds()

    def evaluate(self, prev: Optional[ItemSnapshot], curr: ItemSnapshot) -> ChangeDescriptor:
        if prev is None:
            return ChangeDescriptor(significant=True, reasons=["new"], is_new=True)

        changes: list[MetricChange] = []
        for metric in self.METRICS:
            change = self._compare(metric, getattr(prev, metric), getattr(curr, metric))
            if change is not None:
                changes.append(change)

        return ChangeDescriptor(
            significant=bool(changes),
            reasons=[c.reason for c in changes],
            changes=changes,
        )

    def _compare(
        self, metric: str, previous: Optional[int], current: Optional[int]
    ) -> Optional[MetricChange]:
        if previous is not None and current is not None:
            delta = current - previous
            if abs(delta) >= getattr(self.thresholds, metric):
                return MetricChange(metric, previous, current, delta)
            return None

        # Presence change only counts for price.
        if metric == "price" and (previous is None) != (current is None):
            return MetricChange(metric, previous, current)

        return None
