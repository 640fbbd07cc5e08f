"""Core domain layer."""

from price_monitor.core.cooldown import CooldownGate
from price_monitor.core.diff import DiffEvaluator, DiffThresholds
from price_monitor.core.entities import (
    CategoryProfile,
    ChangeDescriptor,
    ItemSnapshot,
    MetricChange,
    NotificationItem,
    OutboundMessage,
    PersistedState,
    ProfileResult,
    RunSummary,
    now_ms,
)
from price_monitor.core.extractor import Extraction, Rejection, SnapshotExtractor
from price_monitor.core.interfaces import MessageFormatter, NotificationService, ProductSource
from price_monitor.core.state_store import StateStore, StateStoreError

__all__ = [
    "CategoryProfile",
    "ChangeDescriptor",
    "CooldownGate",
    "DiffEvaluator",
    "DiffThresholds",
    "Extraction",
    "ItemSnapshot",
    "MessageFormatter",
    "MetricChange",
    "NotificationItem",
    "NotificationService",
    "OutboundMessage",
    "PersistedState",
    "ProductSource",
    "ProfileResult",
    "Rejection",
    "RunSummary",
    "SnapshotExtractor",
    "StateStore",
    "StateStoreError",
    "now_ms",
]
