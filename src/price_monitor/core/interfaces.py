"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from typing import Any

from price_monitor.core.entities import CategoryProfile, NotificationItem, OutboundMessage


class ProductSource(ABC):
    """Interface for the upstream product-data API."""

    @abstractmethod
    async def search(self, profile: CategoryProfile, page: int, per_page: int) -> list[str]:
        """Return item identifiers for one page of a category search."""
        pass

    @abstractmethod
    async def fetch_products(self, asins: list[str]) -> list[dict[str, Any]]:
        """Return raw product records for a batch of identifiers."""
        pass


class NotificationService(ABC):
    """Interface for sending chat notifications."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> bool:
        """Send one message. Returns True when the channel acknowledged it."""
        pass


class MessageFormatter(ABC):
    """Interface for laying out accepted items as an outbound message."""

    @abstractmethod
    def format(self, profile_label: str, items: list[NotificationItem]) -> OutboundMessage:
        """Build a message for a batch of items."""
        pass
