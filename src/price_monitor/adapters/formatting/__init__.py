"""Message formatting adapters."""

from price_monitor.adapters.formatting.slack_blocks import SlackBlockFormatter

__all__ = ["SlackBlockFormatter"]
