"""Notification adapters."""

from price_monitor.adapters.notifications.slack_notifier import LogNotifier, SlackNotifier

__all__ = ["LogNotifier", "SlackNotifier"]
