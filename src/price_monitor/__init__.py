"""Keepa category monitor with Slack change notifications."""

__version__ = "0.1.0"
