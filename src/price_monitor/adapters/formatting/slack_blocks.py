"""Slack Block Kit layout for accepted items."""

from typing import Any, Optional

from price_monitor.core import MessageFormatter, MetricChange, NotificationItem, OutboundMessage


UP = "⬆"
DOWN = "⬇"


def yen(value: Optional[int]) -> str:
    return "-" if value is None else f"¥{value:,}"


def escape(text: str) -> str:
    """Escape the characters Slack mrkdwn treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def or_dash(value: Optional[int]) -> str:
    return "-" if value is None else f"{value:,}"


def describe_change(change: MetricChange) -> str:
    """Human-readable change with a direction arrow.

    A smaller rank number is an improvement, so it points up.
    """
    if change.delta is None:
        return change.reason

    improved = change.delta < 0 if change.metric == "rank" else change.delta > 0
    arrow = UP if improved else DOWN

    if change.metric == "price":
        return f"{arrow} price {yen(change.previous)} → {yen(change.current)} ({change.delta:+,})"
    return f"{arrow} {change.metric} {or_dash(change.previous)} → {or_dash(change.current)} ({change.delta:+,})"


class SlackBlockFormatter(MessageFormatter):
    """Card-style layout: title, image, metrics, change summary, graph, links."""

    def format(self, profile_label: str, items: list[NotificationItem]) -> OutboundMessage:
        blocks: list[dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"📊 Price Monitor｜{profile_label}"},
            },
            {"type": "divider"},
        ]

        for item in items:
            blocks.extend(self._item_blocks(item))

        return OutboundMessage(text=f"{profile_label}｜{len(items)}件", blocks=blocks)

    def _item_blocks(self, item: NotificationItem) -> list[dict[str, Any]]:
        snap = item.snapshot
        title = escape(snap.title)

        top: dict[str, Any] = {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{title}*\nASIN: `{snap.asin}`"},
        }
        if snap.image_url:
            top["accessory"] = {
                "type": "image",
                "image_url": snap.image_url,
                "alt_text": title[:80],
            }

        if item.change.is_new:
            summary = "🆕 new"
        else:
            summary = " ｜ ".join(describe_change(c) for c in item.change.changes)

        blocks: list[dict[str, Any]] = [
            top,
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Price*\n{yen(snap.price)}"},
                    {"type": "mrkdwn", "text": f"*Sellers*\n{or_dash(snap.sellers)}"},
                    {"type": "mrkdwn", "text": f"*Rank*\n{or_dash(snap.rank)}"},
                    {"type": "mrkdwn", "text": f"*Sold (30d)*\n{or_dash(snap.sold30)}"},
                ],
            },
            {"type": "context", "elements": [{"type": "mrkdwn", "text": summary}]},
        ]

        if item.graph_image_url:
            blocks.append({
                "type": "image",
                "image_url": item.graph_image_url,
                "alt_text": f"Keepa graph {snap.asin}",
            })

        blocks.append({
            "type": "actions",
            "elements": [
                {"type": "button", "text": {"type": "plain_text", "text": "Amazon"}, "url": item.amazon_url},
                {"type": "button", "text": {"type": "plain_text", "text": "Keepa"}, "url": item.keepa_url},
            ],
        })
        blocks.append({"type": "divider"})
        return blocks
