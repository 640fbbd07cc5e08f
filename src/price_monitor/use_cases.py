"""Business logic use cases."""

import logging
from typing import Callable, Optional

from price_monitor.adapters.keepa import (
    KeepaRequestError,
    amazon_product_url,
    keepa_graph_url,
    keepa_product_url,
)
from price_monitor.config import Settings
from price_monitor.core import (
    CategoryProfile,
    ChangeDescriptor,
    CooldownGate,
    DiffEvaluator,
    ItemSnapshot,
    MessageFormatter,
    NotificationItem,
    NotificationService,
    PersistedState,
    ProductSource,
    ProfileResult,
    RunSummary,
    SnapshotExtractor,
    StateStore,
    now_ms,
)


logger = logging.getLogger(__name__)

DETAIL_BATCH_SIZE = 20


def chunked(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class NotificationDispatcher:
    """Send accepted items in small batches, falling back to one-by-one."""

    def __init__(
        self,
        notifier: NotificationService,
        formatter: MessageFormatter,
        batch_size: int = 3,
    ) -> None:
        self.notifier = notifier
        self.formatter = formatter
        self.batch_size = min(max(batch_size, 1), 3)

    async def send(self, profile_label: str, items: list[NotificationItem]) -> int:
        """Deliver items and return how many actually went out."""
        sent = 0

        for batch in chunked(items, self.batch_size):
            if await self.notifier.send(self.formatter.format(profile_label, batch)):
                sent += len(batch)
                continue

            if len(batch) == 1:
                logger.error("[notify:%s] send failed for %s", profile_label, batch[0].snapshot.asin)
                continue

            logger.warning(
                "[notify:%s] batch of %d failed, retrying items individually",
                profile_label, len(batch),
            )
            for item in batch:
                if await self.notifier.send(self.formatter.format(profile_label, [item])):
                    sent += 1
                else:
                    logger.error("[notify:%s] send failed for %s", profile_label, item.snapshot.asin)

        return sent


class ScanService:
    """Scan category profiles, diff against stored state and notify.

    One call to :meth:`run` is one complete batch cycle: state is loaded
    once, every profile is scanned in declared order, and state is pruned
    and saved once at the end.
    """

    def __init__(
        self,
        source: ProductSource,
        dispatcher: NotificationDispatcher,
        store: StateStore,
        extractor: SnapshotExtractor,
        evaluator: DiffEvaluator,
        cooldown: CooldownGate,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
        persist: bool = True,
    ) -> None:
        self.source = source
        self.dispatcher = dispatcher
        self.store = store
        self.extractor = extractor
        self.evaluator = evaluator
        self.cooldown = cooldown
        self.settings = settings
        self.clock = clock
        self.persist = persist

    async def run(self, profiles: list[CategoryProfile]) -> RunSummary:
        summary = RunSummary()
        state = self.store.load()
        remaining = self.settings.monitoring.max_notify

        logger.info("monitor START profiles=%s budget=%d", [p.key for p in profiles], remaining)

        for profile in profiles:
            if remaining <= 0:
                logger.info("Global notify budget exhausted, skipping remaining profiles")
                break

            result = await self.scan_profile(profile, state, remaining)
            summary.profiles.append(result)
            summary.notified += result.sent
            remaining -= result.sent

        summary.pruned = self.store.prune(state, self.settings.state_ttl_ms, now=self.clock())
        if summary.pruned:
            logger.info("Pruned %d stale snapshots", summary.pruned)

        if self.persist:
            summary.state_saved = self.store.save(state)
        else:
            logger.info("State not persisted (dry run)")

        logger.info("monitor DONE notified=%d", summary.notified)
        return summary

    async def scan_profile(
        self, profile: CategoryProfile, state: PersistedState, remaining: int
    ) -> ProfileResult:
        """Scan one profile, update ``state`` in place and send notifications."""
        result = ProfileResult(profile_key=profile.key)
        profile_limit = profile.limit if profile.limit is not None else self.settings.monitoring.profile_limit
        capacity = max(0, min(profile_limit, remaining))

        logger.info("[%s] profile START capacity=%d", profile.key, capacity)

        asins = await self._collect_asins(profile, profile_limit, result)
        result.candidates = len(asins)

        accepted: list[NotificationItem] = []

        for batch in chunked(asins, DETAIL_BATCH_SIZE):
            if len(accepted) >= capacity:
                break

            try:
                products = await self.source.fetch_products(batch)
            except KeepaRequestError as e:
                result.failed_batches += 1
                logger.error(
                    "[%s] product fetch failed for %s..%s, skipping batch: %s",
                    profile.key, batch[0], batch[-1], e,
                )
                continue

            # Finish the whole batch even after capacity is reached so every
            # fetched item still gets its state updated.
            for product in products:
                item = self._evaluate_product(profile, product, state, result, capacity - len(accepted))
                if item is not None:
                    accepted.append(item)

        result.accepted = len(accepted)
        if accepted:
            result.sent = await self.dispatcher.send(profile.label, accepted)

        logger.info(
            "[%s] profile DONE candidates=%d observed=%d accepted=%d sent=%d suppressed=%d rejected=%s",
            profile.key, result.candidates, result.observed, result.accepted,
            result.sent, result.suppressed, result.rejected,
        )
        return result

    async def _collect_asins(
        self, profile: CategoryProfile, profile_limit: int, result: ProfileResult
    ) -> list[str]:
        """Page through search results, keeping first-seen order."""
        per_page = self.settings.keepa.per_page
        seen: set[str] = set()
        asins: list[str] = []

        for page in range(self.settings.keepa.max_pages):
            try:
                page_asins = await self.source.search(profile, page, per_page)
            except KeepaRequestError as e:
                result.search_failed = True
                logger.error("[%s] search failed on page %d, stopping scan: %s", profile.key, page, e)
                break

            for asin in page_asins:
                if asin not in seen:
                    seen.add(asin)
                    asins.append(asin)

            if len(page_asins) < per_page:
                break

        cap = profile_limit * self.settings.monitoring.candidate_multiplier
        return asins[:cap] if cap > 0 else asins

    def _evaluate_product(
        self,
        profile: CategoryProfile,
        product: dict,
        state: PersistedState,
        result: ProfileResult,
        capacity_left: int,
    ) -> Optional[NotificationItem]:
        """Run one product through extraction, diff and cooldown; record it."""
        extraction = self.extractor.extract(product, profile)
        if extraction.snapshot is None:
            reason = extraction.rejection.value if extraction.rejection else "unknown"
            result.rejected[reason] = result.rejected.get(reason, 0) + 1
            logger.debug("[%s] %s rejected: %s", profile.key, product.get("asin"), reason)
            return None

        curr = extraction.snapshot
        now = self.clock()
        prev = state.get(curr.asin)
        change = self.evaluator.evaluate(prev, curr)
        result.observed += 1

        notify = False
        if change.significant:
            if self.cooldown.in_cooldown(prev, now):
                result.suppressed += 1
                logger.debug("[%s] %s in cooldown: %s", profile.key, curr.asin, change.reasons)
            elif capacity_left <= 0:
                result.over_budget += 1
                logger.debug("[%s] %s over budget: %s", profile.key, curr.asin, change.reasons)
            else:
                notify = True

        stored = state.record(curr, now, notified=notify)
        if not notify:
            return None

        logger.info("[%s] accept %s %s", profile.key, curr.asin, ", ".join(change.reasons))
        return self._notification_item(stored, change)

    def _notification_item(self, snapshot: ItemSnapshot, change: ChangeDescriptor) -> NotificationItem:
        domain = self.settings.keepa.domain
        slack = self.settings.slack
        graph = None
        if slack.graph_image:
            graph = keepa_graph_url(
                snapshot.asin,
                domain=domain,
                range_days=slack.graph_range_days,
                width=slack.graph_width,
                height=slack.graph_height,
            )
        return NotificationItem(
            snapshot=snapshot,
            change=change,
            amazon_url=amazon_product_url(snapshot.asin, domain),
            keepa_url=keepa_product_url(snapshot.asin, domain),
            graph_image_url=graph,
        )
