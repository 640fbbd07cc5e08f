"""Tests for use cases."""

import json
from typing import Any, Optional
from unittest.mock import Mock

import pytest

from conftest import make_product
from price_monitor.adapters.formatting import SlackBlockFormatter
from price_monitor.adapters.keepa import KeepaAuthError, KeepaRequestError
from price_monitor.config import Settings
from price_monitor.core import (
    CategoryProfile,
    ChangeDescriptor,
    CooldownGate,
    DiffEvaluator,
    ItemSnapshot,
    NotificationItem,
    NotificationService,
    OutboundMessage,
    PersistedState,
    ProductSource,
    SnapshotExtractor,
    StateStore,
)
from price_monitor.use_cases import NotificationDispatcher, ScanService


T0 = 1_700_000_000_000
HOUR = 60 * 60 * 1000

TOYS = CategoryProfile(key="toys", label="おもちゃ", root_category=13299531)
HOBBY = CategoryProfile(key="hobby", label="ホビー", root_category=2277721051)


class FakeSource(ProductSource):
    """In-memory search pages and product records per profile."""

    def __init__(
        self,
        pages: dict[str, list[list[str]]],
        products: list[dict[str, Any]],
        search_errors: Optional[dict[int, Exception]] = None,
        fetch_errors: Optional[dict[str, Exception]] = None,
    ) -> None:
        self.pages = pages
        self.products = {p["asin"]: p for p in products}
        self.search_errors = search_errors or {}
        self.fetch_errors = fetch_errors or {}
        self.fetched: list[list[str]] = []
        self.searched: list[int] = []

    async def search(self, profile: CategoryProfile, page: int, per_page: int) -> list[str]:
        self.searched.append(page)
        if page in self.search_errors:
            raise self.search_errors[page]
        pages = self.pages.get(profile.key, [])
        return pages[page] if page < len(pages) else []

    async def fetch_products(self, asins: list[str]) -> list[dict[str, Any]]:
        self.fetched.append(list(asins))
        for asin in asins:
            if asin in self.fetch_errors:
                raise self.fetch_errors[asin]
        return [self.products[a] for a in asins if a in self.products]


class FakeNotifier(NotificationService):
    def __init__(self, results: Optional[list[bool]] = None) -> None:
        self.results = list(results or [])
        self.messages: list[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> bool:
        self.messages.append(message)
        return self.results.pop(0) if self.results else True


class Clock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def settings() -> Settings:
    settings = Settings()
    settings.keepa.per_page = 2
    settings.keepa.max_pages = 3
    return settings


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(tmp_path, clock) -> StateStore:
    return StateStore(tmp_path / "state.json", clock=clock)


def make_service(
    source: ProductSource,
    notifier: NotificationService,
    store: StateStore,
    settings: Settings,
    clock: Clock,
    persist: bool = True,
) -> ScanService:
    return ScanService(
        source=source,
        dispatcher=NotificationDispatcher(notifier, SlackBlockFormatter(), settings.slack_batch_size),
        store=store,
        extractor=SnapshotExtractor(),
        evaluator=DiffEvaluator(settings.diff_thresholds),
        cooldown=CooldownGate(settings.cooldown_ms),
        settings=settings,
        clock=clock,
        persist=persist,
    )


def read_items(store: StateStore) -> dict[str, Any]:
    return json.loads(store.path.read_text(encoding="utf-8"))["items"]


@pytest.mark.asyncio
async def test_new_item_is_notified_and_stored(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", new_price=1500)])
    notifier = FakeNotifier()

    summary = await make_service(source, notifier, store, settings, clock).run([TOYS])

    assert summary.notified == 1
    assert summary.state_saved is True
    assert len(notifier.messages) == 1
    assert notifier.messages[0].text == "おもちゃ｜1件"

    entry = read_items(store)["B1"]
    assert entry["price"] == 1500
    assert entry["firstSeenAt"] == entry["lastSeenAt"] == T0
    assert entry["lastNotifiedAt"] == T0


@pytest.mark.asyncio
async def test_unchanged_second_run_sends_nothing(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1")])
    notifier = FakeNotifier()
    service = make_service(source, notifier, store, settings, clock)

    await service.run([TOYS])
    clock.now = T0 + HOUR
    summary = await service.run([TOYS])

    assert summary.notified == 0
    assert len(notifier.messages) == 1

    entry = read_items(store)["B1"]
    assert entry["firstSeenAt"] == T0
    assert entry["lastSeenAt"] == T0 + HOUR
    assert entry["lastNotifiedAt"] == T0


@pytest.mark.asyncio
async def test_price_rise_notifies_once_cooldown_has_passed(store, settings, clock) -> None:
    products = [make_product("B1", new_price=1000)]
    source = FakeSource({"toys": [["B1"]]}, products)
    notifier = FakeNotifier()
    service = make_service(source, notifier, store, settings, clock)
    await service.run([TOYS])

    source.products["B1"] = make_product("B1", new_price=1250)
    clock.now = T0 + 7 * HOUR
    summary = await service.run([TOYS])

    assert summary.notified == 1
    assert "¥1,000 → ¥1,250 (+250)" in json.dumps(notifier.messages[-1].blocks, ensure_ascii=False)
    assert read_items(store)["B1"]["lastNotifiedAt"] == T0 + 7 * HOUR


@pytest.mark.asyncio
async def test_small_price_change_is_ignored(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", new_price=1000)])
    notifier = FakeNotifier()
    service = make_service(source, notifier, store, settings, clock)
    await service.run([TOYS])

    source.products["B1"] = make_product("B1", new_price=1150)
    clock.now = T0 + 7 * HOUR
    summary = await service.run([TOYS])

    assert summary.notified == 0
    # Metrics still follow the latest observation.
    assert read_items(store)["B1"]["price"] == 1150


@pytest.mark.asyncio
async def test_significant_change_within_cooldown_is_suppressed(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", new_price=1000)])
    notifier = FakeNotifier()
    service = make_service(source, notifier, store, settings, clock)
    await service.run([TOYS])

    source.products["B1"] = make_product("B1", new_price=1500)
    clock.now = T0 + HOUR
    summary = await service.run([TOYS])

    assert summary.notified == 0
    assert summary.profiles[0].suppressed == 1
    entry = read_items(store)["B1"]
    assert entry["price"] == 1500
    assert entry["lastNotifiedAt"] == T0


@pytest.mark.asyncio
async def test_few_sellers_item_is_never_stored(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", offers=2)])
    notifier = FakeNotifier()

    summary = await make_service(source, notifier, store, settings, clock).run([TOYS])

    assert summary.notified == 0
    assert summary.profiles[0].rejected == {"few_sellers": 1}
    assert notifier.messages == []
    assert "B1" not in read_items(store)


@pytest.mark.asyncio
async def test_rejected_item_leaves_existing_entry_untouched(store, settings, clock) -> None:
    state = PersistedState()
    state.items["B1"] = ItemSnapshot(
        asin="B1", title="Old", price=1200, sellers=4,
        first_seen_at=T0 - HOUR, last_seen_at=T0 - HOUR,
    )
    store.save(state)

    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", new_price=900)])
    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert summary.profiles[0].rejected == {"price_floor": 1}
    entry = read_items(store)["B1"]
    assert entry["price"] == 1200
    assert entry["lastSeenAt"] == T0 - HOUR


@pytest.mark.asyncio
async def test_global_budget_stops_later_profiles(store, settings, clock) -> None:
    settings.monitoring.max_notify = 2
    source = FakeSource(
        {"toys": [["T1", "T2"], ["T3"]], "hobby": [["H1"]]},
        [make_product(a) for a in ("T1", "T2", "T3")] + [make_product("H1", root_category=2277721051)],
    )
    notifier = FakeNotifier()

    summary = await make_service(source, notifier, store, settings, clock).run([TOYS, HOBBY])

    assert summary.notified == 2
    assert [r.profile_key for r in summary.profiles] == ["toys"]
    assert summary.profiles[0].over_budget == 1

    items = read_items(store)
    # The over-budget item is still recorded, just not stamped as notified.
    assert items["T3"]["lastNotifiedAt"] == 0
    assert "H1" not in items


@pytest.mark.asyncio
async def test_profile_limit_caps_notifications(store, settings, clock) -> None:
    limited = CategoryProfile(key="toys", label="おもちゃ", root_category=13299531, limit=1)
    source = FakeSource({"toys": [["T1", "T2"], ["T3"]]}, [make_product(a) for a in ("T1", "T2", "T3")])

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([limited])

    assert summary.notified == 1
    assert summary.profiles[0].accepted == 1


@pytest.mark.asyncio
async def test_no_further_detail_batches_once_capacity_is_reached(store, settings, clock, monkeypatch) -> None:
    monkeypatch.setattr("price_monitor.use_cases.DETAIL_BATCH_SIZE", 1)
    limited = CategoryProfile(key="toys", label="おもちゃ", root_category=13299531, limit=1)
    source = FakeSource({"toys": [["T1", "T2"], ["T3"]]}, [make_product(a) for a in ("T1", "T2", "T3")])

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([limited])

    assert summary.notified == 1
    assert source.fetched == [["T1"]]
    assert set(read_items(store)) == {"T1"}


@pytest.mark.asyncio
async def test_search_stops_at_max_pages(store, settings, clock) -> None:
    pages = [[f"P{n}A", f"P{n}B"] for n in range(5)]
    source = FakeSource({"toys": pages}, [make_product(a) for page in pages for a in page])

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert source.searched == [0, 1, 2]
    assert summary.profiles[0].candidates == 6


@pytest.mark.asyncio
async def test_out_of_category_item_is_not_stored(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1", root_category=637394)])

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert summary.profiles[0].rejected == {"out_of_category": 1}
    assert read_items(store) == {}


@pytest.mark.asyncio
async def test_duplicate_asins_across_pages_are_collapsed(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1", "B2"], ["B2", "B3"]]}, [make_product(a) for a in ("B1", "B2", "B3")])

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert summary.profiles[0].candidates == 3
    assert source.fetched == [["B1", "B2", "B3"]]


@pytest.mark.asyncio
async def test_failed_detail_batch_is_skipped(store, settings, clock, monkeypatch) -> None:
    monkeypatch.setattr("price_monitor.use_cases.DETAIL_BATCH_SIZE", 1)
    source = FakeSource(
        {"toys": [["B1", "B2"], ["B3"]]},
        [make_product(a) for a in ("B1", "B2", "B3")],
        fetch_errors={"B2": KeepaRequestError("server error", status=500)},
    )

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert summary.profiles[0].failed_batches == 1
    assert summary.notified == 2
    assert set(read_items(store)) == {"B1", "B3"}


@pytest.mark.asyncio
async def test_search_failure_keeps_collected_candidates(store, settings, clock) -> None:
    source = FakeSource(
        {"toys": [["B1", "B2"]]},
        [make_product("B1"), make_product("B2")],
        search_errors={1: KeepaRequestError("timeout")},
    )

    summary = await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    result = summary.profiles[0]
    assert result.search_failed is True
    assert result.candidates == 2
    assert summary.notified == 2


@pytest.mark.asyncio
async def test_auth_error_aborts_run_without_saving(store, settings, clock) -> None:
    source = FakeSource({}, [], search_errors={0: KeepaAuthError("invalid key")})

    with pytest.raises(KeepaAuthError):
        await make_service(source, FakeNotifier(), store, settings, clock).run([TOYS])

    assert not store.path.exists()


@pytest.mark.asyncio
async def test_failed_send_still_stamps_notification_time(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1")])

    summary = await make_service(source, FakeNotifier([False]), store, settings, clock).run([TOYS])

    assert summary.notified == 0
    assert summary.profiles[0].accepted == 1
    assert read_items(store)["B1"]["lastNotifiedAt"] == T0


@pytest.mark.asyncio
async def test_dry_run_does_not_persist(store, settings, clock) -> None:
    source = FakeSource({"toys": [["B1"]]}, [make_product("B1")])
    notifier = FakeNotifier()

    summary = await make_service(source, notifier, store, settings, clock, persist=False).run([TOYS])

    assert summary.notified == 1
    assert summary.state_saved is False
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_stale_entries_are_pruned(store, settings, clock) -> None:
    state = PersistedState()
    state.items["OLD"] = ItemSnapshot(
        asin="OLD", title="Gone", first_seen_at=T0 - 40 * 24 * HOUR, last_seen_at=T0 - 40 * 24 * HOUR,
    )
    store.save(state)

    summary = await make_service(FakeSource({}, []), FakeNotifier(), store, settings, clock).run([TOYS])

    assert summary.pruned == 1
    assert read_items(store) == {}


def make_item(asin: str) -> NotificationItem:
    return NotificationItem(
        snapshot=ItemSnapshot(asin=asin, title=asin),
        change=ChangeDescriptor(significant=True, reasons=["new"], is_new=True),
        amazon_url=f"https://www.amazon.co.jp/dp/{asin}",
        keepa_url=f"https://keepa.com/#!product/5-{asin}",
    )


@pytest.mark.asyncio
async def test_dispatcher_sends_batches() -> None:
    notifier = FakeNotifier()
    formatter = Mock()
    formatter.format.side_effect = lambda label, items: OutboundMessage(text=f"{label}:{len(items)}")

    sent = await NotificationDispatcher(notifier, formatter, 3).send("Toys", [make_item(f"B{i}") for i in range(4)])

    assert sent == 4
    assert [m.text for m in notifier.messages] == ["Toys:3", "Toys:1"]


@pytest.mark.asyncio
async def test_dispatcher_falls_back_to_single_items() -> None:
    notifier = FakeNotifier([False, True, True, False])
    formatter = Mock()
    formatter.format.side_effect = lambda label, items: OutboundMessage(text=",".join(i.snapshot.asin for i in items))

    sent = await NotificationDispatcher(notifier, formatter, 3).send("Toys", [make_item(a) for a in ("A", "B", "C")])

    assert sent == 2
    assert [m.text for m in notifier.messages] == ["A,B,C", "A", "B", "C"]


def test_dispatcher_clamps_batch_size() -> None:
    assert NotificationDispatcher(FakeNotifier(), Mock(), 10).batch_size == 3
    assert NotificationDispatcher(FakeNotifier(), Mock(), 0).batch_size == 1
