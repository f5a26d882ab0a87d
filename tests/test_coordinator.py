import asyncio
from datetime import datetime, timedelta

import pytest

from compete_tracker.agents import AgentProductScraper, AgentSellerScraper, EbaySellerAgent
from compete_tracker.errors import (
    AgentNotConfigured,
    BlockedOrUnavailable,
    EmptyScrapeError,
    EntityNotFound,
    MissingIdentity,
)
from compete_tracker.history import Competitor, EntityKind, ProductMetrics, SellerMetrics, TrackedProduct
from compete_tracker.normalizer.funnel import fallback_run, normalize_funnel
from compete_tracker.orchestrator import KeyedLock, RefreshCoordinator, build_coordinator
from compete_tracker.storage import Database, ScrapeJob
from compete_tracker.utils.config import Config

STORE = "https://www.ebay.ca/str/acme"
OTHER_STORE = "https://www.ebay.ca/str/other"
ITEM = "https://www.ebay.ca/itm/123"


class FakeScraper:
    """Returns queued results per URL; exceptions in the queue are raised."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def scrape(self, url, cancel=None):
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            result = self.results[url]
            if isinstance(result, list):
                result = result.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


class FakeFunnelAgent:
    def __init__(self, run):
        self.run = run

    async def explore(self, competitor, query, cancel=None):
        return self.run


def ticking_clock(start=datetime(2025, 1, 1, 12, 0, 0)):
    ticks = (start + timedelta(minutes=i) for i in range(1000))
    return lambda: next(ticks)


def make_coordinator(seller=None, product=None, funnel_agent=None):
    db = Database("sqlite:///:memory:")
    scrapers = {
        EntityKind.COMPETITOR: seller or FakeScraper(),
        EntityKind.PRODUCT: product or FakeScraper(),
    }
    return RefreshCoordinator(db, scrapers, funnel_agent=funnel_agent, clock=ticking_clock())


@pytest.mark.asyncio
async def test_refresh_rotates_without_saving():
    seller = FakeScraper({STORE: SellerMetrics(followers=10, seller_name="Acme")})
    coordinator = make_coordinator(seller=seller)

    refreshed = await coordinator.refresh(Competitor(store_url=STORE))

    assert refreshed.current_snapshot.followers == 10
    assert refreshed.name == "Acme"
    assert coordinator.db.find_by_identity(EntityKind.COMPETITOR, STORE) is None


@pytest.mark.asyncio
async def test_refresh_requires_identity():
    seller = FakeScraper()
    coordinator = make_coordinator(seller=seller)

    with pytest.raises(MissingIdentity):
        await coordinator.refresh(Competitor(name="No URL", store_url="   "))

    assert seller.calls == []


@pytest.mark.asyncio
async def test_empty_scrape_raises_and_blocked_propagates():
    seller = FakeScraper({STORE: SellerMetrics(seller_name="Only name"), OTHER_STORE: BlockedOrUnavailable("captcha")})
    coordinator = make_coordinator(seller=seller)

    with pytest.raises(EmptyScrapeError):
        await coordinator.refresh(Competitor(store_url=STORE))

    with pytest.raises(BlockedOrUnavailable):
        await coordinator.refresh(Competitor(store_url=OTHER_STORE))


@pytest.mark.asyncio
async def test_track_then_refresh_tracked_builds_history():
    seller = FakeScraper({STORE: [SellerMetrics(followers=1), SellerMetrics(followers=2)]})
    coordinator = make_coordinator(seller=seller)

    tracked = await coordinator.track(EntityKind.COMPETITOR, f" {STORE} ")
    assert tracked.id is not None
    assert tracked.store_url == STORE

    refreshed = await coordinator.refresh_tracked(EntityKind.COMPETITOR, STORE)
    assert refreshed.id == tracked.id
    assert refreshed.current_snapshot.followers == 2
    assert refreshed.past_snapshots == [tracked.current_snapshot]


@pytest.mark.asyncio
async def test_track_product_records_competitor():
    product = FakeScraper({ITEM: ProductMetrics(price=9.99, title="Lamp")})
    coordinator = make_coordinator(product=product)

    tracked = await coordinator.track(EntityKind.PRODUCT, ITEM, competitor="Acme")

    assert isinstance(tracked, TrackedProduct)
    assert tracked.competitor == "Acme"
    assert tracked.name == "Lamp"
    assert [p.product_url for p in coordinator.db.list_products(competitor="Acme")] == [ITEM]


@pytest.mark.asyncio
async def test_refresh_tracked_unknown_entity():
    coordinator = make_coordinator()

    with pytest.raises(EntityNotFound):
        await coordinator.refresh_tracked(EntityKind.COMPETITOR, STORE)

    with pytest.raises(MissingIdentity):
        await coordinator.refresh_tracked(EntityKind.COMPETITOR, "")


@pytest.mark.asyncio
async def test_failed_refresh_leaves_stored_entity_untouched():
    seller = FakeScraper({STORE: [SellerMetrics(followers=5), BlockedOrUnavailable("captcha")]})
    coordinator = make_coordinator(seller=seller)
    tracked = await coordinator.track(EntityKind.COMPETITOR, STORE)

    with pytest.raises(BlockedOrUnavailable):
        await coordinator.refresh_tracked(EntityKind.COMPETITOR, STORE)

    stored = coordinator.db.find_by_identity(EntityKind.COMPETITOR, STORE)
    assert stored == tracked


@pytest.mark.asyncio
async def test_overlapping_refreshes_of_one_entity_are_serialized():
    seller = FakeScraper({STORE: [SellerMetrics(followers=i) for i in range(3)]})
    coordinator = make_coordinator(seller=seller)
    await coordinator.track(EntityKind.COMPETITOR, STORE)

    await asyncio.gather(
        coordinator.refresh_tracked(EntityKind.COMPETITOR, STORE),
        coordinator.refresh_tracked(EntityKind.COMPETITOR, STORE),
    )

    assert seller.max_active == 1
    stored = coordinator.db.find_by_identity(EntityKind.COMPETITOR, STORE)
    # Neither update was lost
    assert stored.current_snapshot.followers == 2
    assert [s.followers for s in stored.past_snapshots] == [1, 0]
    assert len(coordinator.locks) == 0


@pytest.mark.asyncio
async def test_refresh_all_continues_past_failures_and_records_job():
    seller = FakeScraper(
        {
            STORE: [SellerMetrics(followers=1), BlockedOrUnavailable("captcha")],
            OTHER_STORE: [SellerMetrics(followers=7), SellerMetrics(followers=8)],
        }
    )
    coordinator = make_coordinator(seller=seller)
    await coordinator.track(EntityKind.COMPETITOR, STORE)
    await coordinator.track(EntityKind.COMPETITOR, OTHER_STORE)

    outcomes = await coordinator.refresh_all(EntityKind.COMPETITOR)

    assert [(o.identity, o.ok) for o in outcomes] == [(STORE, False), (OTHER_STORE, True)]
    assert outcomes[0].error_type == "BlockedOrUnavailable"
    assert outcomes[1].entity.current_snapshot.followers == 8

    with coordinator.db.session() as session:
        job = session.query(ScrapeJob).one()
        assert job.agent_name == "refresh_competitor"
        assert job.status == "partial"
        assert job.entities_refreshed == 1
        assert job.entities_failed == 1


@pytest.mark.asyncio
async def test_refresh_all_does_not_restore_entity_deleted_mid_batch():
    seller = FakeScraper(
        {
            STORE: [SellerMetrics(followers=1), SellerMetrics(followers=2)],
            OTHER_STORE: [SellerMetrics(followers=7), SellerMetrics(followers=8)],
        }
    )
    coordinator = make_coordinator(seller=seller)
    await coordinator.track(EntityKind.COMPETITOR, STORE)
    other = await coordinator.track(EntityKind.COMPETITOR, OTHER_STORE)

    scrape = seller.scrape

    async def delete_other_while_scraping(url, cancel=None):
        if url == STORE:
            coordinator.db.delete(EntityKind.COMPETITOR, other.id)
        return await scrape(url, cancel)

    seller.scrape = delete_other_while_scraping

    outcomes = await coordinator.refresh_all(EntityKind.COMPETITOR)

    assert [(o.identity, o.ok) for o in outcomes] == [(STORE, True), (OTHER_STORE, False)]
    assert outcomes[1].error_type == "EntityNotFound"
    assert coordinator.db.find_by_identity(EntityKind.COMPETITOR, OTHER_STORE) is None
    assert seller.calls.count(OTHER_STORE) == 1


@pytest.mark.asyncio
async def test_refresh_all_covers_every_kind():
    seller = FakeScraper({STORE: [SellerMetrics(followers=1), SellerMetrics(followers=2)]})
    product = FakeScraper({ITEM: [ProductMetrics(price=1.0), ProductMetrics(price=2.0)]})
    coordinator = make_coordinator(seller=seller, product=product)
    await coordinator.track(EntityKind.COMPETITOR, STORE)
    await coordinator.track(EntityKind.PRODUCT, ITEM)

    outcomes = await coordinator.refresh_all()

    assert [o.kind for o in outcomes] == [EntityKind.COMPETITOR, EntityKind.PRODUCT]
    assert all(o.ok for o in outcomes)


@pytest.mark.asyncio
async def test_ensure_tracked_skips_known_stores():
    seller = FakeScraper({STORE: SellerMetrics(followers=1), OTHER_STORE: SellerMetrics(followers=2)})
    coordinator = make_coordinator(seller=seller)
    await coordinator.track(EntityKind.COMPETITOR, STORE)

    outcomes = await coordinator.ensure_tracked(EntityKind.COMPETITOR, [STORE, OTHER_STORE])

    assert [o.identity for o in outcomes] == [OTHER_STORE]
    assert seller.calls == [STORE, OTHER_STORE]


@pytest.mark.asyncio
async def test_explore_funnel_persists_only_genuine_runs():
    genuine = normalize_funnel({"steps": [{"url": "https://shop.test"}]}, "acme", "blender")
    coordinator = make_coordinator(funnel_agent=FakeFunnelAgent(genuine))

    assert (await coordinator.explore_funnel("acme", "blender")).id == genuine.id
    assert [run.id for run in coordinator.db.list_funnel_runs()] == [genuine.id]

    coordinator.funnel_agent = FakeFunnelAgent(fallback_run("acme", "blender", "nothing"))
    run = await coordinator.explore_funnel("acme", "blender")
    assert run.fallback is True
    assert len(coordinator.db.list_funnel_runs()) == 1


@pytest.mark.asyncio
async def test_explore_funnel_without_agent():
    coordinator = make_coordinator()

    with pytest.raises(AgentNotConfigured):
        await coordinator.explore_funnel("acme", "blender")


@pytest.mark.asyncio
async def test_keyed_lock_releases_entries():
    locks = KeyedLock()

    async with locks.hold("a"):
        assert "a" in locks
    assert "a" not in locks
    assert len(locks) == 0


def test_build_coordinator_selects_scrapers_by_mode():
    db = Database("sqlite:///:memory:")

    agent = build_coordinator(Config(scraping={"mode": "agent"}, agent={"debug": True}), db=db)
    assert isinstance(agent.scrapers[EntityKind.COMPETITOR], AgentSellerScraper)
    assert isinstance(agent.scrapers[EntityKind.PRODUCT], AgentProductScraper)
    assert agent.funnel_agent.client.dns_cache is not None

    direct = build_coordinator(Config(scraping={"mode": "Direct", "headless": False}), db=db)
    assert isinstance(direct.scrapers[EntityKind.COMPETITOR], EbaySellerAgent)
    assert direct.scrapers[EntityKind.PRODUCT].headless is False
    assert direct.funnel_agent.client.dns_cache is None

    with pytest.raises(ValueError):
        build_coordinator(Config(scraping={"mode": "carrier-pigeon"}), db=db)
