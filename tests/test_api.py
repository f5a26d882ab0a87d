import asyncio

import pytest
from fastapi.testclient import TestClient

from compete_tracker.agents.task_client import CancelToken
from compete_tracker.api.main import create_app, watch_disconnect
from compete_tracker.errors import AgentTimeoutError, BlockedOrUnavailable, ProviderError
from compete_tracker.history import EntityKind, ProductMetrics, SellerMetrics
from compete_tracker.normalizer.funnel import normalize_funnel
from compete_tracker.orchestrator import RefreshCoordinator
from compete_tracker.storage import Database

STORE = "https://www.ebay.ca/str/acme"
SEED_STORE = "https://www.ebay.ca/str/seed"
ITEM = "https://www.ebay.ca/itm/123"


class StubScraper:
    """Serves a fixed answer per URL; exception instances are raised."""

    def __init__(self, results):
        self.results = results

    async def scrape(self, url, cancel=None):
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result


class StubFunnelAgent:
    async def explore(self, competitor, query, cancel=None):
        raw = (
            "Done! ```json\n"
            '{"steps": [{"type": "ad", "url": "https://ads.test"},'
            ' {"type": "checkout", "url": "https://shop.test/checkout", "price": "49.99",'
            ' "screenshotUrl": "https://img.test/c.png"}],'
            ' "finalPrice": 49.99, "currency": "USD"}\n```'
        )
        return normalize_funnel(raw, competitor, query)


@pytest.fixture
def seller_results():
    return {
        STORE: SellerMetrics(seller_name="Acme", followers=120, feedback="99.1% positive feedback"),
        SEED_STORE: SellerMetrics(seller_name="Seed", followers=3),
    }


@pytest.fixture
def coordinator(seller_results):
    scrapers = {
        EntityKind.COMPETITOR: StubScraper(seller_results),
        EntityKind.PRODUCT: StubScraper({ITEM: ProductMetrics(title="Lamp", price=19.99, currency="CAD")}),
    }
    return RefreshCoordinator(Database("sqlite:///:memory:"), scrapers, funnel_agent=StubFunnelAgent())


@pytest.fixture
def client(coordinator):
    return TestClient(create_app(coordinator=coordinator, seed_store_urls=[SEED_STORE]))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_competitor_lifecycle(client):
    created = client.post("/competitors", json={"storeUrl": STORE})
    assert created.status_code == 201
    competitor = created.json()
    assert competitor["name"] == "Acme"
    assert competitor["avg_rating"] == 99.1
    assert competitor["current_snapshot"]["followers"] == 120
    assert competitor["past_snapshots"] == []

    listed = client.get("/competitors").json()
    assert listed["total"] == 1

    refreshed = client.patch("/competitors/refresh", json={"id": competitor["id"]})
    assert refreshed.status_code == 200
    assert len(refreshed.json()["past_snapshots"]) == 1

    assert client.get(f"/competitors/{competitor['id']}").status_code == 200
    assert client.delete(f"/competitors/{competitor['id']}").json() == {"deleted": True, "id": competitor["id"]}
    assert client.get(f"/competitors/{competitor['id']}").status_code == 404
    assert client.delete(f"/competitors/{competitor['id']}").status_code == 404


def test_refresh_unknown_or_unnamed_competitor(client):
    assert client.patch("/competitors/refresh", json={"storeUrl": STORE}).status_code == 404
    assert client.patch("/competitors/refresh", json={"id": 99}).status_code == 404

    response = client.patch("/competitors/refresh", json={})
    assert response.status_code == 400
    assert response.json()["type"] == "MissingIdentity"


def test_invalid_body_is_a_bad_request(client):
    response = client.post("/competitors", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_products_filter_by_seller(client):
    created = client.post("/products", json={"productUrl": ITEM, "competitor": "Acme"})
    assert created.status_code == 201
    assert created.json()["stock"] is None
    assert created.json()["currency"] == "CAD"

    assert client.get("/products", params={"seller": "Acme"}).json()["total"] == 1
    assert client.get("/products", params={"seller": "Other"}).json()["total"] == 0
    assert client.get("/products").json()["total"] == 1

    product_id = created.json()["id"]
    refreshed = client.patch("/products/refresh", json={"productUrl": ITEM})
    assert refreshed.json()["past_snapshots"][0]["price"] == 19.99
    assert client.delete(f"/products/{product_id}").status_code == 200
    assert client.get(f"/products/{product_id}").status_code == 404


@pytest.mark.parametrize(
    "error, status",
    [
        (BlockedOrUnavailable("captcha"), 503),
        (ProviderError("Agent task failed", status_code=500, body="boom"), 502),
        (AgentTimeoutError("task_1", 12.0, 4), 504),
    ],
)
def test_scrape_errors_map_to_status(client, seller_results, error, status):
    seller_results[STORE] = error

    response = client.post("/competitors", json={"storeUrl": STORE})

    assert response.status_code == status
    assert response.json()["type"] == type(error).__name__
    assert client.get("/competitors").json()["total"] == 0


def test_provider_error_body_is_exposed(client, seller_results):
    seller_results[STORE] = ProviderError("Agent task creation failed", status_code=401, body="bad key")

    body = client.post("/competitors", json={"storeUrl": STORE}).json()

    assert body["status"] == 401
    assert body["body"] == "bad key"


def test_ad_funnel_is_stored_and_listed(client):
    response = client.post("/ad-funnels", json={"competitor": "acme", "query": "blender"})

    assert response.status_code == 200
    run = response.json()
    assert run["fallback"] is False
    assert run["finalPrice"] == 49.99
    assert run["steps"][1]["screenshotUrl"] == "https://img.test/c.png"
    assert run["steps"][1]["price"] == 49.99

    runs = client.get("/ad-funnels").json()["runs"]
    assert [r["id"] for r in runs] == [run["id"]]


def test_ad_funnel_requires_query(client):
    assert client.post("/ad-funnels", json={"competitor": "acme", "query": ""}).status_code == 400


def test_ad_funnel_without_agent_is_server_error(coordinator):
    coordinator.funnel_agent = None
    client = TestClient(create_app(coordinator=coordinator, seed_store_urls=[]))

    response = client.post("/ad-funnels", json={"competitor": "acme", "query": "blender"})

    assert response.status_code == 500
    assert response.json()["type"] == "AgentNotConfigured"


def test_cron_update_refreshes_and_tracks_seeds(client, seller_results):
    client.post("/competitors", json={"storeUrl": STORE})
    seller_results[STORE] = BlockedOrUnavailable("captcha")

    body = client.post("/cron/update").json()

    assert body["success"] is False
    assert body["refreshed"] == 1
    assert body["failed"] == 1
    assert [(r["identity"], r["ok"]) for r in body["results"]] == [(STORE, False), (SEED_STORE, True)]
    assert client.get("/competitors").json()["total"] == 2


def test_cron_update_skips_seeds_already_tracked(client):
    client.post("/competitors", json={"storeUrl": STORE})
    client.post("/cron/update")

    body = client.post("/cron/update").json()

    assert body["success"] is True
    assert [(r["identity"], r["ok"]) for r in body["results"]] == [(STORE, True), (SEED_STORE, True)]
    assert client.get("/competitors").json()["total"] == 2


class WatcherSpyFunnelAgent(StubFunnelAgent):
    def __init__(self):
        self.watchers = []

    async def explore(self, competitor, query, cancel=None):
        self.watchers = [
            t for t in asyncio.all_tasks() if getattr(t.get_coro(), "__name__", None) == "watch_disconnect"
        ]
        return await super().explore(competitor, query, cancel)


def test_ad_funnel_watcher_is_finished_before_response(coordinator):
    agent = WatcherSpyFunnelAgent()
    coordinator.funnel_agent = agent
    client = TestClient(create_app(coordinator=coordinator, seed_store_urls=[]))

    response = client.post("/ad-funnels", json={"competitor": "acme", "query": "blender"})

    assert response.status_code == 200
    assert len(agent.watchers) == 1
    assert agent.watchers[0].done()
    assert agent.watchers[0].cancelled()


class DisconnectingRequest:
    def __init__(self, after):
        self.after = after
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks >= self.after


@pytest.mark.asyncio
async def test_watch_disconnect_cancels_token():
    request = DisconnectingRequest(after=2)
    cancel = CancelToken()

    await watch_disconnect(request, cancel, interval=0)

    assert cancel.cancelled
    assert request.checks == 2
