"""Seller and product scrapers backed by the remote browsing agent."""

import json
from typing import Optional

from loguru import logger

from ..errors import EmptyScrapeError
from ..history.models import EntityKind, ProductMetrics, SellerMetrics
from ..normalizer.metrics import normalize_product_metrics, normalize_seller_metrics
from .task_client import AgentTaskClient, CancelToken, TaskSpec

SELLER_FIELDS = {
    "seller_name": "string or null",
    "seller_logo": "image URL or null",
    "overview": "string or null",
    "feedback": "positive feedback label, e.g. \"99.8% positive feedback\"",
    "items_sold": "number or null",
    "followers": "number or null",
    "first_10_items": [{"title": "string", "link": "URL"}],
}

PRODUCT_FIELDS = {
    "title": "string or null",
    "price": "number or null",
    "original_price": "number or null",
    "currency": "ISO code or null",
    "shipping_cost": "number or null (0 when free)",
    "condition": "string or null",
    "quantity_available": "number or null",
    "total_sold_listing": "number or null",
    "watchers_count": "number or null",
    "rating": "number or null",
    "last_24_hours": "recent activity banner text or null",
    "category": "string or null",
    "images": ["image URL"],
}


def build_metrics_prompt(url: str, subject: str, fields: dict) -> str:
    schema = json.dumps({"metrics": fields}, indent=2)
    return f"""You are an autonomous browsing agent. Your task:

1. Open {url} in a desktop browser.
2. Close any cookie or sign-in popups.
3. Read the {subject} details listed below from the page. Scroll if needed.

If you are blocked (CAPTCHA, bot check, region restriction), stop and say so.
Do not invent values; use null for anything not visible.

Return ONLY a JSON object with this structure (no commentary, no markdown):

{schema}
"""


class AgentSellerScraper:
    """Seller metrics via a remote agent task instead of a local browser."""

    kind = EntityKind.COMPETITOR

    def __init__(self, client: AgentTaskClient):
        self.client = client

    async def scrape(self, url: str, cancel: Optional[CancelToken] = None) -> SellerMetrics:
        spec = TaskSpec(
            prompt=build_metrics_prompt(url, "seller storefront", SELLER_FIELDS),
            result_key="metrics",
        )
        logger.info(f"Requesting seller metrics from agent for {url}")
        metrics = await self.client.run(spec, normalize_seller_metrics, cancel)
        if metrics is None:
            raise EmptyScrapeError(f"Agent returned no usable seller metrics for {url}")
        return metrics.model_copy(update={"store_url": metrics.store_url or url})


class AgentProductScraper:
    """Product metrics via a remote agent task instead of a local browser."""

    kind = EntityKind.PRODUCT

    def __init__(self, client: AgentTaskClient):
        self.client = client

    async def scrape(self, url: str, cancel: Optional[CancelToken] = None) -> ProductMetrics:
        spec = TaskSpec(
            prompt=build_metrics_prompt(url, "product listing", PRODUCT_FIELDS),
            result_key="metrics",
        )
        logger.info(f"Requesting product metrics from agent for {url}")
        metrics = await self.client.run(spec, normalize_product_metrics, cancel)
        if metrics is None:
            raise EmptyScrapeError(f"Agent returned no usable product metrics for {url}")
        return metrics.model_copy(update={"product_url": metrics.product_url or url})
