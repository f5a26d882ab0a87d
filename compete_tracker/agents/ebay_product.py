"""eBay listing scraping agent."""

import re
from typing import Optional

from loguru import logger

from ..history.models import EntityKind, ProductMetrics
from ..utils.parsing import coerce_int, coerce_number, parse_compact, parse_price_currency
from ..utils import stealth
from .base_agent import BaseAgent
from .task_client import CancelToken


def item_id_from_url(url: str) -> Optional[str]:
    match = re.search(r"/itm/(?:[^/]+/)?(\d+)", url)
    return match.group(1) if match else None


def parse_shipping(text: Optional[str]) -> Optional[float]:
    if not text:
        return None
    if "free" in text.lower():
        return 0.0
    return parse_compact(text)


def parse_product_fields(url: str, raw: dict) -> ProductMetrics:
    """Build product metrics from the raw strings pulled off a listing page."""
    price, currency = parse_price_currency(raw.get("price"))
    original_price, _ = parse_price_currency(raw.get("original_price"))
    images = [raw["image"]] if raw.get("image") else []

    return ProductMetrics(
        product_url=url,
        title=raw.get("title"),
        item_id=item_id_from_url(url),
        price=price,
        original_price=original_price,
        currency=currency,
        shipping_cost=parse_shipping(raw.get("shipping")),
        condition=raw.get("condition"),
        quantity_available=coerce_int(raw.get("quantity")),
        total_sold_listing=coerce_int(raw.get("sold")),
        watchers_count=coerce_int(raw.get("watchers")),
        rating=coerce_number(raw.get("rating")),
        last_24_hours=raw.get("last_24_hours"),
        category=raw.get("category"),
        images=images,
    )


class EbayProductAgent(BaseAgent):
    """Scrapes an eBay listing for price, stock and demand signals.

    Data available:
    - Price and currency, original price when discounted
    - Shipping cost and condition
    - Quantity available, total sold, watchers
    - Recent activity banner ("12 sold in last 24 hours")
    """

    POPUP_SELECTORS = [
        'button:has-text("Continue")',
        'button:has-text("No Thanks")',
        'button[aria-label="Close"]',
        ".overlay-close",
    ]

    FIELDS = {
        "title": ["h1[itemprop='name']", 'div[data-testid="x-item-title"] h1 span'],
        "price": ['span[itemprop="price"]', 'div[data-testid="x-price-primary"] span'],
        "original_price": ['div[data-testid="x-price-section"] .ux-textspans--STRIKETHROUGH'],
        "shipping": [
            "span[data-testid='shipping-cost']",
            "div.ux-labels-values--shipping span.ux-textspans--BOLD",
        ],
        "condition": [
            'div[data-testid="x-item-condition"] div.x-item-condition-text span.ux-textspans',
            'div[itemprop="itemCondition"]',
        ],
        "quantity": [
            'span[itemprop="inventoryLevel"]',
            'div[data-testid="x-quantity"] span.ux-textspans--SECONDARY',
        ],
        "sold": [
            'span[itemprop="soldQuantity"]',
            'div[data-testid="x-quantity"] span.ux-textspans--BOLD',
        ],
        "watchers": ['div[data-testid="x-watch-count"] span', ".d-urgency-signal span"],
        "last_24_hours": ['div[data-testid="x-ebay-signal"] span'],
        "category": ["nav.breadcrumbs li:last-child", ".seo-breadcrumb-text:last-child span"],
    }

    IMAGE_SELECTORS = ["img[itemprop='image']", "div.ux-image-carousel-container img"]

    @property
    def kind(self) -> EntityKind:
        return EntityKind.PRODUCT

    async def scrape(self, url: str, cancel: Optional[CancelToken] = None) -> ProductMetrics:
        """Scrape one listing.

        Args:
            url: eBay item URL

        Returns:
            Product metrics

        Raises:
            BlockedOrUnavailable: eBay served a bot check
        """
        self.check_cancelled(cancel)
        logger.info(f"Loading product URL: {url}")

        async with self.open_page() as page:
            await self.navigate(page, url)

            await stealth.scroll_through(page, total=3000, step=600)
            await self.close_popups(page, self.POPUP_SELECTORS)

            raw = {}
            for field, selectors in self.FIELDS.items():
                raw[field] = await self.first_text(page, selectors)
            raw["image"] = await self.first_attribute(page, self.IMAGE_SELECTORS, "src")

            metrics = parse_product_fields(url, raw)
            logger.info(
                f"Scraped product {url}: price={metrics.price} {metrics.currency} "
                f"qty={metrics.quantity_available} sold={metrics.total_sold_listing}"
            )
            return metrics
