"""eBay storefront scraping agent."""

from typing import List, Optional

from loguru import logger

from ..history.models import EntityKind, ListedItem, SellerMetrics
from ..utils.parsing import coerce_int
from ..utils import stealth
from .base_agent import BaseAgent
from .task_client import CancelToken


def parse_seller_stats(
    store_url: str,
    stats: List[Optional[str]],
    items: List[dict],
    header: Optional[dict] = None,
) -> SellerMetrics:
    """Build seller metrics from the raw text pulled off a storefront.

    Args:
        store_url: Storefront URL that was scraped
        stats: Bold stat labels in page order: feedback, items sold, followers
        items: First listing cards as ``{"title", "link"}`` dicts
        header: Optional ``{"name", "logo", "overview"}`` from the store header

    Returns:
        Seller metrics; counts like ``"1.2K"`` are expanded
    """
    header = header or {}
    padded = list(stats) + [None] * (3 - len(stats))

    return SellerMetrics(
        store_url=store_url,
        seller_name=header.get("name"),
        seller_logo=header.get("logo"),
        overview=header.get("overview"),
        feedback=padded[0],
        items_sold=coerce_int(padded[1]),
        followers=coerce_int(padded[2]),
        first_10_items=[
            ListedItem(title=item.get("title"), link=item.get("link"))
            for item in items[:10]
        ],
    )


class EbaySellerAgent(BaseAgent):
    """Scrapes an eBay store page for seller-level metrics.

    Data available:
    - Positive feedback percentage
    - Items sold
    - Followers
    - Store name, logo and overview
    - First ten listings in the store grid
    """

    ALL_ITEMS_TAB = 'a[href*="Store-Items"]'
    STATS_SELECTOR = ".str-seller-card__store-stats-content .str-text-span.BOLD"
    ITEM_CARDS = ".str-items-grid .str-item-card"
    NAME_SELECTORS = [".str-seller-card__store-name h1", ".str-seller-card__store-name"]
    LOGO_SELECTORS = [".str-seller-card__store-logo img", ".str-header__logo img"]
    OVERVIEW_SELECTORS = [".str-about-description__seller-text", ".str-seller-card__about"]

    @property
    def kind(self) -> EntityKind:
        return EntityKind.COMPETITOR

    async def scrape(self, url: str, cancel: Optional[CancelToken] = None) -> SellerMetrics:
        """Scrape storefront stats.

        Args:
            url: eBay store URL

        Returns:
            Seller metrics

        Raises:
            BlockedOrUnavailable: eBay served a bot check
        """
        self.check_cancelled(cancel)
        logger.info(f"Loading store: {url}")

        async with self.open_page() as page:
            await self.navigate(page, url, wait_until="networkidle")

            all_items = await page.query_selector(self.ALL_ITEMS_TAB)
            if all_items:
                await all_items.click()
                await page.wait_for_load_state("networkidle")
                logger.debug("Navigated to All Items tab")

            await stealth.scroll_through(page)

            await page.wait_for_selector(self.STATS_SELECTOR, timeout=8000)

            stats = await page.eval_on_selector_all(
                self.STATS_SELECTOR,
                "els => els.map(e => (e.textContent || '').trim() || null)",
            )
            items = await page.eval_on_selector_all(
                self.ITEM_CARDS,
                """cards => cards.slice(0, 10).map(card => {
                    const link = card.querySelector('a');
                    return {
                        title: link ? (link.textContent || '').trim() || null : null,
                        link: link ? link.href : null,
                    };
                })""",
            )
            header = {
                "name": await self.first_text(page, self.NAME_SELECTORS),
                "logo": await self.first_attribute(page, self.LOGO_SELECTORS, "src"),
                "overview": await self.first_text(page, self.OVERVIEW_SELECTORS),
            }

            metrics = parse_seller_stats(url, stats, items, header)
            logger.info(
                f"Scraped store {url}: feedback={metrics.feedback} "
                f"sold={metrics.items_sold} followers={metrics.followers}"
            )
            return metrics
