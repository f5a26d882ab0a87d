"""Base class for direct (local browser) scraping agents"""

import random
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Optional

from loguru import logger
from playwright.async_api import Page, async_playwright

from ..errors import BlockedOrUnavailable, TaskCancelled
from ..history.models import EntityKind, ScrapedMetrics
from ..utils import stealth
from .task_client import CancelToken


class BaseAgent(ABC):
    """Abstract base class for scrapers that drive a local Playwright browser"""

    def __init__(self, config: dict):
        self.config = config
        self.headless = config.get("headless", True)
        self.timeout_ms = int(config.get("timeout", 30) * 1000)
        self.use_stealth = config.get("use_stealth", True)
        self.block_images = config.get("block_images", False)

    @property
    @abstractmethod
    def kind(self) -> EntityKind:
        """Entity kind this agent scrapes"""
        pass

    @abstractmethod
    async def scrape(self, url: str, cancel: Optional[CancelToken] = None) -> ScrapedMetrics:
        """Scrape one entity page into a metric set"""
        pass

    LAUNCH_ARGS = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-infobars",
    ]

    @asynccontextmanager
    async def open_page(self):
        """
        Launch a fresh browser with a random profile and yield a hardened page.

        Browser, context and Playwright are torn down on exit, including when
        the scrape raises.
        """
        profile = stealth.BrowserProfile.pick()

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless, args=self.LAUNCH_ARGS)
            try:
                context = await browser.new_context(
                    viewport=profile.viewport,
                    user_agent=profile.user_agent,
                    timezone_id=profile.timezone,
                    locale=profile.locale,
                )
                logger.debug(f"Browser profile: {profile.user_agent[:50]}... | {profile.width}x{profile.height}")

                page = await context.new_page()
                page.set_default_timeout(self.timeout_ms)
                await stealth.harden_page(page, hide_automation=self.use_stealth, block_images=self.block_images)

                if random.random() < 0.3:
                    await stealth.wander_mouse(page, moves=random.randint(1, 2))

                yield page
            finally:
                await browser.close()

    async def navigate(self, page: Page, url: str, wait_until: str = "domcontentloaded") -> None:
        """
        Single navigation attempt with block detection.

        Raises:
            BlockedOrUnavailable: the page is a bot check or CAPTCHA
        """
        await page.goto(url, wait_until=wait_until, timeout=self.timeout_ms)

        reason = await stealth.detect_block(page)
        if reason:
            await stealth.capture_block_page(page)
            raise BlockedOrUnavailable(reason, url=url)

        await stealth.pause(500, 1500)

    async def close_popups(self, page: Page, selectors: list[str]) -> None:
        """Dismiss overlays that hide the data we need"""
        for selector in selectors:
            element = await page.query_selector(selector)
            if element:
                logger.debug(f"Closing popup: {selector}")
                await element.click(force=True)
                await stealth.pause(100, 300)

    async def first_text(self, page: Page, selectors: list[str]):
        """Text of the first selector that matches, stripped, or None"""
        for selector in selectors:
            element = await page.query_selector(selector)
            if element:
                text = (await element.text_content() or "").strip()
                if text:
                    return text
        return None

    async def first_attribute(self, page: Page, selectors: list[str], attribute: str):
        """Attribute of the first selector that matches, or None"""
        for selector in selectors:
            element = await page.query_selector(selector)
            if element:
                value = await element.get_attribute(attribute)
                if value:
                    return value
        return None

    @staticmethod
    def check_cancelled(cancel: Optional[CancelToken]) -> None:
        """Stop before launching a browser if the caller already gave up"""
        if cancel is not None and cancel.cancelled:
            raise TaskCancelled("Client aborted")
