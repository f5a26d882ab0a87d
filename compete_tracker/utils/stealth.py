"""
Browser hardening for direct storefront scraping.

eBay gates automated visitors behind "Pardon our interruption" splash
pages and CAPTCHAs. The helpers here give each scrape an ordinary looking
browser profile, pace interactions like a person would, and report when a
loaded page is a block page instead of storefront data.
"""

import asyncio
import random
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger
from playwright.async_api import Page, Route
from pydantic import BaseModel

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

SCREEN_SIZES = [(1920, 1080), (1536, 864), (1440, 900), (1400, 900)]

# Canadian storefronts are the primary target
TIMEZONES = ["America/Toronto", "America/Vancouver", "America/Edmonton", "America/Halifax"]

# Lowercased phrases that only show up on eBay / CDN interstitials
BLOCK_PHRASES = {
    "pardon our interruption": "eBay interruption page",
    "verify you are human": "human verification",
    "verify yourself": "human verification",
    "checking your browser": "browser check",
    "check your browser before accessing": "browser check",
    "unusual traffic": "unusual traffic notice",
    "access denied": "access denied",
}

CHALLENGE_URL_MARKERS = ("/splashui/challenge", "/splashui/captcha", "captcha")

CAPTCHA_SELECTORS = [
    "iframe[src*='captcha']",
    "iframe[src*='recaptcha']",
    ".g-recaptcha",
    "#captcha",
]

TRACKER_DOMAINS = (
    "doubleclick.net",
    "googlesyndication.com",
    "googletagmanager.com",
    "facebook.com/tr",
    "hotjar.com",
)

HIDE_AUTOMATION_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
    Object.defineProperty(navigator, 'languages', {get: () => ['en-CA', 'en']});
    window.chrome = {runtime: {}};
"""


class BrowserProfile(BaseModel):
    """Identity a single scrape presents to the storefront."""

    user_agent: str
    width: int
    height: int
    timezone: str
    locale: str = "en-CA"

    @property
    def viewport(self) -> dict:
        return {"width": self.width, "height": self.height}

    @classmethod
    def pick(cls) -> "BrowserProfile":
        width, height = random.choice(SCREEN_SIZES)
        return cls(
            user_agent=random.choice(USER_AGENTS),
            width=width,
            height=height,
            timezone=random.choice(TIMEZONES),
        )


async def harden_page(page: Page, hide_automation: bool = True, block_images: bool = False) -> None:
    """Mask automation flags and drop fonts, media and trackers.

    Images are kept unless ``block_images`` is set, since store logos and
    listing photos are scraped.
    """
    if hide_automation:
        await page.add_init_script(HIDE_AUTOMATION_SCRIPT)

    blocked_types = {"font", "media"}
    if block_images:
        blocked_types.add("image")

    async def handle_route(route: Route):
        request = route.request
        if request.resource_type in blocked_types or any(d in request.url for d in TRACKER_DOMAINS):
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", handle_route)
    logger.debug(f"Page hardened (automation hidden={hide_automation}, images blocked={block_images})")


async def pause(min_ms: int = 500, max_ms: int = 3000) -> None:
    """Sleep for a human-ish interval, most often near the middle of the range."""
    delay = random.triangular(min_ms, max_ms, (min_ms + max_ms) / 2)
    await asyncio.sleep(delay / 1000.0)


async def scroll_through(page: Page, total: int = 2000, step: int = 200) -> None:
    """Scroll down in increments so lazily loaded grids render."""
    for offset in range(0, total, step):
        await page.evaluate(f"window.scrollTo(0, {offset})")
        await asyncio.sleep(random.uniform(0.1, 0.3))


async def wander_mouse(page: Page, moves: int = 2) -> None:
    """Drift the pointer between a few random points."""
    viewport = page.viewport_size or {"width": 1400, "height": 900}
    x = random.randint(0, viewport["width"])
    y = random.randint(0, viewport["height"])

    for _ in range(moves):
        target_x = random.randint(0, viewport["width"])
        target_y = random.randint(0, viewport["height"])
        steps = random.randint(5, 10)
        for i in range(1, steps + 1):
            t = i / steps
            await page.mouse.move(
                x + (target_x - x) * t + random.uniform(-5, 5),
                y + (target_y - y) * t + random.uniform(-5, 5),
            )
            await asyncio.sleep(random.uniform(0.01, 0.03))
        x, y = target_x, target_y
        await pause(200, 500)


def block_reason(content: str, url: str = "") -> Optional[str]:
    """Why a loaded page looks like a block page, or None if it looks like data."""
    lowered = (content or "").lower()
    for phrase, reason in BLOCK_PHRASES.items():
        if phrase in lowered:
            return reason

    url_lower = (url or "").lower()
    if any(marker in url_lower for marker in CHALLENGE_URL_MARKERS):
        return "redirected to challenge page"

    return None


async def detect_block(page: Page) -> Optional[str]:
    """Inspect a live page for block text, challenge redirects and CAPTCHA widgets."""
    reason = block_reason(await page.content(), page.url)
    if reason is None:
        for selector in CAPTCHA_SELECTORS:
            if await page.query_selector(selector):
                reason = "CAPTCHA widget"
                break

    if reason:
        logger.warning(f"Block detected on {page.url}: {reason}")
    return reason


async def capture_block_page(page: Page, directory: str = "data/screenshots") -> Optional[str]:
    """Save a full-page screenshot of a block page; returns the path or None."""
    path = Path(directory) / f"blocked_{datetime.now().strftime('%Y%m%d_%H%M%S')}.png"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path), full_page=True)
    except Exception as e:
        logger.error(f"Failed to capture block page: {e}")
        return None

    logger.info(f"Block page screenshot saved: {path}")
    return str(path)
