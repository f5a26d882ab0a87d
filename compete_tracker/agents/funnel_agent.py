"""Ad-funnel exploration through the remote browsing agent."""

from functools import partial
from typing import Optional

from loguru import logger

from ..normalizer.funnel import FunnelRun, normalize_funnel
from .task_client import AgentTaskClient, CancelToken, TaskSpec


def build_funnel_prompt(competitor: str, query: str) -> str:
    return f"""You are an autonomous browsing agent. Your task:

1. Open Google in a desktop browser.
2. Search for the query: "{query}".
3. Find and click the top sponsored (paid) ad that is related to the competitor "{competitor}".
4. From that ad, follow the user funnel:
   - Landing page
   - Product page (if relevant)
   - Add to cart (if available)
   - Checkout page (until the final price is visible, but do NOT actually complete payment).

Navigation rules:
- Do NOT use the browser back button or any equivalent of "go back".
- If you land on an irrelevant page, navigate forward with the page's own links,
  a new URL or a new search.
- Never intentionally close the page or browser window.

At each major step (ad, landing, product, cart, checkout) record:
- URL
- Step type: "ad" | "landing" | "product" | "cart" | "checkout" | "other"
- Title (page title or main heading)
- Notes (key offer, discount, or observations)
- Price and currency, if clearly visible (otherwise null).

If you are blocked (e.g., CAPTCHA, region restriction) or cannot proceed further,
stop and still return the best JSON you can with the steps collected so far.

When finished, return ONLY a JSON object with this exact structure (no commentary, no markdown):

{{
  "steps": [
    {{
      "id": "string",
      "type": "ad" | "landing" | "product" | "cart" | "checkout" | "other",
      "url": "https://example.com",
      "title": "string or null",
      "notes": "string or null",
      "price": 123.45,
      "currency": "USD"
    }}
  ],
  "finalPrice": 123.45,
  "currency": "USD"
}}
"""


class FunnelAgent:
    """Follows a competitor's sponsored ad through to checkout."""

    def __init__(self, client: AgentTaskClient):
        self.client = client

    async def explore(
        self,
        competitor: str,
        query: str,
        cancel: Optional[CancelToken] = None,
    ) -> FunnelRun:
        """Run one funnel exploration.

        Returns a run with ``fallback=True`` when the agent finished without
        usable steps; transport, provider, timeout and cancellation errors
        propagate.
        """
        logger.info(f"Exploring ad funnel for {competitor!r} with query {query!r}")

        spec = TaskSpec(prompt=build_funnel_prompt(competitor, query), result_key="steps")
        normalize = partial(normalize_funnel, competitor=competitor, query=query)
        run = await self.client.run(spec, normalize, cancel)

        if run.fallback:
            logger.warning(f"Funnel run for {competitor!r} fell back to sample data: {run.fallback_reason}")
        else:
            logger.info(f"Funnel run for {competitor!r}: {len(run.steps)} steps, final price {run.final_price}")

        return run
