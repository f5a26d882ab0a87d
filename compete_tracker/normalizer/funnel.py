"""Ad-funnel run schema and normalization of agent answers into it."""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..utils.parsing import coerce_number
from .extraction import PayloadExtractor


class StepType(str, Enum):
    AD = "ad"
    LANDING = "landing"
    PRODUCT = "product"
    CART = "cart"
    CHECKOUT = "checkout"
    UPSELL = "upsell"
    OTHER = "other"


# Entry and terminal kinds used when the agent leaves a step untagged
ENTRY_STEP = StepType.AD
TERMINAL_STEP = StepType.CHECKOUT


class FunnelStep(BaseModel):
    """One page visited while following an ad."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: StepType
    url: str = ""
    title: Optional[str] = None
    notes: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    screenshot_url: Optional[str] = Field(default=None, alias="screenshotUrl")
    order: int


class FunnelRun(BaseModel):
    """Ordered steps from sponsored ad to checkout, with the final price seen."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    competitor: str
    query: str
    created_at: str = Field(alias="createdAt")
    steps: List[FunnelStep] = Field(default_factory=list)
    final_price: Optional[float] = Field(default=None, alias="finalPrice")
    currency: Optional[str] = None

    # Set when no usable agent output was found and sample steps were substituted
    fallback: bool = False
    fallback_reason: Optional[str] = Field(default=None, alias="fallbackReason")


funnel_extractor = PayloadExtractor("steps", list)


def infer_step_type(index: int, total: int) -> StepType:
    """Guess a step's kind from its position in the run.

    Last step is treated as checkout (so a lone step is terminal), first as
    the ad, everything in between as other. Positional guessing only; swap
    this out once agents tag every step.
    """
    if index == total - 1:
        return TERMINAL_STEP
    if index == 0:
        return ENTRY_STEP
    return StepType.OTHER


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _step_type(raw_type: Any, index: int, total: int) -> StepType:
    if isinstance(raw_type, StepType):
        return raw_type
    if isinstance(raw_type, str) and raw_type.strip():
        try:
            return StepType(raw_type.strip().lower())
        except ValueError:
            return StepType.OTHER
    return infer_step_type(index, total)


def coerce_steps(raw_steps: List[Any], run_currency: Optional[str]) -> List[FunnelStep]:
    """Coerce loosely typed step dicts into ``FunnelStep`` objects."""
    items = [item for item in raw_steps if isinstance(item, dict)]
    total = len(items)
    steps = []

    for index, item in enumerate(items):
        steps.append(
            FunnelStep(
                id=_text(item.get("id")) or f"step_{index + 1}",
                type=_step_type(item.get("type"), index, total),
                url=_text(item.get("url")) or "",
                title=_text(item.get("title")),
                notes=_text(item.get("notes")),
                price=coerce_number(item.get("price")),
                currency=_text(item.get("currency")) or run_currency,
                screenshot_url=_text(item.get("screenshotUrl") or item.get("screenshot_url")),
                order=index + 1,
            )
        )

    return steps


def new_run_id() -> str:
    return f"run_{int(time.time() * 1000)}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def fallback_run(competitor: str, query: str, reason: str) -> FunnelRun:
    """Clearly labelled sample run returned when the agent output is unusable."""
    return FunnelRun(
        id=new_run_id(),
        competitor=competitor,
        query=query,
        created_at=utc_now_iso(),
        currency="USD",
        final_price=59.99,
        fallback=True,
        fallback_reason=reason,
        steps=[
            FunnelStep(
                id="s1",
                type=StepType.AD,
                url="https://ads.example.com/click?campaign=sample&utm_source=google",
                title="[Sample] Sponsored ad",
                notes="Placeholder step: agent returned no usable funnel",
                order=1,
            ),
            FunnelStep(
                id="s2",
                type=StepType.LANDING,
                url="https://shop.example.com/landing?ref=ad",
                title="[Sample] Landing page",
                notes="Placeholder step",
                order=2,
            ),
            FunnelStep(
                id="s3",
                type=StepType.PRODUCT,
                url="https://shop.example.com/products/sample",
                title="[Sample] Product page",
                notes="Placeholder step",
                price=69.99,
                currency="USD",
                order=3,
            ),
            FunnelStep(
                id="s4",
                type=StepType.CHECKOUT,
                url="https://shop.example.com/checkout",
                title="[Sample] Checkout",
                notes="Placeholder step",
                price=59.99,
                currency="USD",
                order=4,
            ),
        ],
    )


def normalize_funnel(raw: Any, competitor: str, query: str) -> FunnelRun:
    """Turn any agent answer into a ``FunnelRun``.

    Never raises on malformed content: when nothing usable can be found
    (including a parsed payload with zero steps) a fallback run is returned
    with ``fallback=True``.
    """
    payload = funnel_extractor.extract(raw)

    if payload is None:
        logger.warning(f"No funnel payload found in agent output for '{query}'")
        return fallback_run(competitor, query, "Agent output contained no parseable funnel JSON")

    run_currency = _text(payload.get("currency"))
    steps = coerce_steps(payload["steps"], run_currency)

    if not steps:
        logger.warning(f"Agent returned an empty funnel for '{query}'")
        return fallback_run(competitor, query, "Agent returned a funnel with no steps")

    return FunnelRun(
        id=_text(payload.get("id")) or new_run_id(),
        competitor=_text(payload.get("competitor")) or competitor,
        query=_text(payload.get("query")) or query,
        created_at=_text(payload.get("createdAt")) or utc_now_iso(),
        steps=steps,
        final_price=coerce_number(payload.get("finalPrice")),
        currency=run_currency,
    )
