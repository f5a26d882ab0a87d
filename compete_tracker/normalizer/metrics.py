"""Normalization of agent answers into seller/product metric sets."""

from typing import Any, Optional

from loguru import logger

from ..history.models import ListedItem, ProductMetrics, SellerMetrics
from ..utils.parsing import coerce_int, coerce_number
from .extraction import PayloadExtractor

metrics_extractor = PayloadExtractor("metrics", dict)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _listed_items(value: Any) -> Optional[list]:
    if not isinstance(value, list):
        return None
    items = []
    for entry in value[:10]:
        if isinstance(entry, dict):
            items.append(ListedItem(title=_text(entry.get("title")), link=_text(entry.get("link"))))
    return items


def _images(value: Any) -> Optional[list]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return None
    return [image for image in (_text(v) for v in value) if image]


def seller_metrics_from(data: dict) -> SellerMetrics:
    return SellerMetrics(
        store_url=_text(data.get("store_url")),
        seller_name=_text(data.get("seller_name") or data.get("name")),
        seller_logo=_text(data.get("seller_logo") or data.get("logo")),
        overview=_text(data.get("overview") or data.get("description")),
        feedback=_text(data.get("feedback")),
        items_sold=coerce_int(data.get("items_sold")),
        followers=coerce_int(data.get("followers")),
        first_10_items=_listed_items(data.get("first_10_items")),
    )


def product_metrics_from(data: dict) -> ProductMetrics:
    return ProductMetrics(
        product_url=_text(data.get("product_url")),
        title=_text(data.get("title") or data.get("name")),
        item_id=_text(data.get("item_id")),
        price=coerce_number(data.get("price")),
        original_price=coerce_number(data.get("original_price")),
        currency=_text(data.get("currency")),
        shipping_cost=coerce_number(data.get("shipping_cost")),
        condition=_text(data.get("condition")),
        quantity_available=coerce_int(data.get("quantity_available")),
        total_sold_listing=coerce_int(data.get("total_sold_listing")),
        watchers_count=coerce_int(data.get("watchers_count")),
        rating=coerce_number(data.get("rating")),
        last_24_hours=_text(data.get("last_24_hours")),
        category=_text(data.get("category")),
        description=_text(data.get("description")),
        images=_images(data.get("images")),
    )


def normalize_seller_metrics(raw: Any) -> Optional[SellerMetrics]:
    """Seller metrics from an agent answer, or None when nothing usable was found."""
    payload = metrics_extractor.extract(raw)
    if payload is None:
        logger.warning("No seller metrics found in agent output")
        return None

    metrics = seller_metrics_from(payload["metrics"])
    return metrics if metrics.has_metrics() else None


def normalize_product_metrics(raw: Any) -> Optional[ProductMetrics]:
    """Product metrics from an agent answer, or None when nothing usable was found."""
    payload = metrics_extractor.extract(raw)
    if payload is None:
        logger.warning("No product metrics found in agent output")
        return None

    metrics = product_metrics_from(payload["metrics"])
    return metrics if metrics.has_metrics() else None
