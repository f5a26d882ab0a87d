"""Tracked entities, snapshots and scraped metric sets."""

from datetime import datetime
from enum import Enum
from typing import ClassVar, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..utils.parsing import extract_rating, stock_status

# Most recent first; the oldest snapshot is dropped once the bound is exceeded
MAX_PAST_SNAPSHOTS = 7


class EntityKind(str, Enum):
    """Kinds of tracked entity."""

    COMPETITOR = "competitor"
    PRODUCT = "product"


class ListedItem(BaseModel):
    """A listing shown on a seller's storefront."""

    title: Optional[str] = None
    link: Optional[str] = None


# ============================================================================
# Snapshots (immutable)
# ============================================================================


class Snapshot(BaseModel):
    """Timestamped capture of an entity's metrics."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime


class SellerSnapshot(Snapshot):
    followers: Optional[int] = None
    items_sold: Optional[int] = None
    rating: Optional[float] = None
    feedback: Optional[str] = None


class ProductSnapshot(Snapshot):
    price: Optional[float] = None
    quantity_available: Optional[int] = None
    watchers_count: Optional[int] = None
    total_sold_listing: Optional[int] = None
    rating: Optional[float] = None
    last_24_hours: Optional[str] = None


# ============================================================================
# Scraped metric sets (what a scraper hands back)
# ============================================================================


class SellerMetrics(BaseModel):
    """Flat seller data from a storefront scrape."""

    store_url: Optional[str] = None
    seller_name: Optional[str] = None
    seller_logo: Optional[str] = None
    overview: Optional[str] = None
    feedback: Optional[str] = None
    items_sold: Optional[int] = None
    followers: Optional[int] = None
    first_10_items: Optional[List[ListedItem]] = None

    METRIC_FIELDS: ClassVar[tuple] = ("feedback", "items_sold", "followers")

    def has_metrics(self) -> bool:
        return any(getattr(self, name) is not None for name in self.METRIC_FIELDS)


class ProductMetrics(BaseModel):
    """Flat listing data from a product page scrape."""

    product_url: Optional[str] = None
    title: Optional[str] = None
    item_id: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: Optional[str] = None
    shipping_cost: Optional[float] = None
    condition: Optional[str] = None
    quantity_available: Optional[int] = None
    total_sold_listing: Optional[int] = None
    watchers_count: Optional[int] = None
    rating: Optional[float] = None
    last_24_hours: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None

    METRIC_FIELDS: ClassVar[tuple] = (
        "price",
        "quantity_available",
        "total_sold_listing",
        "watchers_count",
        "rating",
    )

    def has_metrics(self) -> bool:
        return any(getattr(self, name) is not None for name in self.METRIC_FIELDS)


ScrapedMetrics = Union[SellerMetrics, ProductMetrics]


# ============================================================================
# Tracked entities
# ============================================================================


class TrackedEntity(BaseModel):
    """Common shape of a competitor or product under observation."""

    model_config = ConfigDict(validate_assignment=True)

    kind: ClassVar[EntityKind]
    identity_field: ClassVar[str]

    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    last_checked: Optional[datetime] = None

    @property
    def identity(self) -> Optional[str]:
        value = getattr(self, self.identity_field)
        if isinstance(value, str):
            value = value.strip()
        return value or None


class Competitor(TrackedEntity):
    """A third-party seller storefront."""

    kind: ClassVar[EntityKind] = EntityKind.COMPETITOR
    identity_field: ClassVar[str] = "store_url"

    store_url: Optional[str] = None
    logo: Optional[str] = None
    feedback: Optional[str] = None
    avg_rating: Optional[float] = None
    followers: Optional[int] = None
    tracked_products: Optional[int] = None
    first_ten_items: List[ListedItem] = Field(default_factory=list)

    current_snapshot: Optional[SellerSnapshot] = None
    past_snapshots: List[SellerSnapshot] = Field(default_factory=list)

    def build_snapshot(self, metrics: SellerMetrics, now: datetime) -> SellerSnapshot:
        """Snapshot the scraped metrics, falling back to known values."""
        feedback = metrics.feedback if metrics.feedback is not None else self.feedback
        rating = extract_rating(feedback)
        return SellerSnapshot(
            followers=metrics.followers if metrics.followers is not None else self.followers,
            items_sold=(
                metrics.items_sold if metrics.items_sold is not None else self.tracked_products
            ),
            rating=rating if rating is not None else self.avg_rating,
            feedback=feedback,
            timestamp=now,
        )

    def fresh_attributes(self, metrics: SellerMetrics) -> dict:
        """Descriptive attributes carried by the scrape, keyed by field name."""
        return {
            "name": metrics.seller_name,
            "logo": metrics.seller_logo,
            "description": metrics.overview,
            "feedback": metrics.feedback,
            "avg_rating": extract_rating(metrics.feedback),
            "followers": metrics.followers,
            "tracked_products": metrics.items_sold,
            "first_ten_items": metrics.first_10_items or None,
        }


class TrackedProduct(TrackedEntity):
    """A single listing, optionally tied to the competitor selling it."""

    kind: ClassVar[EntityKind] = EntityKind.PRODUCT
    identity_field: ClassVar[str] = "product_url"

    product_url: Optional[str] = None
    competitor: Optional[str] = None
    item_id: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: Optional[str] = None
    shipping_cost: Optional[float] = None
    condition: Optional[str] = None
    quantity_available: Optional[int] = None
    total_sold_listing: Optional[int] = None
    watchers_count: Optional[int] = None
    stock: Optional[str] = None
    rating: Optional[float] = None
    category: Optional[str] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)

    current_snapshot: Optional[ProductSnapshot] = None
    past_snapshots: List[ProductSnapshot] = Field(default_factory=list)

    @property
    def is_discounted(self) -> bool:
        return bool(self.original_price and self.price and self.original_price > self.price)

    @property
    def discount_percent(self) -> Optional[int]:
        if not self.is_discounted:
            return None
        return round((self.original_price - self.price) / self.original_price * 100)

    def build_snapshot(self, metrics: ProductMetrics, now: datetime) -> ProductSnapshot:
        def pick(name):
            value = getattr(metrics, name)
            return value if value is not None else getattr(self, name)

        return ProductSnapshot(
            price=pick("price"),
            quantity_available=pick("quantity_available"),
            watchers_count=pick("watchers_count"),
            total_sold_listing=pick("total_sold_listing"),
            rating=pick("rating"),
            last_24_hours=metrics.last_24_hours,
            timestamp=now,
        )

    def fresh_attributes(self, metrics: ProductMetrics) -> dict:
        images = metrics.images or None
        return {
            "name": metrics.title,
            "item_id": metrics.item_id,
            "price": metrics.price,
            "original_price": metrics.original_price,
            "currency": metrics.currency,
            "shipping_cost": metrics.shipping_cost,
            "condition": metrics.condition,
            "quantity_available": metrics.quantity_available,
            "total_sold_listing": metrics.total_sold_listing,
            "watchers_count": metrics.watchers_count,
            "stock": (
                stock_status(metrics.quantity_available)
                if metrics.quantity_available is not None
                else None
            ),
            "rating": metrics.rating,
            "category": metrics.category,
            "description": metrics.description,
            "image": images[0] if images else None,
            "images": images,
        }


ENTITY_TYPES = {
    EntityKind.COMPETITOR: Competitor,
    EntityKind.PRODUCT: TrackedProduct,
}

METRIC_TYPES = {
    EntityKind.COMPETITOR: SellerMetrics,
    EntityKind.PRODUCT: ProductMetrics,
}
