"""Tracked entities and their snapshot history"""

from .models import (
    MAX_PAST_SNAPSHOTS,
    Competitor,
    EntityKind,
    ListedItem,
    ProductMetrics,
    ProductSnapshot,
    SellerMetrics,
    SellerSnapshot,
    TrackedEntity,
    TrackedProduct,
)
from .snapshots import rotate

__all__ = [
    "MAX_PAST_SNAPSHOTS",
    "Competitor",
    "EntityKind",
    "ListedItem",
    "ProductMetrics",
    "ProductSnapshot",
    "SellerMetrics",
    "SellerSnapshot",
    "TrackedEntity",
    "TrackedProduct",
    "rotate",
]
