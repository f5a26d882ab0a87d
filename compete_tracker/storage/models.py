"""Database models for Compete Tracker."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# ============================================================================
# Tracked entities
# ============================================================================


class CompetitorRecord(Base):
    """A tracked seller storefront, keyed by store URL."""

    __tablename__ = "competitors"

    id = Column(Integer, primary_key=True)
    store_url = Column(String, unique=True, index=True, nullable=False)

    name = Column(String)
    logo = Column(String)
    description = Column(Text)
    feedback = Column(String)
    avg_rating = Column(Float)
    followers = Column(Integer)
    tracked_products = Column(Integer)
    first_ten_items = Column(JSON, default=list)

    # Snapshot history (serialized SellerSnapshot dicts, most recent first)
    current_snapshot = Column(JSON)
    past_snapshots = Column(JSON, default=list)

    last_checked = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CompetitorRecord(id={self.id}, store_url='{self.store_url}')>"


class ProductRecord(Base):
    """A tracked listing, keyed by product URL."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    product_url = Column(String, unique=True, index=True, nullable=False)
    competitor = Column(String, index=True)  # seller name as shown on the listing

    name = Column(String)
    description = Column(Text)
    item_id = Column(String)
    price = Column(Float)
    original_price = Column(Float)
    currency = Column(String)
    shipping_cost = Column(Float)
    condition = Column(String)
    quantity_available = Column(Integer)
    total_sold_listing = Column(Integer)
    watchers_count = Column(Integer)
    stock = Column(String)
    rating = Column(Float)
    category = Column(String)
    image = Column(String)
    images = Column(JSON, default=list)

    current_snapshot = Column(JSON)
    past_snapshots = Column(JSON, default=list)

    last_checked = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProductRecord(id={self.id}, product_url='{self.product_url}')>"


# ============================================================================
# Ad funnels and jobs
# ============================================================================


class FunnelRunRecord(Base):
    """A completed ad-funnel exploration."""

    __tablename__ = "funnel_runs"

    id = Column(String, primary_key=True)
    competitor = Column(String, index=True, nullable=False)
    query = Column(String, nullable=False)
    created_at = Column(String, index=True)  # ISO-8601, as returned to clients

    steps = Column(JSON, default=list)
    final_price = Column(Float)
    currency = Column(String)

    fallback = Column(Boolean, default=False)
    fallback_reason = Column(String)

    def __repr__(self):
        return f"<FunnelRunRecord(id='{self.id}', competitor='{self.competitor}')>"


class ScrapeJob(Base):
    """Track refresh batches for monitoring and debugging."""

    __tablename__ = "scrape_jobs"

    id = Column(Integer, primary_key=True)
    agent_name = Column(String, index=True, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    status = Column(String)  # completed, partial, failed

    entities_refreshed = Column(Integer, default=0)
    entities_failed = Column(Integer, default=0)
    errors = Column(JSON)
    duration_seconds = Column(Float)

    def __repr__(self):
        return f"<ScrapeJob(id={self.id}, agent='{self.agent_name}', status='{self.status}')>"
