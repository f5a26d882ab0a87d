"""Data storage and persistence layer"""

from .models import CompetitorRecord, ProductRecord, FunnelRunRecord, ScrapeJob
from .database import Database

__all__ = [
    "CompetitorRecord",
    "ProductRecord",
    "FunnelRunRecord",
    "ScrapeJob",
    "Database",
]
