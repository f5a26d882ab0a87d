"""Scraping collaborators and the remote agent client"""

from .base_agent import BaseAgent
from .ebay_product import EbayProductAgent
from .ebay_seller import EbaySellerAgent
from .funnel_agent import FunnelAgent
from .task_client import AgentTask, AgentTaskClient, CancelToken, DnsCache, TaskSpec, TaskStatus
from .task_scrapers import AgentProductScraper, AgentSellerScraper

__all__ = [
    "BaseAgent",
    "EbayProductAgent",
    "EbaySellerAgent",
    "FunnelAgent",
    "AgentTask",
    "AgentTaskClient",
    "CancelToken",
    "DnsCache",
    "TaskSpec",
    "TaskStatus",
    "AgentProductScraper",
    "AgentSellerScraper",
]
