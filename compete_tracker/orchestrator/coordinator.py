"""Refresh coordination for Compete Tracker."""

import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel

from ..agents.ebay_product import EbayProductAgent
from ..agents.ebay_seller import EbaySellerAgent
from ..agents.funnel_agent import FunnelAgent
from ..agents.task_client import AgentTaskClient, CancelToken, DnsCache
from ..agents.task_scrapers import AgentProductScraper, AgentSellerScraper
from ..errors import AgentNotConfigured, EmptyScrapeError, EntityNotFound, MissingIdentity
from ..history.models import ENTITY_TYPES, Competitor, EntityKind, TrackedEntity, TrackedProduct
from ..history.snapshots import rotate
from ..normalizer.funnel import FunnelRun
from ..storage.database import Database
from ..utils.config import Config, get_config
from .locks import KeyedLock


class RefreshOutcome(BaseModel):
    """Result of refreshing one entity inside a batch."""

    kind: EntityKind
    identity: Optional[str] = None
    ok: bool
    entity: Optional[Union[Competitor, TrackedProduct]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class RefreshCoordinator:
    """Scrapes tracked entities, rotates their snapshot history and saves them.

    Args:
        db: Persistence collaborator
        scrapers: One scraper per entity kind, each exposing
            ``async scrape(url, cancel=None)``
        funnel_agent: Ad-funnel explorer; funnel runs are unavailable without it
        clock: Source of snapshot timestamps
    """

    def __init__(
        self,
        db: Database,
        scrapers: Dict[EntityKind, object],
        funnel_agent: Optional[FunnelAgent] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.scrapers = scrapers
        self.funnel_agent = funnel_agent
        self._clock = clock
        self.locks = KeyedLock()

    async def refresh(self, entity: TrackedEntity, cancel: Optional[CancelToken] = None) -> TrackedEntity:
        """Scrape ``entity`` and return it with a new current snapshot.

        Nothing is written; the caller decides whether to save.

        Raises:
            MissingIdentity: entity has no URL to scrape
            EmptyScrapeError: scrape returned no metric values
            BlockedOrUnavailable: target served a bot check
        """
        identity = entity.identity
        if identity is None:
            raise MissingIdentity(f"{entity.kind.value} has no {entity.identity_field}")

        scraper = self.scrapers[entity.kind]
        metrics = await scraper.scrape(identity, cancel=cancel)

        if metrics is None or not metrics.has_metrics():
            raise EmptyScrapeError(f"No metrics scraped for {identity}")

        return rotate(entity, metrics, self._clock())

    async def _refresh_and_save(self, entity: TrackedEntity, cancel: Optional[CancelToken]) -> TrackedEntity:
        refreshed = await self.refresh(entity, cancel)
        saved = self.db.save(refreshed)
        logger.info(f"Refreshed {saved.kind.value} {saved.identity}")
        return saved

    async def refresh_tracked(
        self,
        kind: EntityKind,
        identity: str,
        cancel: Optional[CancelToken] = None,
    ) -> TrackedEntity:
        """Load, refresh and save one stored entity.

        Overlapping refreshes of the same entity run one after another.
        """
        if not identity or not identity.strip():
            raise MissingIdentity(f"{kind.value} identity is required")
        identity = identity.strip()

        async with self.locks.hold((kind, identity)):
            entity = self.db.find_by_identity(kind, identity)
            if entity is None:
                raise EntityNotFound(f"No tracked {kind.value} with URL {identity}")
            return await self._refresh_and_save(entity, cancel)

    async def track(
        self,
        kind: EntityKind,
        identity: str,
        competitor: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> TrackedEntity:
        """Start tracking a URL (or refresh it if already tracked).

        The entity is only stored once its first scrape succeeds.
        """
        if not identity or not identity.strip():
            raise MissingIdentity(f"{kind.value} identity is required")
        identity = identity.strip()

        async with self.locks.hold((kind, identity)):
            entity = self.db.find_by_identity(kind, identity)
            if entity is None:
                entity_type = ENTITY_TYPES[kind]
                entity = entity_type(**{entity_type.identity_field: identity})
                logger.info(f"Tracking new {kind.value}: {identity}")

            if competitor and kind == EntityKind.PRODUCT:
                entity = entity.model_copy(update={"competitor": competitor})

            return await self._refresh_and_save(entity, cancel)

    async def refresh_all(self, kind: Optional[EntityKind] = None) -> List[RefreshOutcome]:
        """Refresh every stored entity, one at a time.

        A failure is recorded in its outcome and the batch moves on.
        """
        kinds = [kind] if kind else list(EntityKind)
        outcomes = []

        for current_kind in kinds:
            start_time = time.monotonic()
            entities = self.db.list_entities(current_kind)
            logger.info(f"Refreshing {len(entities)} {current_kind.value} entities")

            batch = []
            for entity in entities:
                batch.append(await self._refresh_one(entity))

            failed = [outcome for outcome in batch if not outcome.ok]
            if not batch:
                status = "completed"
            elif len(failed) == len(batch):
                status = "failed"
            elif failed:
                status = "partial"
            else:
                status = "completed"

            duration = time.monotonic() - start_time
            self.db.record_scrape_job(
                agent_name=f"refresh_{current_kind.value}",
                status=status,
                refreshed=len(batch) - len(failed),
                failed=len(failed),
                duration=duration,
                errors=[
                    {"identity": outcome.identity, "error": outcome.error, "type": outcome.error_type}
                    for outcome in failed
                ],
            )
            logger.info(
                f"Completed {current_kind.value} refresh: {len(batch) - len(failed)} ok, "
                f"{len(failed)} failed in {duration:.1f}s"
            )
            outcomes.extend(batch)

        return outcomes

    async def _refresh_one(self, entity: TrackedEntity) -> RefreshOutcome:
        identity = entity.identity
        try:
            if identity is None:
                raise MissingIdentity(f"{entity.kind.value} {entity.id} has no {entity.identity_field}")
            async with self.locks.hold((entity.kind, identity)):
                # Reload under the lock so a concurrent refresh is not overwritten
                current = self.db.find_by_identity(entity.kind, identity)
                if current is None:
                    raise EntityNotFound(f"{entity.kind.value} {identity} was removed during the batch")
                saved = await self._refresh_and_save(current, None)
            return RefreshOutcome(kind=entity.kind, identity=identity, ok=True, entity=saved)
        except Exception as e:
            logger.error(f"Error refreshing {entity.kind.value} {identity}: {e}")
            return RefreshOutcome(
                kind=entity.kind,
                identity=identity,
                ok=False,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def ensure_tracked(self, kind: EntityKind, identities: List[str]) -> List[RefreshOutcome]:
        """Track any of ``identities`` that are not stored yet."""
        outcomes = []
        for identity in identities:
            if self.db.find_by_identity(kind, identity) is not None:
                continue
            try:
                entity = await self.track(kind, identity)
                outcomes.append(RefreshOutcome(kind=kind, identity=entity.identity, ok=True, entity=entity))
            except Exception as e:
                logger.error(f"Error tracking {kind.value} {identity}: {e}")
                outcomes.append(
                    RefreshOutcome(kind=kind, identity=identity, ok=False, error=str(e), error_type=type(e).__name__)
                )
        return outcomes

    async def explore_funnel(
        self,
        competitor: str,
        query: str,
        cancel: Optional[CancelToken] = None,
    ) -> FunnelRun:
        """Follow a competitor's ad funnel; genuine runs are stored."""
        if self.funnel_agent is None:
            raise AgentNotConfigured("No funnel agent configured")

        run = await self.funnel_agent.explore(competitor, query, cancel)
        if not run.fallback:
            self.db.save_funnel_run(run)
        return run


def build_coordinator(config: Optional[Config] = None, db: Optional[Database] = None) -> RefreshCoordinator:
    """Wire a coordinator from configuration.

    ``scraping.mode`` chooses between local Playwright scrapers (``direct``)
    and remote agent tasks (``agent``). Funnel exploration always goes
    through the agent.
    """
    if config is None:
        config = get_config()

    if db is None:
        db = Database(config.database.url)

    dns_cache = DnsCache() if config.agent.debug else None
    client = AgentTaskClient(config.agent, dns_cache=dns_cache)

    mode = config.scraping.mode.lower()
    if mode == "agent":
        scrapers = {
            EntityKind.COMPETITOR: AgentSellerScraper(client),
            EntityKind.PRODUCT: AgentProductScraper(client),
        }
    elif mode == "direct":
        scraper_config = config.scraping.model_dump()
        scrapers = {
            EntityKind.COMPETITOR: EbaySellerAgent(scraper_config),
            EntityKind.PRODUCT: EbayProductAgent(scraper_config),
        }
    else:
        raise ValueError(f"Unknown scraping mode: {config.scraping.mode!r} (expected 'direct' or 'agent')")

    logger.info(f"Initialized {mode} scrapers for {len(scrapers)} entity kinds")

    return RefreshCoordinator(db, scrapers, funnel_agent=FunnelAgent(client))
