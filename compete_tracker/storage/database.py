"""Database operations and management"""

from datetime import datetime
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, CompetitorRecord, ProductRecord, FunnelRunRecord, ScrapeJob
from ..errors import MissingIdentity
from ..history.models import ENTITY_TYPES, EntityKind, TrackedEntity
from ..normalizer.funnel import FunnelRun

RECORD_TYPES = {
    EntityKind.COMPETITOR: CompetitorRecord,
    EntityKind.PRODUCT: ProductRecord,
}

# Columns holding serialized pydantic values rather than scalars
JSON_FIELDS = ("first_ten_items", "images", "current_snapshot", "past_snapshots")


def _engine_options(db_url: str) -> dict:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return {}

    options = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every thread sees its own empty database
        options["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return options


def entity_to_row(entity: TrackedEntity) -> dict:
    """Column values for an entity; snapshots and lists become JSON."""
    record_type = RECORD_TYPES[entity.kind]
    columns = {column.name for column in record_type.__table__.columns}

    values = entity.model_dump(include=columns - set(JSON_FIELDS) - {"id"})
    json_values = entity.model_dump(mode="json", include=columns & set(JSON_FIELDS))
    values.update(json_values)
    return values


def row_to_entity(kind: EntityKind, row) -> TrackedEntity:
    entity_type = ENTITY_TYPES[kind]
    data = {}
    for name in entity_type.model_fields:
        if hasattr(row, name):
            value = getattr(row, name)
            if value is not None:
                data[name] = value
    return entity_type.model_validate(data)


class Database:
    """Database management class"""

    def __init__(self, db_url: str = "sqlite:///data/db/compete.db"):
        self.db_url = db_url
        self.engine = create_engine(db_url, echo=False, **_engine_options(db_url))
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)
        logger.info(f"Database initialized: {db_url}")

    @contextmanager
    def session(self):
        """Context manager for database sessions"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Tracked entities
    # ------------------------------------------------------------------

    def _find_row(self, session: Session, kind: EntityKind, identity: str):
        record_type = RECORD_TYPES[kind]
        identity_column = getattr(record_type, ENTITY_TYPES[kind].identity_field)
        return session.query(record_type).filter(identity_column == identity.strip()).first()

    def find_by_identity(self, kind: EntityKind, identity: str) -> Optional[TrackedEntity]:
        """Look up a tracked entity by its URL"""
        with self.session() as session:
            row = self._find_row(session, kind, identity)
            return row_to_entity(kind, row) if row else None

    def get(self, kind: EntityKind, entity_id: int) -> Optional[TrackedEntity]:
        """Get a single tracked entity by ID"""
        with self.session() as session:
            row = session.get(RECORD_TYPES[kind], entity_id)
            return row_to_entity(kind, row) if row else None

    def save(self, entity: TrackedEntity) -> TrackedEntity:
        """
        Insert or update an entity, matched on its identity URL.

        Returns the stored entity with its database ID.
        """
        identity = entity.identity
        if identity is None:
            raise MissingIdentity(f"Cannot save {entity.kind.value} without {entity.identity_field}")

        values = entity_to_row(entity)
        values[entity.identity_field] = identity

        with self.session() as session:
            row = self._find_row(session, entity.kind, identity)
            if row is None:
                row = RECORD_TYPES[entity.kind](**values)
                session.add(row)
                logger.debug(f"Inserted {entity.kind.value}: {identity}")
            else:
                for name, value in values.items():
                    setattr(row, name, value)
                logger.debug(f"Updated {entity.kind.value}: {identity} (ID: {row.id})")

            session.flush()
            return row_to_entity(entity.kind, row)

    def list_entities(self, kind: EntityKind) -> list[TrackedEntity]:
        """All tracked entities of one kind, oldest first"""
        record_type = RECORD_TYPES[kind]
        with self.session() as session:
            rows = session.query(record_type).order_by(record_type.id).all()
            return [row_to_entity(kind, row) for row in rows]

    def list_competitors(self) -> list[TrackedEntity]:
        return self.list_entities(EntityKind.COMPETITOR)

    def list_products(self, competitor: Optional[str] = None) -> list[TrackedEntity]:
        """Tracked products, optionally only those sold by ``competitor``"""
        with self.session() as session:
            query = session.query(ProductRecord)
            if competitor:
                query = query.filter(ProductRecord.competitor == competitor)
            rows = query.order_by(ProductRecord.id).all()
            return [row_to_entity(EntityKind.PRODUCT, row) for row in rows]

    def delete(self, kind: EntityKind, entity_id: int) -> bool:
        """Delete an entity; returns False if it did not exist"""
        with self.session() as session:
            deleted = (
                session.query(RECORD_TYPES[kind])
                .filter(RECORD_TYPES[kind].id == entity_id)
                .delete()
            )
            if deleted:
                logger.info(f"Deleted {kind.value} {entity_id}")
            return bool(deleted)

    # ------------------------------------------------------------------
    # Ad funnels
    # ------------------------------------------------------------------

    def save_funnel_run(self, run: FunnelRun) -> FunnelRun:
        """Store a funnel run (replacing one with the same ID)"""
        data = run.model_dump(mode="json")
        with self.session() as session:
            session.merge(
                FunnelRunRecord(
                    id=data["id"],
                    competitor=data["competitor"],
                    query=data["query"],
                    created_at=data["created_at"],
                    steps=data["steps"],
                    final_price=data["final_price"],
                    currency=data["currency"],
                    fallback=data["fallback"],
                    fallback_reason=data["fallback_reason"],
                )
            )
        logger.debug(f"Saved funnel run {run.id} for {run.competitor}")
        return run

    def list_funnel_runs(self, limit: int = 20) -> list[FunnelRun]:
        """Most recent funnel runs first"""
        with self.session() as session:
            rows = (
                session.query(FunnelRunRecord)
                .order_by(FunnelRunRecord.created_at.desc())
                .limit(limit)
                .all()
            )
            return [
                FunnelRun(
                    id=row.id,
                    competitor=row.competitor,
                    query=row.query,
                    created_at=row.created_at,
                    steps=row.steps or [],
                    final_price=row.final_price,
                    currency=row.currency,
                    fallback=bool(row.fallback),
                    fallback_reason=row.fallback_reason,
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def record_scrape_job(
        self,
        agent_name: str,
        status: str,
        refreshed: int = 0,
        failed: int = 0,
        duration: float = 0,
        errors: Optional[list] = None,
    ):
        """Record a refresh batch completion"""
        with self.session() as session:
            job = ScrapeJob(
                agent_name=agent_name,
                status=status,
                entities_refreshed=refreshed,
                entities_failed=failed,
                errors=errors or None,
                duration_seconds=duration,
                completed_at=datetime.utcnow() if status != "running" else None,
            )
            session.add(job)

