"""Snapshot rotation for tracked entities."""

from datetime import datetime
from typing import TypeVar

from loguru import logger

from .models import (
    MAX_PAST_SNAPSHOTS,
    METRIC_TYPES,
    ScrapedMetrics,
    TrackedEntity,
)

E = TypeVar("E", bound=TrackedEntity)


def merge_attributes(fresh: dict) -> dict:
    """Keep freshly scraped values, never overwrite a known value with None."""
    merged = {}
    for field, value in fresh.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        merged[field] = value
    return merged


def rotate(entity: E, metrics: ScrapedMetrics, now: datetime) -> E:
    """Return ``entity`` with a new current snapshot built from ``metrics``.

    The previous current snapshot moves to the head of ``past_snapshots``;
    the history keeps at most ``MAX_PAST_SNAPSHOTS`` entries, oldest dropped
    first. The input entity is not modified.

    Raises:
        TypeError: metrics belong to a different entity kind
        ValueError: metrics carry no metric values
    """
    expected = METRIC_TYPES[entity.kind]
    if not isinstance(metrics, expected):
        raise TypeError(
            f"{entity.kind.value} expects {expected.__name__}, got {type(metrics).__name__}"
        )

    if not metrics.has_metrics():
        raise ValueError(f"Refusing to snapshot empty metrics for {entity.identity}")

    snapshot = entity.build_snapshot(metrics, now)

    past_snapshots = list(entity.past_snapshots)
    if entity.current_snapshot is not None:
        past_snapshots.insert(0, entity.current_snapshot)
    past_snapshots = past_snapshots[:MAX_PAST_SNAPSHOTS]

    updates = merge_attributes(entity.fresh_attributes(metrics))
    updates.update(
        current_snapshot=snapshot,
        past_snapshots=past_snapshots,
        last_checked=now,
    )

    logger.debug(
        f"Rotated {entity.kind.value} {entity.identity}: {len(past_snapshots)} past snapshots"
    )

    return entity.model_copy(update=updates)
