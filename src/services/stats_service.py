# coding: utf-8
"""
Metrics documents (Stats table)

Each stats type holds one JSON list of {id, ...} items that callers patch
after subscription mutations, payments and email sends.
"""

from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.crud import get_stats
from src.database.models import Stats
from src.services.audit_service import to_json


Metrics = Union[List[Dict[str, Any]], Dict[str, Any]]


def merge_metrics(existing: Optional[list], new_metrics: Metrics) -> list:
    """
    New metadata list after a patch

    A list replaces everything. A dict must carry `id`: it is merged into
    the stored item with the same id, or appended.

    Raises:
        ValueError: dict without id
    """
    if isinstance(new_metrics, list):
        return list(new_metrics)

    item_id = new_metrics.get("id")
    if not item_id:
        raise ValueError("newMetrics must contain an id field")

    if not isinstance(existing, list):
        return [dict(new_metrics)]

    merged = []
    found = False
    for item in existing:
        if isinstance(item, dict) and item.get("id") == item_id:
            merged.append({**item, **new_metrics})
            found = True
        else:
            merged.append(item)

    if not found:
        merged.append(dict(new_metrics))

    return merged


async def patch_metrics_stats(
    session: AsyncSession,
    stats_type: str,
    new_metrics: Metrics,
) -> Stats:
    """
    Upsert the stats document of a type

    Args:
        session: Database session
        stats_type: StatsType value
        new_metrics: Full list (replace) or single {id, ...} item (merge)

    Returns:
        Updated Stats row

    Raises:
        ValueError: missing arguments or item without id
    """
    if not stats_type:
        raise ValueError("statsType is required")
    if not new_metrics:
        raise ValueError("newMetrics is required")

    stats_type = getattr(stats_type, "value", stats_type)
    new_metrics = to_json(new_metrics)

    stats = await get_stats(session, stats_type)
    metadata = merge_metrics(stats.stats_metadata if stats else None, new_metrics)

    if stats is None:
        stats = Stats(type=stats_type, stats_metadata=metadata)
        session.add(stats)
    else:
        # New list object so the JSON column is flagged dirty
        stats.stats_metadata = metadata
        stats.updated_at = datetime.now(UTC)

    await session.commit()
    await session.refresh(stats)

    logger.debug(f"Stats {stats_type} patched ({len(metadata)} items)")
    return stats


async def try_patch_metrics_stats(
    session: AsyncSession,
    stats_type: str,
    new_metrics: Metrics,
) -> Optional[Stats]:
    """
    patch_metrics_stats for secondary effects: failures are logged, not raised
    """
    try:
        return await patch_metrics_stats(session, stats_type, new_metrics)
    except Exception as e:
        logger.error(f"Failed to patch {stats_type} metrics: {e}")
        try:
            await session.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback after metrics failure also failed: {rollback_error}")
        return None


async def remove_metrics_item(session: AsyncSession, stats_type: str, item_id: str) -> Optional[Stats]:
    """
    Drop the item with `item_id` from a stats document

    Returns:
        Updated Stats row, or None when the type has no document yet

    Raises:
        ValueError: missing arguments
    """
    if not stats_type:
        raise ValueError("statsType is required")
    if not item_id:
        raise ValueError("id is required")

    stats_type = getattr(stats_type, "value", stats_type)
    stats = await get_stats(session, stats_type)
    if stats is None:
        return None

    existing = stats.stats_metadata if isinstance(stats.stats_metadata, list) else []
    stats.stats_metadata = [
        item for item in existing
        if not (isinstance(item, dict) and item.get("id") == item_id)
    ]
    stats.updated_at = datetime.now(UTC)

    await session.commit()
    await session.refresh(stats)

    logger.debug(f"Stats {stats_type}: removed {item_id}")
    return stats


async def try_remove_metrics_item(session: AsyncSession, stats_type: str, item_id: str) -> Optional[Stats]:
    """remove_metrics_item for secondary effects: failures are logged, not raised"""
    try:
        return await remove_metrics_item(session, stats_type, item_id)
    except Exception as e:
        logger.error(f"Failed to remove {item_id} from {stats_type} metrics: {e}")
        try:
            await session.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback after metrics failure also failed: {rollback_error}")
        return None
