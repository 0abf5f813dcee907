"""
Tests for metrics documents (Stats)
"""

import pytest

from src.core.enums import StatsType
from src.database.crud import get_stats
from src.services.stats_service import (
    merge_metrics,
    patch_metrics_stats,
    remove_metrics_item,
    try_patch_metrics_stats,
    try_remove_metrics_item,
)


def test_merge_metrics_list_replaces():
    assert merge_metrics([{"id": "a"}], [{"id": "b"}]) == [{"id": "b"}]


def test_merge_metrics_merges_by_id():
    existing = [{"id": "a", "status": "PENDING", "pairId": "p1"}, {"id": "b"}]

    merged = merge_metrics(existing, {"id": "a", "status": "ACTIVE"})

    assert merged == [{"id": "a", "status": "ACTIVE", "pairId": "p1"}, {"id": "b"}]
    # input untouched
    assert existing[0]["status"] == "PENDING"


def test_merge_metrics_appends_new_id():
    assert merge_metrics([{"id": "a"}], {"id": "b", "x": 1}) == [{"id": "a"}, {"id": "b", "x": 1}]
    assert merge_metrics(None, {"id": "b"}) == [{"id": "b"}]


def test_merge_metrics_requires_id():
    with pytest.raises(ValueError):
        merge_metrics([], {"status": "ACTIVE"})


@pytest.mark.asyncio
async def test_patch_metrics_upserts(db_session):
    await patch_metrics_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value, {"id": "s1", "status": "PENDING"})
    await patch_metrics_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value, {"id": "s1", "status": "ACTIVE"})
    await patch_metrics_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value, {"id": "s2", "status": "PENDING"})

    stats = await get_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value)
    assert stats.stats_metadata == [
        {"id": "s1", "status": "ACTIVE"},
        {"id": "s2", "status": "PENDING"},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("stats_type,metrics", [("", {"id": "x"}), ("EMAIL_METRICS", None), ("EMAIL_METRICS", {})])
async def test_patch_metrics_requires_arguments(db_session, stats_type, metrics):
    with pytest.raises(ValueError):
        await patch_metrics_stats(db_session, stats_type, metrics)


@pytest.mark.asyncio
async def test_try_patch_swallows_errors(db_session):
    assert await try_patch_metrics_stats(db_session, StatsType.EMAIL_METRICS.value, {"no": "id"}) is None
    assert await get_stats(db_session, StatsType.EMAIL_METRICS.value) is None


@pytest.mark.asyncio
async def test_remove_metrics_item(db_session):
    await patch_metrics_stats(
        db_session, StatsType.SUBSCRIPTION_METRICS.value, [{"id": "s1"}, {"id": "s2", "status": "ACTIVE"}]
    )

    stats = await remove_metrics_item(db_session, StatsType.SUBSCRIPTION_METRICS.value, "s1")

    assert stats.stats_metadata == [{"id": "s2", "status": "ACTIVE"}]
    # unknown id is a no-op
    stats = await remove_metrics_item(db_session, StatsType.SUBSCRIPTION_METRICS.value, "missing")
    assert stats.stats_metadata == [{"id": "s2", "status": "ACTIVE"}]


@pytest.mark.asyncio
async def test_remove_metrics_item_without_document(db_session):
    assert await remove_metrics_item(db_session, StatsType.SUBSCRIPTION_METRICS.value, "s1") is None
    assert await get_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value) is None


@pytest.mark.asyncio
async def test_try_remove_swallows_errors(db_session):
    assert await try_remove_metrics_item(db_session, StatsType.SUBSCRIPTION_METRICS.value, "") is None
