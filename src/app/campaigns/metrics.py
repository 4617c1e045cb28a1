"""
Campaign aggregate metrics.

Aggregates are recomputed by rescanning every call of the campaign rather
than applying deltas. Two concurrent recomputations may race; the last
write wins and both write a value derived from committed calls.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallRecord, CallStatus
from app.calls.state import LIVE_STATUSES, SUPERSEDED_REASON, TERMINAL_STATUSES
from app.campaigns.models import Campaign
from app.shared.logging import get_logger

logger = get_logger(__name__)

# Statuses that imply the customer picked up at some point
CONNECTED_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.HUNG_UP}) | LIVE_STATUSES


@dataclass(frozen=True)
class CampaignMetrics:
    total_calls: int = 0
    calls_connected: int = 0
    calls_completed: int = 0
    successful_calls: int = 0
    total_duration: int = 0
    total_cost: float = 0.0
    active_calls: int = 0


def calculate_campaign_metrics(calls: list[CallRecord]) -> CampaignMetrics:
    """Compute aggregates from a full list of campaign calls.

    Superseded dispatch records are not calls of their own and are skipped.
    """
    calls = [c for c in calls if c.ended_reason != SUPERSEDED_REASON]
    return CampaignMetrics(
        total_calls=len(calls),
        calls_connected=sum(1 for c in calls if c.status in CONNECTED_STATUSES),
        calls_completed=sum(1 for c in calls if c.status == CallStatus.COMPLETED),
        successful_calls=sum(1 for c in calls if c.is_qualified_lead),
        total_duration=sum(c.duration_seconds or 0 for c in calls),
        total_cost=round(sum(c.cost or 0.0 for c in calls), 4),
        active_calls=sum(1 for c in calls if c.status not in TERMINAL_STATUSES),
    )


async def recompute_campaign_metrics(session: AsyncSession, campaign_id: UUID) -> CampaignMetrics:
    """Rescan a campaign's calls and write the aggregate row."""
    result = await session.execute(select(CallRecord).where(CallRecord.campaign_id == campaign_id))
    metrics = calculate_campaign_metrics(list(result.scalars().all()))

    updated = await session.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(
            total_calls=metrics.total_calls,
            calls_connected=metrics.calls_connected,
            calls_completed=metrics.calls_completed,
            successful_calls=metrics.successful_calls,
            total_duration=metrics.total_duration,
            total_cost=metrics.total_cost,
            metrics_updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if not updated.rowcount:
        logger.warning("Campaign not found for metrics", extra={"campaign_id": str(campaign_id)})
    else:
        logger.info(
            "Campaign metrics recomputed",
            extra={
                "campaign_id": str(campaign_id),
                "total_calls": metrics.total_calls,
                "calls_completed": metrics.calls_completed,
                "total_cost": metrics.total_cost,
            },
        )
    return metrics
