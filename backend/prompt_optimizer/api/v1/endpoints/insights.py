from typing import Optional

from fastapi import APIRouter, Depends, Query

from ....schemas import ok
from ....services.insight_service import SUCCESS_RATE_ALERT, InsightService
from ...deps import get_insight_service

router = APIRouter(prefix="/api/v1")


@router.get("/insights")
async def get_insights(
    command: Optional[str] = None,
    days: int = Query(default=7, ge=1, le=365),
    scene: Optional[str] = None,
    alert: float = Query(default=SUCCESS_RATE_ALERT, ge=0, le=100),
    insights: InsightService = Depends(get_insight_service),
):
    """Same report as ``po insight``, as JSON."""
    report = insights.build_report(command=command, days=days, alert_threshold=alert, scene=scene)
    return ok(report.to_dict())
