import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from typing import List, Optional

from crm.database import get_session, utcnow
from crm.auth.dependencies import get_current_user
from crm.auth.schemas import CurrentUser
from crm.dashboard import service
from crm.dashboard.periods import Period, resolve_period
from crm.dashboard.schemas import (
    DashboardStats,
    LeadsChartPoint,
    PipelineStat,
    QuarterSummary,
    RecentDeal,
    RevenuePoint,
    ScheduleItem,
    SourceStat,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

def get_period(
    range: Optional[str] = Query(None, description="'all' for all time, otherwise a calendar month"),
    month: Optional[int] = Query(None, ge=0, le=11, description="0-based month"),
    year: Optional[int] = Query(None, ge=1970, le=9999),
) -> Period:
    return resolve_period(range, month, year)

def _run(name: str, query, *args):
    try:
        return query(*args)
    except SQLAlchemyError:
        logger.exception("[%s] query failed", name)
        raise HTTPException(status_code=500, detail="Internal Server Error")

@router.get("/stats", response_model=DashboardStats)
def read_stats(
    period: Period = Depends(get_period),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("stats", service.get_stats, session, current_user, period)

@router.get("/leads-chart", response_model=List[LeadsChartPoint])
def read_leads_chart(
    year: Optional[int] = Query(None, ge=1970, le=9999),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("leads-chart", service.get_leads_chart, session, current_user, year or utcnow().year)

@router.get("/revenue-chart", response_model=List[RevenuePoint])
def read_revenue_chart(
    year: Optional[int] = Query(None, ge=1970, le=9999),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("revenue-chart", service.get_revenue_chart, session, current_user, year or utcnow().year)

@router.get("/recent-deals", response_model=List[RecentDeal])
def read_recent_deals(
    period: Period = Depends(get_period),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("recent-deals", service.get_recent_deals, session, current_user, period)

@router.get("/pipeline-stats", response_model=List[PipelineStat])
def read_pipeline_stats(
    period: Period = Depends(get_period),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("pipeline-stats", service.get_pipeline_stats, session, current_user, period)

@router.get("/leads-source", response_model=List[SourceStat])
def read_leads_source(
    period: Period = Depends(get_period),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("leads-source", service.get_leads_source, session, current_user, period)

@router.get("/quarter-summary", response_model=QuarterSummary)
def read_quarter_summary(
    month: Optional[int] = Query(None, ge=0, le=11),
    year: Optional[int] = Query(None, ge=1970, le=9999),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _run("quarter-summary", service.get_quarter_summary, session, current_user, month, year)

@router.get("/schedule", response_model=List[ScheduleItem])
def read_schedule(current_user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    return _run("schedule", service.get_schedule, session, current_user)
