import calendar
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, func
from sqlmodel import Session, select, col, or_

from crm.database import utcnow
from crm.auth.schemas import CurrentUser
from crm.leads.models import Lead, LeadStatus
from crm.leads.service import assigned_lead_ids
from crm.activities.models import ActivityType, LeadActivity
from crm.users.models import UserRole
from crm.dashboard import periods
from crm.dashboard.periods import Period
from crm.dashboard.schemas import (
    DashboardStats,
    LeadsChartPoint,
    PipelineStat,
    QuarterData,
    QuarterSummary,
    RecentDeal,
    RevenuePoint,
    ScheduleItem,
    SourceStat,
    StatCard,
    StatMetrics,
)

logger = logging.getLogger(__name__)

SCHEDULE_LIMIT = 20
RECENT_DEALS_LIMIT = 5

def fan_out(bind, tasks: Dict[str, Callable[[Session], Any]]) -> Dict[str, Any]:
    """Run each task concurrently in its own session and wait for all of them."""

    def run(task: Callable[[Session], Any]) -> Any:
        with Session(bind) as task_session:
            return task(task_session)

    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        futures = {name: executor.submit(run, task) for name, task in tasks.items()}
        # result() re-raises the first failure, so no partial response is built
        return {name: future.result() for name, future in futures.items()}

# ---- Scoping ----

def lead_scope(identity: CurrentUser) -> list:
    """Non-archived leads; SALES only those they are assigned to."""
    conditions = [Lead.is_archived == False]  # noqa: E712
    if identity.role == UserRole.SALES:
        conditions.append(col(Lead.id).in_(assigned_lead_ids(identity.id)))
    return conditions

def created_in(start: Optional[datetime], end: Optional[datetime]) -> list:
    if start is None or end is None:
        return []
    return [Lead.created_at >= start, Lead.created_at < end]

def window_scope(identity: CurrentUser, period: Period) -> list:
    return lead_scope(identity) + created_in(period.start, period.end)

# ---- Stats ----

def _pipeline(conditions: list) -> Callable[[Session], tuple]:
    def query(session: Session) -> tuple:
        total, count = session.exec(
            select(func.coalesce(func.sum(Lead.value), 0), func.count(Lead.id)).where(*conditions)
        ).one()
        return float(total or 0), int(count or 0)

    return query

def _count(conditions: list) -> Callable[[Session], int]:
    def query(session: Session) -> int:
        return int(session.exec(select(func.count(Lead.id)).where(*conditions)).one() or 0)

    return query

def _card(current: float, previous: float, all_time: bool, positive: Optional[bool] = None) -> StatCard:
    change = periods.calculate_change(current, previous, all_time)
    return StatCard(value=current, change=change, is_positive=change >= 0 if positive is None else positive)

def get_stats(session: Session, identity: CurrentUser, period: Period) -> DashboardStats:
    current = window_scope(identity, period)
    previous = lead_scope(identity) + created_in(period.previous_start, period.previous_end)

    results = fan_out(
        session.get_bind(),
        {
            "pipeline": _pipeline(current),
            "prev_pipeline": _pipeline(previous),
            "won": _count(current + [Lead.status == LeadStatus.WON]),
            "prev_won": _count(previous + [Lead.status == LeadStatus.WON]),
            "lost": _count(current + [Lead.status == LeadStatus.LOST]),
            "prev_lost": _count(previous + [Lead.status == LeadStatus.LOST]),
        },
    )

    value, total = results["pipeline"]
    prev_value, prev_total = results["prev_pipeline"]
    avg_deal = periods.round_half_up(value / total) if total else 0
    prev_avg_deal = periods.round_half_up(prev_value / prev_total) if prev_total else 0
    conversion = periods.round_half_up(results["won"] / total * 100) if total else 0
    prev_conversion = periods.round_half_up(results["prev_won"] / prev_total * 100) if prev_total else 0

    all_time = period.all_time
    return DashboardStats(
        pipeline_value=_card(value, prev_value, all_time),
        active_deals=_card(total, prev_total, all_time),
        avg_deal=_card(avg_deal, prev_avg_deal, all_time),
        metrics=StatMetrics(
            total_won=_card(results["won"], results["prev_won"], all_time),
            total_lost=_card(results["lost"], results["prev_lost"], all_time, positive=False),
            total_leads=_card(total, prev_total, all_time),
            conversion_rate=_card(conversion, prev_conversion, all_time),
        ),
    )

# ---- Charts ----

def _month_names() -> List[str]:
    return [calendar.month_abbr[month] for month in range(1, 13)]

def get_leads_chart(session: Session, identity: CurrentUser, year: int) -> List[LeadsChartPoint]:
    start, end = periods.year_window(year)
    created = session.exec(select(Lead.created_at).where(*lead_scope(identity), *created_in(start, end))).all()

    totals = [0] * 12
    for created_at in created:
        totals[created_at.month - 1] += 1
    return [LeadsChartPoint(name=name, total=total) for name, total in zip(_month_names(), totals)]

def get_revenue_chart(session: Session, identity: CurrentUser, year: int) -> List[RevenuePoint]:
    """Estimation by creation month over all statuses; realisation by the month a lead was won."""
    start, end = periods.year_window(year)
    scope = lead_scope(identity)

    def estimation(task_session: Session):
        return task_session.exec(select(Lead.created_at, Lead.value).where(*scope, *created_in(start, end))).all()

    def realisation(task_session: Session):
        return task_session.exec(
            select(Lead.won_at, Lead.value).where(
                *scope,
                Lead.status == LeadStatus.WON,
                Lead.won_at >= start,
                Lead.won_at < end,
            )
        ).all()

    results = fan_out(session.get_bind(), {"estimation": estimation, "realisation": realisation})

    estimated = [0.0] * 12
    realised = [0.0] * 12
    for created_at, value in results["estimation"]:
        estimated[created_at.month - 1] += value or 0
    for won_at, value in results["realisation"]:
        realised[won_at.month - 1] += value or 0

    return [
        RevenuePoint(month=name, estimation=estimated[index], realisation=realised[index])
        for index, name in enumerate(_month_names())
    ]

def get_recent_deals(session: Session, identity: CurrentUser, period: Period) -> List[RecentDeal]:
    leads = session.exec(
        select(Lead)
        .where(*window_scope(identity, period))
        .order_by(col(Lead.created_at).desc())
        .limit(RECENT_DEALS_LIMIT)
    ).all()
    return [RecentDeal.model_validate(lead) for lead in leads]

def get_pipeline_stats(session: Session, identity: CurrentUser, period: Period) -> List[PipelineStat]:
    rows = session.exec(
        select(Lead.status, func.count(Lead.id)).where(*window_scope(identity, period)).group_by(Lead.status)
    ).all()
    return [PipelineStat(status=status, count=count) for status, count in rows]

def get_leads_source(session: Session, identity: CurrentUser, period: Period) -> List[SourceStat]:
    rows = session.exec(
        select(Lead.source_origin, func.count(Lead.id))
        .where(*window_scope(identity, period))
        .group_by(Lead.source_origin)
    ).all()

    counts: Dict[str, int] = {}
    for source, count in rows:
        name = source or "Unknown"
        counts[name] = counts.get(name, 0) + count

    stats = [SourceStat(name=name, value=value) for name, value in counts.items()]
    stats.sort(key=lambda stat: stat.value, reverse=True)
    return stats

def get_quarter_summary(
    session: Session, identity: CurrentUser, month: Optional[int] = None, year: Optional[int] = None
) -> QuarterSummary:
    now = utcnow()
    target_year = now.year if year is None else year
    target_month = now.month - 1 if month is None else month
    quarter, start, end = periods.quarter_window(target_year, target_month)

    revenue, deals = session.exec(
        select(func.coalesce(func.sum(Lead.value), 0), func.count(Lead.id)).where(
            *lead_scope(identity),
            Lead.status == LeadStatus.WON,
            Lead.won_at >= start,
            Lead.won_at < end,
        )
    ).one()
    revenue = float(revenue or 0)
    deals = int(deals or 0)

    return QuarterSummary(
        quarter=quarter,
        year=target_year,
        range_label=periods.quarter_label(target_year, target_month),
        data=QuarterData(
            revenue=revenue,
            deals=deals,
            average=periods.round_half_up(revenue / deals) if deals else 0,
        ),
    )

# ---- Schedule ----

def get_schedule(session: Session, identity: CurrentUser, now: Optional[datetime] = None) -> List[ScheduleItem]:
    """Open activities: upcoming ones, every unpaid invoice and unscheduled email drafts."""
    start_of_today = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)

    query = (
        select(LeadActivity)
        .join(Lead, Lead.id == LeadActivity.lead_id)
        .where(Lead.is_archived == False)  # noqa: E712
        .where(LeadActivity.is_completed == False)  # noqa: E712
        .where(
            or_(
                and_(LeadActivity.scheduled_at >= start_of_today, LeadActivity.type != ActivityType.INVOICE),
                LeadActivity.type == ActivityType.INVOICE,
                and_(LeadActivity.type == ActivityType.EMAIL, col(LeadActivity.scheduled_at).is_(None)),
            )
        )
    )

    if identity.role == UserRole.SALES:
        visible_leads = select(Lead.id).where(
            or_(Lead.created_by_id == identity.id, col(Lead.id).in_(assigned_lead_ids(identity.id)))
        )
        query = query.where(
            or_(LeadActivity.created_by_id == identity.id, col(LeadActivity.lead_id).in_(visible_leads))
        )

    activities = session.exec(
        query.order_by(
            col(LeadActivity.scheduled_at).asc().nulls_last(),
            col(LeadActivity.created_at).desc(),
        ).limit(SCHEDULE_LIMIT)
    ).all()
    return [ScheduleItem.model_validate(activity) for activity in activities]
