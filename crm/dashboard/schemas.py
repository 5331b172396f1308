from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from crm.leads.models import LeadStatus
from crm.activities.models import ActivityType
from crm.activities.schemas import ActivityReadBase

class StatCard(BaseModel):
    value: float
    change: int
    is_positive: bool

class StatMetrics(BaseModel):
    total_won: StatCard
    total_lost: StatCard
    total_leads: StatCard
    conversion_rate: StatCard

class DashboardStats(BaseModel):
    pipeline_value: StatCard
    active_deals: StatCard
    avg_deal: StatCard
    metrics: StatMetrics

class LeadsChartPoint(BaseModel):
    name: str
    total: int

class RevenuePoint(BaseModel):
    month: str
    estimation: float
    realisation: float

class RecentDeal(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    value: float
    status: LeadStatus
    created_at: datetime

class PipelineStat(BaseModel):
    status: LeadStatus
    count: int

class SourceStat(BaseModel):
    name: str
    value: int

class QuarterData(BaseModel):
    revenue: float
    deals: int
    average: int

class QuarterSummary(BaseModel):
    quarter: int
    year: int
    range_label: str
    data: QuarterData

class ScheduleLead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    company: Optional[str] = None
    status: LeadStatus
    contacts: List[Dict[str, Any]] = []

class ScheduleItem(ActivityReadBase):
    """An open activity on the dashboard calendar; meta is passed through untyped."""

    type: ActivityType
    meta: Dict[str, Any] = {}
    lead: Optional[ScheduleLead] = None
