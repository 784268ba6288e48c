"""
Report models: sales dashboard shapes.
"""
from typing import List

from pydantic import BaseModel, Field


class RevenueSummary(BaseModel):
    amount: float = 0.0
    count: int = 0
    aov: float = 0.0


class PaymentBreakdown(BaseModel):
    method: str
    amount: float = 0.0
    count: int = 0


class BeanByType(BaseModel):
    bean: str
    variants_label: str = ""
    qty: float = 0.0
    revenue: float = 0.0


class DailyRevenue(BaseModel):
    date: str
    revenue: float = 0.0
    orders: int = 0


class DashboardRange(BaseModel):
    date_from: str
    date_to: str


class Dashboard(BaseModel):
    range: DashboardRange
    order_revenue: RevenueSummary = Field(default_factory=RevenueSummary)
    delivery_revenue: RevenueSummary = Field(default_factory=RevenueSummary)
    total_orders: int = 0
    aov_all: float = 0.0
    payments: List[PaymentBreakdown] = Field(default_factory=list)
    beans_by_type: List[BeanByType] = Field(default_factory=list)
    last_days: List[DailyRevenue] = Field(default_factory=list)
