"""
Pydantic schemas for the marketplace API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from marketplace.records import NumericId


class AvailabilityResponse(BaseModel):
    availability: str


class EarningsResponse(BaseModel):
    amount: float
    currency: str
    lastUpdated: Optional[str] = None


class MilestoneTaskView(BaseModel):
    taskId: int
    title: str
    status: str
    submittedAt: Optional[str] = None
    completedAt: Optional[str] = None


class MilestoneHistoryResponse(BaseModel):
    milestoneId: int
    projectId: int
    title: str
    tasks: list[MilestoneTaskView]


class MarkActionedRequest(BaseModel):
    notificationId: str = Field(..., min_length=1, max_length=128)
    userId: NumericId
    action: str = Field(..., min_length=1, max_length=64)


class SuccessResponse(BaseModel):
    success: Literal[True] = True


class NotificationView(BaseModel):
    notification: dict
    actioned: Optional[str] = None


class RevenueChartResponse(BaseModel):
    current: list[float]
    previous: list[float]


class InvoiceProjectMeta(BaseModel):
    projectId: int
    title: str


class ContactsResponse(BaseModel):
    userId: int
    contacts: list[dict]


class UnreadCountResponse(BaseModel):
    userId: int
    unreadCount: int


class WalletHistoryResponse(BaseModel):
    userId: int
    entries: list[dict]


class HealthResponse(BaseModel):
    status: Literal["ok"]
    storageLayout: str
