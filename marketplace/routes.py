"""
HTTP routes for the marketplace dashboard API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.config import get_settings
from marketplace.dependencies import get_queries, get_session_user_id
from marketplace.queries import DEFAULT_CURRENCY, RecordQueries
from marketplace.records import parse_id
from marketplace.schemas import (
    AvailabilityResponse,
    ContactsResponse,
    EarningsResponse,
    HealthResponse,
    InvoiceProjectMeta,
    MarkActionedRequest,
    MilestoneHistoryResponse,
    MilestoneTaskView,
    NotificationView,
    RevenueChartResponse,
    SuccessResponse,
    UnreadCountResponse,
    WalletHistoryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_id(value: Optional[str], name: str) -> int:
    """Parse a path or query identifier once, or fail with a 400."""
    if value is None or not value.strip():
        raise HTTPException(status_code=400, detail=f"Missing {name}")
    try:
        return parse_id(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from None


def _documents(records) -> list[dict]:
    return [r.to_document() for r in records]


@router.get("/health", response_model=HealthResponse)
def health():
    settings = get_settings()
    layout = "memory" if settings.use_in_memory_backends else settings.storage_layout
    return HealthResponse(status="ok", storageLayout=layout)


@router.get("/availability/{user_id}", response_model=AvailabilityResponse)
def get_availability(user_id: str, queries: RecordQueries = Depends(get_queries)):
    freelancer = queries.get_freelancer_by_user_id(_require_id(user_id, "id"))
    if not freelancer or freelancer.availability is None:
        raise HTTPException(status_code=404, detail="Freelancer not found")
    return AvailabilityResponse(availability=freelancer.availability)


@router.get("/clients/commissioners")
def list_commissioners(queries: RecordQueries = Depends(get_queries)):
    return _documents(queries.get_commissioners())


@router.get("/clients/freelancers")
def list_freelancer_users(queries: RecordQueries = Depends(get_queries)):
    return _documents(queries.get_freelancer_users())


@router.get("/users/{user_id}")
def get_user(user_id: str, queries: RecordQueries = Depends(get_queries)):
    user = queries.get_user_by_id(_require_id(user_id, "id"))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_document()


@router.get("/user/contacts/{user_id}", response_model=ContactsResponse)
def get_user_contacts(user_id: str, queries: RecordQueries = Depends(get_queries)):
    uid = _require_id(user_id, "id")
    return ContactsResponse(userId=uid, contacts=_documents(queries.get_contacts(uid)))


@router.get("/freelancers/by-user/{user_id}")
def get_freelancer_by_user(
    user_id: str, queries: RecordQueries = Depends(get_queries)
):
    freelancer = queries.get_freelancer_by_user_id(_require_id(user_id, "userId"))
    if not freelancer:
        raise HTTPException(status_code=404, detail="Freelancer not found")
    return freelancer.to_document()


@router.get("/organizations/lookup")
def lookup_organization(
    name: Optional[str] = Query(None),
    queries: RecordQueries = Depends(get_queries),
):
    if not name or not name.strip():
        raise HTTPException(status_code=400, detail="Missing name")
    organization = queries.get_organization_by_name(name)
    if not organization:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization.to_document()


@router.get("/organizations/{organization_id}")
def get_organization(
    organization_id: str, queries: RecordQueries = Depends(get_queries)
):
    organization = queries.get_organization_by_id(_require_id(organization_id, "id"))
    if not organization:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization.to_document()


@router.get("/projects/{project_id}")
def get_project(project_id: str, queries: RecordQueries = Depends(get_queries)):
    project = queries.get_project_by_id(_require_id(project_id, "id"))
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project.to_document()


@router.get("/gigs")
def list_gigs(
    commissioner_id: Optional[str] = Query(None, alias="commissionerId"),
    queries: RecordQueries = Depends(get_queries),
):
    cid = _require_id(commissioner_id, "commissionerId")
    return _documents(queries.get_gigs_by_commissioner(cid))


@router.get("/proposals")
def list_proposals(
    freelancer_id: Optional[str] = Query(None, alias="freelancerId"),
    commissioner_id: Optional[str] = Query(None, alias="commissionerId"),
    queries: RecordQueries = Depends(get_queries),
):
    if freelancer_id is not None:
        fid = _require_id(freelancer_id, "freelancerId")
        return _documents(queries.get_proposals_by_freelancer(fid))
    cid = _require_id(commissioner_id, "freelancerId or commissionerId")
    return _documents(queries.get_proposals_by_commissioner(cid))


@router.get("/milestones/{milestone_id}/history", response_model=MilestoneHistoryResponse)
def get_milestone_history(
    milestone_id: str, queries: RecordQueries = Depends(get_queries)
):
    milestone = queries.get_milestone_by_id(_require_id(milestone_id, "id"))
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return MilestoneHistoryResponse(
        milestoneId=milestone.milestoneId,
        projectId=milestone.projectId,
        title=milestone.title,
        tasks=[
            MilestoneTaskView(
                taskId=task.taskId,
                title=task.title,
                status=task.status,
                submittedAt=task.submittedAt,
                completedAt=task.completedAt,
            )
            for task in milestone.tasks
        ],
    )


@router.get("/dashboard/earnings", response_model=EarningsResponse)
def get_dashboard_earnings(
    user_id: Optional[str] = Query(None, alias="id"),
    queries: RecordQueries = Depends(get_queries),
):
    earnings = queries.get_earnings(_require_id(user_id, "id"))
    return EarningsResponse(
        amount=earnings.amount,
        currency=earnings.currency or DEFAULT_CURRENCY,
        lastUpdated=earnings.lastUpdated,
    )


@router.get("/wallet/history/{user_id}", response_model=WalletHistoryResponse)
def get_wallet_history(user_id: str, queries: RecordQueries = Depends(get_queries)):
    uid = _require_id(user_id, "userId")
    return WalletHistoryResponse(
        userId=uid, entries=_documents(queries.get_wallet_history(uid))
    )


@router.get("/invoice-meta/projects", response_model=list[InvoiceProjectMeta])
def list_invoice_projects(
    freelancer_id: Optional[str] = Query(None, alias="freelancerId"),
    queries: RecordQueries = Depends(get_queries),
):
    fid = _require_id(freelancer_id, "freelancerId")
    return [
        InvoiceProjectMeta(projectId=p.projectId, title=p.title)
        for p in queries.get_projects_by_freelancer(fid)
    ]


@router.get("/invoices/drafts")
def list_draft_invoices(
    freelancer_id: Optional[str] = Query(None, alias="freelancerId"),
    queries: RecordQueries = Depends(get_queries),
):
    fid = _require_id(freelancer_id, "freelancerId")
    return _documents(queries.get_draft_invoices_by_freelancer(fid))


@router.get("/messages/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    user_id: Optional[str] = Query(None, alias="userId"),
    queries: RecordQueries = Depends(get_queries),
):
    uid = _require_id(user_id, "userId")
    return UnreadCountResponse(userId=uid, unreadCount=queries.count_unread_threads(uid))


@router.get("/notifications", response_model=list[NotificationView])
def list_notifications(
    user_id: Optional[str] = Query(None, alias="userId"),
    queries: RecordQueries = Depends(get_queries),
):
    uid = _require_id(user_id, "userId")
    actions = queries.get_actions_for_user(uid)
    return [
        NotificationView(notification=n.to_document(), actioned=actions.get(n.id))
        for n in queries.get_notifications_for_user(uid)
    ]


@router.post("/notifications/mark-actioned", response_model=SuccessResponse)
def mark_notification_actioned(
    payload: MarkActionedRequest, queries: RecordQueries = Depends(get_queries)
):
    queries.mark_as_actioned(payload.notificationId, payload.userId, payload.action)
    logger.info(
        "Notification %s marked %r by user %s",
        payload.notificationId,
        payload.action,
        payload.userId,
    )
    return SuccessResponse()


@router.get("/storefront/revenue-chart", response_model=RevenueChartResponse)
def get_revenue_chart(
    range_name: str = Query("month", alias="range", min_length=1, max_length=32),
    user_id: int = Depends(get_session_user_id),
    queries: RecordQueries = Depends(get_queries),
):
    series = queries.get_revenue_chart(user_id, range_name)
    return RevenueChartResponse(current=series.current, previous=series.previous)
