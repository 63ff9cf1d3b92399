"""
Typed accessors over the record store.

Every lookup is a linear scan of one collection. Ids are compared as ints;
callers parse incoming identifiers with ``records.parse_id`` first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from marketplace.errors import InvalidRecordShape
from marketplace.records import (
    ChartSeries,
    ContactMap,
    EarningsRecord,
    Freelancer,
    Gig,
    Invoice,
    Milestone,
    MessageThread,
    Notification,
    NotificationAction,
    Organization,
    Project,
    Proposal,
    StorefrontRevenue,
    User,
    WalletHistoryEntry,
)
from marketplace.storage import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"


def _first(records, predicate):
    return next((r for r in records if predicate(r)), None)


class RecordQueries:
    """Query façade used by every route handler."""

    def __init__(self, store: RecordStore):
        self.store = store

    # ------------------------------------------------------------------
    # Users
    def get_all_users(self) -> list[User]:
        return self.store.read_collection("users")

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return _first(self.get_all_users(), lambda u: u.id == user_id)

    def get_users_by_type(self, user_type: str) -> list[User]:
        return [u for u in self.get_all_users() if u.type == user_type]

    def get_commissioners(self) -> list[User]:
        return self.get_users_by_type("commissioner")

    def get_freelancer_users(self) -> list[User]:
        return self.get_users_by_type("freelancer")

    def save_user(self, user: User) -> User:
        self.store.update_collection(
            "users",
            lambda users: [u for u in users if u.id != user.id] + [user],
        )
        return user

    # ------------------------------------------------------------------
    # Freelancers
    def get_all_freelancers(self) -> list[Freelancer]:
        return self.store.read_collection("freelancers")

    def get_freelancer_by_id(self, freelancer_id: int) -> Optional[Freelancer]:
        return _first(self.get_all_freelancers(), lambda f: f.id == freelancer_id)

    def get_freelancer_by_user_id(self, user_id: int) -> Optional[Freelancer]:
        return _first(self.get_all_freelancers(), lambda f: f.userId == user_id)

    # ------------------------------------------------------------------
    # Organizations
    def get_all_organizations(self) -> list[Organization]:
        return self.store.read_collection("organizations")

    def get_organization_by_id(self, organization_id: int) -> Optional[Organization]:
        return _first(self.get_all_organizations(), lambda o: o.id == organization_id)

    def get_organization_by_name(self, name: str) -> Optional[Organization]:
        wanted = name.strip().casefold()
        return _first(
            self.get_all_organizations(), lambda o: o.name.strip().casefold() == wanted
        )

    def get_organization_by_commissioner(
        self, commissioner_id: int
    ) -> Optional[Organization]:
        return _first(
            self.get_all_organizations(), lambda o: o.commissionerId == commissioner_id
        )

    # ------------------------------------------------------------------
    # Projects, gigs, proposals, milestones
    def get_all_projects(self) -> list[Project]:
        return self.store.read_collection("projects")

    def get_project_by_id(self, project_id: int) -> Optional[Project]:
        return _first(self.get_all_projects(), lambda p: p.projectId == project_id)

    def get_projects_by_freelancer(self, freelancer_id: int) -> list[Project]:
        return [p for p in self.get_all_projects() if p.freelancerId == freelancer_id]

    def get_projects_by_commissioner(self, commissioner_id: int) -> list[Project]:
        return [
            p for p in self.get_all_projects() if p.commissionerId == commissioner_id
        ]

    def save_project(self, project: Project) -> Project:
        self.store.update_collection(
            "projects",
            lambda projects: [p for p in projects if p.projectId != project.projectId]
            + [project],
        )
        return project

    def get_gigs_by_commissioner(self, commissioner_id: int) -> list[Gig]:
        return [
            g
            for g in self.store.read_collection("gigs")
            if g.commissionerId == commissioner_id
        ]

    def get_proposals_by_freelancer(self, freelancer_id: int) -> list[Proposal]:
        return [
            p
            for p in self.store.read_collection("proposals")
            if p.freelancerId == freelancer_id
        ]

    def get_proposals_by_commissioner(self, commissioner_id: int) -> list[Proposal]:
        return [
            p
            for p in self.store.read_collection("proposals")
            if p.commissionerId == commissioner_id
        ]

    def get_milestone_by_id(self, milestone_id: int) -> Optional[Milestone]:
        return _first(
            self.store.read_collection("milestones"),
            lambda m: m.milestoneId == milestone_id,
        )

    def get_milestones_by_project(self, project_id: int) -> list[Milestone]:
        return [
            m
            for m in self.store.read_collection("milestones")
            if m.projectId == project_id
        ]

    # ------------------------------------------------------------------
    # Invoices, wallet, earnings
    def get_invoices_by_freelancer(self, freelancer_id: int) -> list[Invoice]:
        return [
            i
            for i in self.store.read_collection("invoices")
            if i.freelancerId == freelancer_id
        ]

    def get_draft_invoices_by_freelancer(self, freelancer_id: int) -> list[Invoice]:
        return [
            i for i in self.get_invoices_by_freelancer(freelancer_id) if i.status == "draft"
        ]

    def save_invoice(self, invoice: Invoice) -> Invoice:
        self.store.update_collection(
            "invoices",
            lambda invoices: [
                i for i in invoices if i.invoiceNumber != invoice.invoiceNumber
            ]
            + [invoice],
        )
        return invoice

    def get_wallet_history(self, user_id: int) -> list[WalletHistoryEntry]:
        return [
            e
            for e in self.store.read_collection("wallet_history")
            if e.userId == user_id
        ]

    def get_earnings(self, user_id: int) -> EarningsRecord:
        """Return the user's earnings, or a zero record when none is stored."""
        record = _first(
            self.store.read_collection("earnings"), lambda e: e.userId == user_id
        )
        if record is None:
            return EarningsRecord(
                userId=user_id, amount=0, currency=DEFAULT_CURRENCY, lastUpdated=None
            )
        return record

    # ------------------------------------------------------------------
    # Messages and contacts
    def get_threads_for_user(self, user_id: int) -> list[MessageThread]:
        return [
            t
            for t in self.store.read_collection("message_threads")
            if user_id in t.participants
        ]

    def count_unread_threads(self, user_id: int) -> int:
        return sum(
            1
            for t in self.get_threads_for_user(user_id)
            if any(m.is_unread_for(user_id) for m in t.messages)
        )

    def get_contacts(self, user_id: int) -> list[User]:
        """Resolve the user's contact ids against the users collection."""
        entry: Optional[ContactMap] = _first(
            self.store.read_collection("contacts"), lambda c: c.userId == user_id
        )
        if entry is None:
            return []
        users = {u.id: u for u in self.get_all_users()}
        resolved = [users[c] for c in entry.contacts if c in users]
        missing = len(entry.contacts) - len(resolved)
        if missing:
            logger.info("Dropped %d unknown contacts for user %s", missing, user_id)
        return resolved

    # ------------------------------------------------------------------
    # Notifications
    def get_notifications_for_user(self, user_id: int) -> list[Notification]:
        return [
            n
            for n in self.store.read_collection("notifications")
            if n.targetId == user_id
        ]

    def get_actions_for_user(self, user_id: int) -> dict[str, str]:
        return {
            a.notificationId: a.action
            for a in self.store.read_collection("notification_actions")
            if a.userId == user_id
        }

    def is_actioned(self, notification_id: str, user_id: int) -> Optional[str]:
        return self.get_actions_for_user(user_id).get(notification_id)

    def mark_as_actioned(self, notification_id: str, user_id: int, action: str) -> None:
        """Record ``action`` for the user. Repeating the same call writes nothing."""

        def apply(actions: list) -> Optional[list]:
            existing = _first(
                actions,
                lambda a: a.notificationId == notification_id and a.userId == user_id,
            )
            if existing is not None and existing.action == action:
                return None
            kept = [a for a in actions if a is not existing]
            kept.append(
                NotificationAction(
                    notificationId=notification_id,
                    userId=user_id,
                    action=action,
                    actionedAt=datetime.now(timezone.utc).isoformat(),
                )
            )
            return kept

        self.store.update_collection("notification_actions", apply)

    # ------------------------------------------------------------------
    # Storefront
    def get_revenue_chart(self, user_id: int, range_name: str) -> ChartSeries:
        """Return the stored series for ``range_name``, or an empty series."""
        entry: Optional[StorefrontRevenue] = _first(
            self.store.read_collection("storefront_revenue"),
            lambda r: r.userId == user_id,
        )
        if entry is None or entry.ranges.get(range_name) is None:
            return ChartSeries()
        try:
            return ChartSeries.model_validate(entry.ranges[range_name])
        except ValidationError as exc:
            raise InvalidRecordShape(
                f"Revenue chart for user {user_id} range {range_name!r} is malformed",
                entity="storefront_revenue",
            ) from exc
