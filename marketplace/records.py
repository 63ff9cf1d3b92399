"""
Typed record models for every entity collection in the record store.

All id and foreign-key fields go through ``NumericId`` so numeric strings are
parsed into ints when a record is written, and anything non-numeric is
rejected instead of being stored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

_NUMERIC_RE = re.compile(r"^\s*[0-9]+\s*$", re.ASCII)


def parse_id(value: Any) -> int:
    """Parse an identifier into an int, accepting ints and digit strings."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value):
        return int(value)
    raise ValueError(f"Invalid id: {value!r}")


NumericId = Annotated[int, BeforeValidator(parse_id)]


class Record(BaseModel):
    """Base for stored records. Unknown fields are kept as-is."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude_unset=True)


class User(Record):
    id: NumericId
    type: Literal["commissioner", "freelancer"]
    name: str
    title: Optional[str] = None
    avatar: Optional[str] = None
    email: Optional[str] = None


class Freelancer(Record):
    id: NumericId
    userId: NumericId
    availability: Optional[str] = None
    rating: Optional[float] = None
    category: Optional[str] = None
    skills: list[str] = Field(default_factory=list)


class Organization(Record):
    id: NumericId
    name: str
    commissionerId: NumericId
    logo: Optional[str] = None


class Project(Record):
    # Older project documents carry the key as ``id``.
    projectId: NumericId = Field(validation_alias=AliasChoices("projectId", "id"))
    freelancerId: NumericId
    commissionerId: Optional[NumericId] = None
    title: str
    status: Optional[str] = None
    createdAt: Optional[str] = None


class Gig(Record):
    id: NumericId
    commissionerId: NumericId
    title: str
    status: Optional[str] = None
    organizationId: Optional[NumericId] = None


class Proposal(Record):
    id: NumericId
    freelancerId: NumericId
    commissionerId: NumericId
    title: str
    status: Optional[str] = None


class Task(Record):
    taskId: NumericId
    title: str
    status: str
    submittedAt: Optional[str] = None
    completedAt: Optional[str] = None


class Milestone(Record):
    milestoneId: NumericId
    projectId: NumericId
    title: str
    tasks: list[Task] = Field(default_factory=list)


class Invoice(Record):
    invoiceNumber: str
    freelancerId: NumericId
    projectId: Optional[NumericId] = None
    status: str = "draft"
    totalAmount: float = 0.0


class Message(Record):
    messageId: Optional[str] = None
    senderId: NumericId
    timestamp: str
    text: str
    read: dict[str, bool] = Field(default_factory=dict)

    def is_unread_for(self, user_id: int) -> bool:
        return self.read.get(str(user_id)) is False


class MessageThread(Record):
    threadId: str
    participants: list[NumericId] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)


class ContactMap(Record):
    userId: NumericId
    contacts: list[NumericId] = Field(default_factory=list)


class WalletHistoryEntry(Record):
    id: NumericId
    userId: NumericId
    type: str
    amount: float
    currency: str = "USD"
    date: Optional[str] = None


class EarningsRecord(Record):
    userId: NumericId
    amount: float
    currency: str = "USD"
    lastUpdated: Optional[str] = None


class Notification(Record):
    id: str
    type: str
    targetId: NumericId
    actorId: Optional[NumericId] = None
    timestamp: str


class NotificationAction(Record):
    notificationId: str
    userId: NumericId
    action: str
    actionedAt: Optional[str] = None


class StorefrontRevenue(Record):
    userId: NumericId
    ranges: dict[str, Any] = Field(default_factory=dict)


class ChartSeries(BaseModel):
    current: list[float] = Field(default_factory=list)
    previous: list[float] = Field(default_factory=list)


@dataclass(frozen=True)
class EntitySpec:
    """Binds a collection name to its record model and key fields."""

    name: str
    model: type[Record]
    key_fields: tuple[str, ...]

    def key_for(self, document: dict) -> str:
        return "-".join(str(document[field]) for field in self.key_fields)

    def key_or_none(self, document: Any) -> Optional[str]:
        """Like ``key_for``, but None for documents without every key field."""
        if not isinstance(document, dict):
            return None
        if any(document.get(field) in (None, "") for field in self.key_fields):
            return None
        return self.key_for(document)


ENTITIES: dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (
        EntitySpec("users", User, ("id",)),
        EntitySpec("freelancers", Freelancer, ("id",)),
        EntitySpec("organizations", Organization, ("id",)),
        EntitySpec("projects", Project, ("projectId",)),
        EntitySpec("gigs", Gig, ("id",)),
        EntitySpec("proposals", Proposal, ("id",)),
        EntitySpec("milestones", Milestone, ("milestoneId",)),
        EntitySpec("invoices", Invoice, ("invoiceNumber",)),
        EntitySpec("message_threads", MessageThread, ("threadId",)),
        EntitySpec("contacts", ContactMap, ("userId",)),
        EntitySpec("wallet_history", WalletHistoryEntry, ("id",)),
        EntitySpec("earnings", EarningsRecord, ("userId",)),
        EntitySpec("notifications", Notification, ("id",)),
        EntitySpec(
            "notification_actions", NotificationAction, ("notificationId", "userId")
        ),
        EntitySpec("storefront_revenue", StorefrontRevenue, ("userId",)),
    )
}


def get_entity(name: str) -> EntitySpec:
    try:
        return ENTITIES[name]
    except KeyError:
        raise KeyError(f"Unknown entity collection: {name}") from None
