from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

NotificationType = Literal["medicine", "appointment", "tip", "schedule", "other"]
ReminderType = Literal["schedule", "medicine"]
NotificationSource = Literal["server", "local"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Schedule(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    title: str
    time: str
    duration: int = 0
    category: str = "other"
    completed: bool = False
    sms_enabled: bool = True


class Medicine(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    name: str
    dosage: str
    frequency: str = "daily"
    time: str
    stock_level: int = 30
    sms_enabled: bool = True


class EmergencyContact(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    email: str
    name: Optional[str] = None
    relationship: Optional[str] = None


class HealthReport(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    file_name: str
    blood_pressure: Optional[str] = None
    blood_sugar: Optional[str] = None
    heart_rate: Optional[str] = None


class Notification(BaseModel):
    """A durable notification as returned by the API."""
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    title: str
    message: str
    type: NotificationType = "other"
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class LocalReminderEntry(BaseModel):
    """A reminder recorded in the device-local journal."""
    model_config = ConfigDict(extra="ignore")
    id: int
    user_id: int
    source_id: int
    title: str
    message: str
    type: ReminderType
    read: bool = False
    created_at: datetime


class NotificationKey(BaseModel):
    model_config = ConfigDict(frozen=True)
    source: NotificationSource
    id: int

    def __str__(self) -> str:
        return f"{self.source}:{self.id}"


class FeedItem(BaseModel):
    key: NotificationKey
    user_id: int
    title: str
    message: str
    type: str
    read: bool
    created_at: datetime
    source_id: Optional[int] = None

    @classmethod
    def from_server(cls, notification: Notification) -> "FeedItem":
        return cls(
            key=NotificationKey(source="server", id=notification.id),
            **notification.model_dump(exclude={"id"})
        )

    @classmethod
    def from_local(cls, entry: LocalReminderEntry) -> "FeedItem":
        return cls(
            key=NotificationKey(source="local", id=entry.id),
            **entry.model_dump(exclude={"id"})
        )


class NotificationFeed(BaseModel):
    user_id: int
    items: List[FeedItem] = []
    unread_count: int = 0
    stale: bool = False
    errors: List[str] = []


class MarkAllReadResult(BaseModel):
    user_id: int
    server_ok: bool
    local_ok: bool
    server_error: Optional[str] = None
    local_error: Optional[str] = None
    local_updated: int = 0

    @property
    def ok(self) -> bool:
        return self.server_ok and self.local_ok
