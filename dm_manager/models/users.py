"""User profile and booking data models."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Booking:
    """A confirmed net-session booking."""

    id: str
    user_id: str
    thread_id: str
    session_date: str
    booked_at: datetime
    user_name: str | None = None
    phone: str | None = None


@dataclass
class UserProfile:
    """What we remember about an Instagram user."""

    user_id: str
    first_contact: datetime | None = None
    last_notification: datetime | None = None
    last_booking: datetime | None = None
    bookings: list[Booking] = field(default_factory=list)


@dataclass
class CooldownStatus:
    """Whether the manager may be notified about a user again."""

    can_notify: bool
    last_notification: datetime | None = None
    days_since_last_notification: int | None = None
