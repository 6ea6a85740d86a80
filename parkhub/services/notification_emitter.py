# parkhub/services/notification_emitter.py
"""
Turns a committed space transition into a user-facing notification and hands
it to every configured sink (notification table, optional webhook).

Delivery is best-effort: a sink failure is logged and never reaches the
transition caller. The transition is already committed when emit() runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Iterable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from parkhub.database import Database
from parkhub.exceptions import NotificationSinkUnavailable
from parkhub.models.enums import SpaceStatus, TransitionKind
from parkhub.models.notification import Notification
from parkhub.utils.logger import get_logger
from parkhub.utils.timeutil import utcnow

logger = get_logger(__name__)

CATEGORY = "parking"


@dataclass
class NotificationEvent:
    kind: TransitionKind
    space_number: str
    previous_status: SpaceStatus
    plate: Optional[str] = None
    vehicle_class: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class NotificationTemplate:
    type: str       # info | success | warning | error
    title: str
    message: str    # str.format template over the event fields


TEMPLATES: dict[TransitionKind, NotificationTemplate] = {
    TransitionKind.RESERVED: NotificationTemplate(
        "warning", "Reservation created",
        "Space {space_number} reserved for {plate} ({vehicle_class}) - expires at {expires_at}",
    ),
    TransitionKind.RESERVATION_CANCELLED: NotificationTemplate(
        "info", "Reservation ended",
        "Reservation on space {space_number} for {plate} ({vehicle_class}) ended - {reason}",
    ),
    TransitionKind.OCCUPIED: NotificationTemplate(
        "info", "Space occupied",
        "Space {space_number} occupied by {plate} ({vehicle_class}), session {session_id}",
    ),
    TransitionKind.FREED: NotificationTemplate(
        "success", "Space freed",
        "Space {space_number} freed - session {session_id} ended",
    ),
    TransitionKind.OUT_OF_SERVICE: NotificationTemplate(
        "error", "Space out of service",
        "Space {space_number} taken out of service - {reason}",
    ),
    TransitionKind.IN_SERVICE: NotificationTemplate(
        "success", "Space back in service",
        "Space {space_number} is back in service",
    ),
}


@dataclass
class RenderedNotification:
    kind: str
    type: str
    title: str
    message: str
    category: str
    space_number: str
    plate: Optional[str]
    vehicle_class: Optional[str]
    reason: Optional[str]
    created_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


def render_notification(event: NotificationEvent) -> RenderedNotification:
    template = TEMPLATES[event.kind]
    values = {
        "space_number": event.space_number,
        "plate": event.plate or "-",
        "vehicle_class": event.vehicle_class or "-",
        "reason": event.reason or "-",
        "session_id": event.session_id or "-",
        "expires_at": event.expires_at.strftime("%H:%M:%S") if event.expires_at else "-",
    }
    return RenderedNotification(
        kind=event.kind.value,
        type=template.type,
        title=template.title,
        message=template.message.format(**values),
        category=CATEGORY,
        space_number=event.space_number,
        plate=event.plate,
        vehicle_class=event.vehicle_class,
        reason=event.reason,
        created_at=event.timestamp,
    )


class NotificationSink(ABC):
    name = "sink"

    @abstractmethod
    def emit(self, notification: RenderedNotification):
        """Deliver one notification or raise NotificationSinkUnavailable."""

    def close(self):
        pass


class DatabaseNotificationSink(NotificationSink):
    """Stores notifications in the notifications table, in its own session."""
    name = "database"

    def __init__(self, database: Database):
        self.database = database

    def emit(self, notification: RenderedNotification):
        db = self.database.session()
        try:
            db.add(Notification(
                kind=notification.kind, type=notification.type,
                title=notification.title, message=notification.message,
                category=notification.category, space_number=notification.space_number,
                plate=notification.plate, vehicle_class=notification.vehicle_class,
                reason=notification.reason, is_read=0, created_at=notification.created_at,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise NotificationSinkUnavailable(f"notification store: {e}") from e
        finally:
            db.close()


class WebhookNotificationSink(NotificationSink):
    """POSTs each notification as JSON to an external endpoint (push gateway, chat hook, ...)."""
    name = "webhook"

    def __init__(self, url: str, timeout: float = 3.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def emit(self, notification: RenderedNotification):
        try:
            response = self.client.post(self.url, json=notification.to_dict())
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NotificationSinkUnavailable(f"webhook {self.url}: {e}") from e

    def close(self):
        self.client.close()


class NotificationEmitter:
    def __init__(self, sinks: Iterable[NotificationSink] = ()):
        self.sinks = list(sinks)

    def emit(self, event: NotificationEvent) -> RenderedNotification:
        """One emission per transition. Never raises because of a sink."""
        notification = render_notification(event)
        logger.info(f"[NOTIFY][{notification.kind.upper()}] {notification.message}")
        for sink in self.sinks:
            try:
                sink.emit(notification)
            except NotificationSinkUnavailable as e:
                logger.warning(f"[NOTIFY] {sink.name} sink failed, notification dropped: {e}")
            except Exception as e:
                logger.error(f"[NOTIFY] {sink.name} sink crashed, notification dropped: {e}", exc_info=True)
        return notification

    def close(self):
        for sink in self.sinks:
            sink.close()
