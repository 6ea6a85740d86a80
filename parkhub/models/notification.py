# parkhub/models/notification.py
"""
Notifications table: user-facing records produced by NotificationEmitter.
Filled by DatabaseNotificationSink; read by the dashboard's notification panel.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from parkhub.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(50), nullable=False, index=True)     # TransitionKind value
    type = Column(String(20), nullable=False)                 # info | success | warning | error
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, default="parking")
    space_number = Column(String(20), index=True)
    plate = Column(String(50))
    vehicle_class = Column(String(20))
    reason = Column(String(255))
    is_read = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    read_at = Column(DateTime)

    def __repr__(self):
        return f"<Notification {self.id} kind={self.kind} space={self.space_number}>"
