# parkhub/schemas/notification.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class NotificationOut(BaseModel):
    id: int
    kind: str
    type: str
    title: str
    message: str
    category: str
    space_number: Optional[str]
    plate: Optional[str]
    vehicle_class: Optional[str]
    reason: Optional[str]
    is_read: int
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True
