# parkhub/models/space_status_history.py
"""
Space status history: one row per committed transition.
Written in the same transaction as the space update, so the audit trail
never disagrees with the current status.
"""

from sqlalchemy import Column, Integer, String, DateTime
from parkhub.database import Base


class SpaceStatusHistory(Base):
    __tablename__ = "space_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    space_number = Column(String(20), nullable=False, index=True)
    previous_status = Column(String(20), nullable=False)
    new_status = Column(String(20), nullable=False)
    action = Column(String(50), nullable=False)          # TransitionKind value
    reason = Column(String(255))
    changed_by = Column(String(20), nullable=False)      # user | system | session
    session_id = Column(String(100))
    plate = Column(String(50))
    vehicle_class = Column(String(20))
    expires_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<SpaceStatusHistory {self.space_number} {self.previous_status}->{self.new_status}>"
