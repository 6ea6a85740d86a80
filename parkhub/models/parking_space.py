# parkhub/models/parking_space.py
"""
Parking spaces table: one row per physical slot.
Status, reservation and session columns are only ever changed through
SpaceLifecycleService (via SpaceStore.cas_update_space).
"""

from sqlalchemy import Column, Integer, String, DateTime, Index
from parkhub.database import Base
from parkhub.models.enums import SpaceStatus


class ParkingSpace(Base):
    __tablename__ = "parking_spaces"
    __table_args__ = (
        Index("ix_parking_spaces_status_expiry", "status", "reservation_expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(String(20), unique=True, nullable=False, index=True)
    zone = Column(String(50), nullable=False, index=True)
    vehicle_class = Column(String(20), nullable=False)     # car | truck | motorcycle
    status = Column(String(20), nullable=False, default=SpaceStatus.FREE.value, index=True)

    # Set iff status == reserved
    reservation_plate = Column(String(50))
    reservation_vehicle_class = Column(String(20))
    reservation_created_at = Column(DateTime)
    reservation_expires_at = Column(DateTime)

    # Set iff status == occupied; the session itself lives outside this service
    current_session_id = Column(String(100))

    # Set iff status == out_of_service
    out_of_service_reason = Column(String(255))

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)

    @property
    def space_status(self) -> SpaceStatus:
        return SpaceStatus(self.status)

    @property
    def reservation(self):
        if self.reservation_plate is None:
            return None
        return {
            "plate": self.reservation_plate,
            "vehicle_class": self.reservation_vehicle_class,
            "created_at": self.reservation_created_at,
            "expires_at": self.reservation_expires_at,
        }

    def __repr__(self):
        return f"<ParkingSpace {self.number} zone={self.zone} status={self.status}>"
