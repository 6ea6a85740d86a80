# parkhub/schemas/parking_space.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from parkhub.models.enums import SpaceStatus, TransitionKind, VehicleClass


class ReservationOut(BaseModel):
    plate: str
    vehicle_class: VehicleClass
    created_at: datetime
    expires_at: datetime


class ParkingSpaceOut(BaseModel):
    number: str
    zone: str
    vehicle_class: VehicleClass
    status: SpaceStatus
    reservation: Optional[ReservationOut] = None
    current_session_id: Optional[str] = None
    out_of_service_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransitionOut(BaseModel):
    kind: TransitionKind
    previous_status: SpaceStatus
    space: ParkingSpaceOut


class ReserveRequest(BaseModel):
    plate: str = Field(min_length=1, max_length=50)
    vehicle_class: VehicleClass
    ttl_seconds: Optional[int] = Field(default=None, gt=0)   # defaults to RESERVATION_TTL_SECONDS


class OccupyRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=100)
    plate: Optional[str] = None          # required when the space is reserved
    vehicle_class: Optional[VehicleClass] = None


class FreeRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=100)


class OutOfServiceRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    force: bool = False


class SpaceStatusHistoryOut(BaseModel):
    id: int
    space_number: str
    previous_status: SpaceStatus
    new_status: SpaceStatus
    action: TransitionKind
    reason: Optional[str]
    changed_by: str
    session_id: Optional[str]
    plate: Optional[str]
    vehicle_class: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True
