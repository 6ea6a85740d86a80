# parkhub/models/enums.py
"""Closed vocabularies shared by the models, schemas, and services."""

from enum import Enum


class SpaceStatus(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    OUT_OF_SERVICE = "out_of_service"


class VehicleClass(str, Enum):
    CAR = "car"
    TRUCK = "truck"
    MOTORCYCLE = "motorcycle"


class TransitionKind(str, Enum):
    RESERVED = "reserved"
    RESERVATION_CANCELLED = "reservation_cancelled"
    OCCUPIED = "occupied"
    FREED = "freed"
    OUT_OF_SERVICE = "out_of_service"
    IN_SERVICE = "in_service"


class ChangedBy(str, Enum):
    USER = "user"
    SYSTEM = "system"
    SESSION = "session"


# Reasons attached to reservation cancellations
REASON_CANCELLED_BY_USER = "cancelled_by_user"
REASON_EXPIRED = "expired"
