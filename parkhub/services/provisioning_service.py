# parkhub/services/provisioning_service.py
"""
One-shot provisioning: make the lot hold exactly `total` spaces.

Space numbers are <zone><NNN> with NNN the 1-based index over the whole lot;
zones take contiguous blocks. Truck and motorcycle spaces are spread evenly
according to the configured ratios, everything else is a car space.
"""

from dataclasses import dataclass
from datetime import datetime
from math import floor
from typing import Callable

from parkhub.exceptions import InvalidTransitionRequest, ProvisioningConflict
from parkhub.models.enums import SpaceStatus, VehicleClass
from parkhub.models.parking_space import ParkingSpace
from parkhub.services.space_store import SpaceStore
from parkhub.utils.logger import get_logger
from parkhub.utils.timeutil import utcnow

logger = get_logger(__name__)


@dataclass
class ProvisionReport:
    total: int
    previous_count: int
    created: int


def _spread(i: int, ratio: float, offset: float = 0.0) -> bool:
    """True for roughly ratio * n of the indices 0..n-1, evenly spaced."""
    return floor((i + 1) * ratio + offset) > floor(i * ratio + offset)


def plan_spaces(total: int, zones: list[str], truck_ratio: float = 0.0,
                motorcycle_ratio: float = 0.0) -> list[tuple[str, str, VehicleClass]]:
    """Returns (number, zone, vehicle_class) for every space of the lot."""
    zones = zones or ["A"]
    plan = []
    for i in range(total):
        zone = zones[i * len(zones) // total]
        if _spread(i, truck_ratio):
            vehicle_class = VehicleClass.TRUCK
        elif _spread(i, motorcycle_ratio, offset=0.5):
            vehicle_class = VehicleClass.MOTORCYCLE
        else:
            vehicle_class = VehicleClass.CAR
        plan.append((f"{zone}{i + 1:03d}", zone, vehicle_class))
    return plan


def provision_spaces(store: SpaceStore, total: int, zones: list[str],
                     truck_ratio: float = 0.0, motorcycle_ratio: float = 0.0,
                     force: bool = False,
                     clock: Callable[[], datetime] = utcnow) -> ProvisionReport:
    """
    No-op when the lot already holds `total` spaces. Otherwise replaces every
    space with `total` free ones; refused while any space is reserved or
    occupied unless `force` is set.
    """
    if total < 0:
        raise InvalidTransitionRequest("total_spaces must not be negative")

    current = store.count()
    if current == total:
        logger.info(f"[PROVISION] {total} spaces already provisioned, nothing to do")
        return ProvisionReport(total=total, previous_count=current, created=0)

    active = store.count_active()
    if active and not force:
        raise ProvisioningConflict(
            f"{active} space(s) are reserved or occupied; free them or force provisioning")

    now = clock()
    spaces = [
        ParkingSpace(number=number, zone=zone, vehicle_class=vehicle_class.value,
                     status=SpaceStatus.FREE.value, created_at=now, updated_at=now)
        for number, zone, vehicle_class in plan_spaces(total, zones, truck_ratio, motorcycle_ratio)
    ]
    with store.transaction():
        store.replace_all(spaces)

    logger.warning(f"[PROVISION] Replaced {current} space(s) with {total} free space(s) in zones {zones}")
    return ProvisionReport(total=total, previous_count=current, created=total)
