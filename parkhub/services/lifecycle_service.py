# parkhub/services/lifecycle_service.py
"""
SpaceLifecycleService: the only code allowed to change a space's status.

  free ──reserve──▶ reserved ──cancel_reservation / sweep──▶ free
  free | reserved(same plate) ──occupy──▶ occupied ──free(same session)──▶ free
  free (| reserved | occupied with force) ──set_out_of_service──▶ out_of_service
  out_of_service ──set_in_service──▶ free

Every transition:
  1. reads the space and raises the precise PreconditionFailed subclass if the
     move is illegal (nothing written),
  2. applies a conditional UPDATE plus a history row in one transaction,
  3. if the conditional UPDATE lost a race, re-reads and raises the error that
     matches the state that won,
  4. after commit, emits one notification and publishes one feed change.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from parkhub.exceptions import (
    InvalidTransitionRequest, NotAvailable, NotEligible, NotOutOfService, NotReserved,
    PlateMismatch, PlateRequired, PreconditionFailed, ReservationNotExpired, SessionMismatch,
)
from parkhub.models.enums import (
    ChangedBy, REASON_CANCELLED_BY_USER, SpaceStatus, TransitionKind, VehicleClass,
)
from parkhub.models.parking_space import ParkingSpace
from parkhub.services.change_feed import SpaceChange, SpaceChangeFeed
from parkhub.services.notification_emitter import NotificationEmitter, NotificationEvent
from parkhub.services.space_store import SpaceStore
from parkhub.utils.logger import get_logger
from parkhub.utils.timeutil import utcnow

logger = get_logger(__name__)

_CLEARED_RESERVATION = {
    "reservation_plate": None,
    "reservation_vehicle_class": None,
    "reservation_created_at": None,
    "reservation_expires_at": None,
}


@dataclass
class TransitionResult:
    space: ParkingSpace
    event: NotificationEvent


def normalize_plate(plate: Optional[str]) -> Optional[str]:
    if plate is None:
        return None
    plate = plate.strip().upper()
    return plate or None


def _unhandled(status: SpaceStatus):
    raise AssertionError(f"Unhandled space status: {status!r}")


class SpaceLifecycleService:
    def __init__(self, store: SpaceStore, emitter: Optional[NotificationEmitter] = None,
                 change_feed: Optional[SpaceChangeFeed] = None,
                 clock: Callable[[], datetime] = utcnow,
                 max_ttl_seconds: Optional[int] = None):
        self.store = store
        self.emitter = emitter
        self.change_feed = change_feed
        self.clock = clock
        self.max_ttl_seconds = max_ttl_seconds

    # ── reserve ───────────────────────────────────────────────────────────
    def reserve(self, number: str, plate: str, vehicle_class: Union[VehicleClass, str],
                ttl: Union[timedelta, int, float],
                changed_by: ChangedBy = ChangedBy.USER) -> TransitionResult:
        plate = normalize_plate(plate)
        if not plate:
            raise InvalidTransitionRequest("A plate is required to reserve a space", number)
        vehicle_class = self._vehicle_class(vehicle_class, number)
        ttl_delta = ttl if isinstance(ttl, timedelta) else timedelta(seconds=float(ttl))
        ttl_seconds = ttl_delta.total_seconds()
        # Sub-microsecond ttls round to zero
        if ttl_delta <= timedelta(0):
            raise InvalidTransitionRequest("Reservation ttl must be positive", number)
        if self.max_ttl_seconds and ttl_seconds > self.max_ttl_seconds:
            raise InvalidTransitionRequest(
                f"Reservation ttl exceeds the {self.max_ttl_seconds}s maximum", number)

        space = self.store.get_space(number)
        self._check_reservable(space)

        now = self.clock()
        expires_at = now + ttl_delta
        event = NotificationEvent(
            kind=TransitionKind.RESERVED, space_number=number, previous_status=SpaceStatus.FREE,
            plate=plate, vehicle_class=vehicle_class.value, expires_at=expires_at, timestamp=now,
        )
        fields = {
            "status": SpaceStatus.RESERVED.value,
            "reservation_plate": plate,
            "reservation_vehicle_class": vehicle_class.value,
            "reservation_created_at": now,
            "reservation_expires_at": expires_at,
            "updated_at": now,
        }
        return self._apply(space, fields, event, changed_by,
                           recheck=self._check_reservable,
                           lost_race=NotAvailable(f"Space {number} changed concurrently, retry", number))

    def _check_reservable(self, space: ParkingSpace):
        status = space.space_status
        if status == SpaceStatus.FREE:
            return
        if status == SpaceStatus.RESERVED:
            raise NotAvailable(f"Space {space.number} is already reserved", space.number)
        if status == SpaceStatus.OCCUPIED:
            raise NotAvailable(f"Space {space.number} is occupied", space.number)
        if status == SpaceStatus.OUT_OF_SERVICE:
            raise NotAvailable(f"Space {space.number} is out of service", space.number)
        _unhandled(status)

    # ── cancel_reservation ────────────────────────────────────────────────
    def cancel_reservation(self, number: str, reason: str = REASON_CANCELLED_BY_USER,
                           changed_by: ChangedBy = ChangedBy.USER,
                           expired_before: Optional[datetime] = None) -> TransitionResult:
        """
        Release a reservation. The expiry sweep calls this with reason="expired"
        and `expired_before=now`, so a hold that has not reached its deadline
        is never released by the sweep.
        """
        space = self.store.get_space(number)

        def check(current: ParkingSpace):
            if current.space_status != SpaceStatus.RESERVED:
                raise NotReserved(f"Space {current.number} is not reserved ({current.status})", current.number)
            if expired_before is not None and current.reservation_expires_at > expired_before:
                raise ReservationNotExpired(
                    f"Reservation on {current.number} runs until {current.reservation_expires_at}",
                    current.number)

        check(space)
        now = self.clock()
        event = NotificationEvent(
            kind=TransitionKind.RESERVATION_CANCELLED, space_number=number,
            previous_status=SpaceStatus.RESERVED, plate=space.reservation_plate,
            vehicle_class=space.reservation_vehicle_class, reason=reason,
            expires_at=space.reservation_expires_at, timestamp=now,
        )
        fields = {"status": SpaceStatus.FREE.value, **_CLEARED_RESERVATION, "updated_at": now}
        return self._apply(space, fields, event, changed_by,
                           guards={"expected_plate": space.reservation_plate,
                                   "expired_before": expired_before},
                           recheck=check,
                           lost_race=NotReserved(f"Reservation on {number} was replaced, retry", number))

    # ── occupy ────────────────────────────────────────────────────────────
    def occupy(self, number: str, session_id: str, plate: Optional[str] = None,
               vehicle_class: Optional[Union[VehicleClass, str]] = None,
               changed_by: ChangedBy = ChangedBy.SESSION) -> TransitionResult:
        if not session_id:
            raise InvalidTransitionRequest("A session id is required to occupy a space", number)
        plate = normalize_plate(plate)
        space = self.store.get_space(number)

        def check(current: ParkingSpace):
            status = current.space_status
            if status == SpaceStatus.FREE:
                return
            if status == SpaceStatus.RESERVED:
                if plate is None:
                    raise PlateRequired(
                        f"Space {current.number} is reserved; the arriving plate must be given",
                        current.number)
                if plate != current.reservation_plate:
                    raise PlateMismatch(
                        f"Space {current.number} is reserved for another vehicle", current.number)
                return
            if status == SpaceStatus.OCCUPIED:
                raise NotAvailable(f"Space {current.number} is already occupied", current.number)
            if status == SpaceStatus.OUT_OF_SERVICE:
                raise NotAvailable(f"Space {current.number} is out of service", current.number)
            _unhandled(status)

        check(space)
        previous = space.space_status
        if vehicle_class is None and previous == SpaceStatus.RESERVED:
            vehicle_class = space.reservation_vehicle_class
        vehicle_class = self._vehicle_class(vehicle_class, number) if vehicle_class else None

        now = self.clock()
        event = NotificationEvent(
            kind=TransitionKind.OCCUPIED, space_number=number, previous_status=previous,
            plate=plate, vehicle_class=vehicle_class.value if vehicle_class else None,
            session_id=session_id, timestamp=now,
        )
        fields = {
            "status": SpaceStatus.OCCUPIED.value,
            "current_session_id": session_id,
            **_CLEARED_RESERVATION,
            "updated_at": now,
        }
        guards = {"expected_plate": plate} if previous == SpaceStatus.RESERVED else {}
        return self._apply(space, fields, event, changed_by, guards=guards, recheck=check,
                           lost_race=NotAvailable(f"Space {number} changed concurrently, retry", number))

    # ── free ──────────────────────────────────────────────────────────────
    def free(self, number: str, session_id: str,
             changed_by: ChangedBy = ChangedBy.SESSION) -> TransitionResult:
        """Release an occupied space. Only the session that occupies it may free it."""
        space = self.store.get_space(number)

        def check(current: ParkingSpace):
            if current.space_status != SpaceStatus.OCCUPIED or current.current_session_id != session_id:
                raise SessionMismatch(
                    f"Space {current.number} is not occupied by session {session_id}", current.number)

        check(space)
        now = self.clock()
        event = NotificationEvent(
            kind=TransitionKind.FREED, space_number=number, previous_status=SpaceStatus.OCCUPIED,
            session_id=session_id, timestamp=now,
        )
        fields = {"status": SpaceStatus.FREE.value, "current_session_id": None, "updated_at": now}
        return self._apply(space, fields, event, changed_by,
                           guards={"expected_session_id": session_id}, recheck=check,
                           lost_race=SessionMismatch(f"Space {number} changed concurrently", number))

    # ── out of service ────────────────────────────────────────────────────
    def set_out_of_service(self, number: str, reason: str, force: bool = False,
                           changed_by: ChangedBy = ChangedBy.USER) -> TransitionResult:
        """
        Take a free space out of service. With force=True a reserved or occupied
        space is taken too; its reservation or session reference is dropped.
        """
        reason = (reason or "").strip()
        if not reason:
            raise InvalidTransitionRequest("A reason is required to take a space out of service", number)
        space = self.store.get_space(number)

        def check(current: ParkingSpace):
            status = current.space_status
            if status == SpaceStatus.FREE:
                return
            if status in (SpaceStatus.RESERVED, SpaceStatus.OCCUPIED):
                if force:
                    return
                raise NotEligible(
                    f"Space {current.number} is {status.value}; free it first or force the change",
                    current.number)
            if status == SpaceStatus.OUT_OF_SERVICE:
                raise NotEligible(f"Space {current.number} is already out of service", current.number)
            _unhandled(status)

        check(space)
        previous = space.space_status
        now = self.clock()
        event = NotificationEvent(
            kind=TransitionKind.OUT_OF_SERVICE, space_number=number, previous_status=previous,
            plate=space.reservation_plate, vehicle_class=space.reservation_vehicle_class,
            session_id=space.current_session_id, reason=reason, timestamp=now,
        )
        fields = {
            "status": SpaceStatus.OUT_OF_SERVICE.value,
            "out_of_service_reason": reason,
            "current_session_id": None,
            **_CLEARED_RESERVATION,
            "updated_at": now,
        }
        guards = {}
        if previous == SpaceStatus.RESERVED:
            guards["expected_plate"] = space.reservation_plate
        elif previous == SpaceStatus.OCCUPIED:
            guards["expected_session_id"] = space.current_session_id
        if previous != SpaceStatus.FREE:
            logger.warning(f"[SPACE] Forcing {number} out of service while {previous.value}")
        return self._apply(space, fields, event, changed_by, guards=guards, recheck=check,
                           lost_race=NotEligible(f"Space {number} changed concurrently, retry", number))

    def set_in_service(self, number: str, changed_by: ChangedBy = ChangedBy.USER) -> TransitionResult:
        space = self.store.get_space(number)

        def check(current: ParkingSpace):
            if current.space_status != SpaceStatus.OUT_OF_SERVICE:
                raise NotOutOfService(
                    f"Space {current.number} is not out of service ({current.status})", current.number)

        check(space)
        now = self.clock()
        event = NotificationEvent(
            kind=TransitionKind.IN_SERVICE, space_number=number,
            previous_status=SpaceStatus.OUT_OF_SERVICE,
            reason=space.out_of_service_reason, timestamp=now,
        )
        fields = {"status": SpaceStatus.FREE.value, "out_of_service_reason": None, "updated_at": now}
        return self._apply(space, fields, event, changed_by, recheck=check,
                           lost_race=NotOutOfService(f"Space {number} changed concurrently", number))

    # ── internals ─────────────────────────────────────────────────────────
    def _vehicle_class(self, value: Union[VehicleClass, str], number: str) -> VehicleClass:
        try:
            return VehicleClass(value)
        except ValueError:
            raise InvalidTransitionRequest(f"Unknown vehicle class '{value}'", number)

    def _apply(self, space: ParkingSpace, fields: dict, event: NotificationEvent,
               changed_by: ChangedBy, recheck: Callable[[ParkingSpace], None],
               lost_race: PreconditionFailed, guards: Optional[dict] = None) -> TransitionResult:
        number = space.number
        expected = event.previous_status
        new_status = SpaceStatus(fields["status"])
        guards = {k: v for k, v in (guards or {}).items() if v is not None}
        # Taken before commit expires the instance
        committed = {c.key: getattr(space, c.key, None) for c in ParkingSpace.__table__.columns}
        committed.update(fields)

        with self.store.transaction():
            applied = self.store.cas_update_space(number, expected, fields, **guards)
            if applied:
                self.store.add_history(
                    space_number=number,
                    previous_status=expected.value,
                    new_status=new_status.value,
                    action=event.kind.value,
                    reason=event.reason,
                    changed_by=changed_by.value,
                    session_id=event.session_id,
                    plate=event.plate,
                    vehicle_class=event.vehicle_class,
                    expires_at=event.expires_at,
                    created_at=event.timestamp,
                )

        if not applied:
            current = self.store.get_space(number)
            logger.info(f"[SPACE] {number}: {event.kind.value} lost a race, now {current.status}")
            recheck(current)
            raise lost_race

        logger.info(f"[SPACE] {number}: {expected.value} -> {new_status.value} ({event.kind.value})")

        # Committed; nothing below may fail the transition, so no store round-trip
        if self.emitter is not None:
            self.emitter.emit(event)
        if self.change_feed is not None:
            self.change_feed.publish(SpaceChange(
                space_number=number, kind=event.kind, previous_status=expected,
                status=new_status, updated_at=event.timestamp,
            ))
        return TransitionResult(space=ParkingSpace(**committed), event=event)
