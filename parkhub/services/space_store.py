# parkhub/services/space_store.py
"""
SpaceStore: durable record of every parking space.

All status / reservation / session writes go through cas_update_space, a
single conditional UPDATE (WHERE number = ? AND status = ? [AND guards]).
Two concurrent writers against the same space therefore resolve in the
database: exactly one matches the row, the other sees rowcount == 0.

Connection problems and lock/pool timeouts surface as StoreUnavailable.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from parkhub.exceptions import SpaceNotFound, StoreUnavailable
from parkhub.models.enums import SpaceStatus
from parkhub.models.parking_space import ParkingSpace
from parkhub.models.space_status_history import SpaceStatusHistory
from parkhub.utils.logger import get_logger

logger = get_logger(__name__)


@contextmanager
def _store_errors():
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        logger.error(f"[STORE] Unavailable: {e}")
        raise StoreUnavailable("Space store unavailable, nothing was applied") from e


class SpaceStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Transactions ──────────────────────────────────────────────────────
    @contextmanager
    def transaction(self):
        """Commit on success, roll back on any error."""
        try:
            with _store_errors():
                yield
                self.db.commit()
        except BaseException:
            self.db.rollback()
            raise

    # ── Reads ─────────────────────────────────────────────────────────────
    def find_space(self, number: str) -> Optional[ParkingSpace]:
        with _store_errors():
            return self.db.execute(
                select(ParkingSpace).where(ParkingSpace.number == number)
            ).scalar_one_or_none()

    def get_space(self, number: str) -> ParkingSpace:
        space = self.find_space(number)
        if space is None:
            raise SpaceNotFound(number)
        return space

    def list_spaces(self, status: Optional[SpaceStatus] = None, zone: Optional[str] = None,
                    vehicle_class: Optional[str] = None,
                    updated_since: Optional[datetime] = None) -> list[ParkingSpace]:
        q = select(ParkingSpace)
        if status is not None:
            q = q.where(ParkingSpace.status == SpaceStatus(status).value)
        if zone:
            q = q.where(ParkingSpace.zone == zone)
        if vehicle_class:
            q = q.where(ParkingSpace.vehicle_class == vehicle_class)
        if updated_since is not None:
            q = q.where(ParkingSpace.updated_at > updated_since)
        with _store_errors():
            return list(self.db.execute(q.order_by(ParkingSpace.number)).scalars())

    def list_expired_reservations(self, now: datetime, limit: Optional[int] = None,
                                  exclude: Iterable[str] = ()) -> list[ParkingSpace]:
        """Every reserved space whose hold ended at or before `now`, oldest first."""
        q = (
            select(ParkingSpace)
            .where(
                ParkingSpace.status == SpaceStatus.RESERVED.value,
                ParkingSpace.reservation_expires_at <= now,
            )
            .order_by(ParkingSpace.reservation_expires_at, ParkingSpace.number)
        )
        exclude = list(exclude)
        if exclude:
            q = q.where(ParkingSpace.number.not_in(exclude))
        if limit:
            q = q.limit(limit)
        with _store_errors():
            return list(self.db.execute(q).scalars())

    def count_by_status(self) -> dict[SpaceStatus, int]:
        counts = {s: 0 for s in SpaceStatus}
        with _store_errors():
            rows = self.db.execute(
                select(ParkingSpace.status, func.count(ParkingSpace.id)).group_by(ParkingSpace.status)
            ).all()
        for status, n in rows:
            counts[SpaceStatus(status)] = n
        return counts

    def count_by_zone(self) -> dict[str, dict[SpaceStatus, int]]:
        with _store_errors():
            rows = self.db.execute(
                select(ParkingSpace.zone, ParkingSpace.status, func.count(ParkingSpace.id))
                .group_by(ParkingSpace.zone, ParkingSpace.status)
            ).all()
        zones: dict[str, dict[SpaceStatus, int]] = {}
        for zone, status, n in rows:
            zones.setdefault(zone, {s: 0 for s in SpaceStatus})[SpaceStatus(status)] = n
        return zones

    def history(self, number: str, limit: int = 50) -> list[SpaceStatusHistory]:
        with _store_errors():
            return list(self.db.execute(
                select(SpaceStatusHistory)
                .where(SpaceStatusHistory.space_number == number)
                .order_by(SpaceStatusHistory.created_at.desc(), SpaceStatusHistory.id.desc())
                .limit(limit)
            ).scalars())

    # ── Writes ────────────────────────────────────────────────────────────
    def cas_update_space(self, number: str, expected_status: SpaceStatus, new_fields: dict,
                         expected_session_id: Optional[str] = None,
                         expected_plate: Optional[str] = None,
                         expired_before: Optional[datetime] = None) -> bool:
        """
        Apply `new_fields` only if the row still matches the expected state.
        Returns True when applied, False when the precondition no longer holds.
        Must be called inside transaction().
        """
        stmt = update(ParkingSpace).where(
            ParkingSpace.number == number,
            ParkingSpace.status == expected_status.value,
        )
        if expected_session_id is not None:
            stmt = stmt.where(ParkingSpace.current_session_id == expected_session_id)
        if expected_plate is not None:
            stmt = stmt.where(ParkingSpace.reservation_plate == expected_plate)
        if expired_before is not None:
            stmt = stmt.where(ParkingSpace.reservation_expires_at <= expired_before)

        result = self.db.execute(
            stmt.values(**new_fields).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_history(self, **fields) -> SpaceStatusHistory:
        entry = SpaceStatusHistory(**fields)
        self.db.add(entry)
        return entry

    # ── Provisioning ──────────────────────────────────────────────────────
    def count(self) -> int:
        with _store_errors():
            return self.db.execute(select(func.count(ParkingSpace.id))).scalar_one()

    def count_active(self) -> int:
        """Spaces holding a reservation or a session."""
        with _store_errors():
            return self.db.execute(
                select(func.count(ParkingSpace.id)).where(
                    ParkingSpace.status.in_([SpaceStatus.RESERVED.value, SpaceStatus.OCCUPIED.value])
                )
            ).scalar_one()

    def replace_all(self, spaces: list[ParkingSpace]):
        """Drop every space and its history, then insert `spaces`. Must be called inside transaction()."""
        self.db.execute(delete(SpaceStatusHistory))
        self.db.execute(delete(ParkingSpace))
        self.db.add_all(spaces)
