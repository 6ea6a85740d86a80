# tests/test_lifecycle_service.py
"""Unit tests for the space state machine (reserve / cancel / occupy / free / out-of-service / in-service)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace

import pytest
from parkhub.exceptions import (
    InvalidTransitionRequest, NotAvailable, NotEligible, NotificationSinkUnavailable, NotOutOfService,
    NotReserved, PlateMismatch, PlateRequired, SessionMismatch, SpaceNotFound, StoreUnavailable,
)
from parkhub.models.enums import SpaceStatus, TransitionKind
from parkhub.services.lifecycle_service import SpaceLifecycleService
from parkhub.services.notification_emitter import NotificationEmitter, NotificationSink
from parkhub.services.space_store import SpaceStore
from conftest import T0, RecordingSink


def assert_consistent(space):
    assert (space.status == SpaceStatus.RESERVED.value) == (space.reservation_plate is not None)
    assert (space.status == SpaceStatus.RESERVED.value) == (space.reservation_expires_at is not None)
    assert (space.status == SpaceStatus.OCCUPIED.value) == (space.current_session_id is not None)
    assert (space.status == SpaceStatus.OUT_OF_SERVICE.value) == (space.out_of_service_reason is not None)
    if space.reservation_expires_at is not None:
        assert space.reservation_expires_at > space.reservation_created_at


class TestReserve:
    def test_reserve_free_space(self, service, sink):
        result = service.reserve("A001", "tun1234", "car", ttl=1800)

        space = result.space
        assert space.status == "reserved"
        assert space.reservation_plate == "TUN1234"
        assert space.reservation_vehicle_class == "car"
        assert space.reservation_created_at == T0
        assert space.reservation_expires_at == T0 + timedelta(seconds=1800)
        assert space.updated_at == T0
        assert_consistent(space)
        assert result.event.kind == TransitionKind.RESERVED
        assert len(sink.received) == 1

    def test_reserve_accepts_timedelta(self, service):
        result = service.reserve("A001", "TUN1234", "car", ttl=timedelta(minutes=5))
        assert result.space.reservation_expires_at == T0 + timedelta(minutes=5)

    @pytest.mark.parametrize("setup", ["reserve", "occupy", "out_of_service"])
    def test_reserve_unavailable_space(self, service, setup):
        if setup == "reserve":
            service.reserve("A001", "AAA111", "car", ttl=600)
        elif setup == "occupy":
            service.occupy("A001", "S1", "AAA111", "car")
        else:
            service.set_out_of_service("A001", "maintenance")

        with pytest.raises(NotAvailable):
            service.reserve("A001", "TUN1234", "car", ttl=600)

    def test_reserve_twice_is_rejected_not_repeated(self, service, sink):
        service.reserve("A001", "TUN1234", "car", ttl=600)
        with pytest.raises(NotAvailable):
            service.reserve("A001", "TUN1234", "car", ttl=600)
        assert len(sink.received) == 1

    @pytest.mark.parametrize("ttl", [0, -5, 1e-9, 86401])
    def test_invalid_ttl(self, service, ttl):
        with pytest.raises(InvalidTransitionRequest):
            service.reserve("A001", "TUN1234", "car", ttl=ttl)
        assert service.store.get_space("A001").status == "free"

    def test_blank_plate_rejected(self, service):
        with pytest.raises(InvalidTransitionRequest):
            service.reserve("A001", "   ", "car", ttl=600)

    def test_unknown_vehicle_class_rejected(self, service):
        with pytest.raises(InvalidTransitionRequest):
            service.reserve("A001", "TUN1234", "bus", ttl=600)

    def test_unknown_space(self, service):
        with pytest.raises(SpaceNotFound):
            service.reserve("Z999", "TUN1234", "car", ttl=600)


class TestCancelReservation:
    def test_reserve_then_cancel_round_trip(self, service, sink):
        service.reserve("A001", "TUN1234", "car", ttl=1800)
        result = service.cancel_reservation("A001")

        space = result.space
        assert space.status == "free"
        assert space.reservation_plate is None
        assert space.reservation_expires_at is None
        assert_consistent(space)
        assert result.event.reason == "cancelled_by_user"
        assert result.event.plate == "TUN1234"
        assert [n.kind for n in sink.received] == ["reserved", "reservation_cancelled"]

    def test_cancel_free_space(self, service):
        with pytest.raises(NotReserved):
            service.cancel_reservation("A001")

    def test_cancel_twice(self, service):
        service.reserve("A001", "TUN1234", "car", ttl=1800)
        service.cancel_reservation("A001")
        with pytest.raises(NotReserved):
            service.cancel_reservation("A001")


class TestOccupy:
    def test_occupy_free_space(self, service):
        result = service.occupy("A002", "S1", "abc123", "car")
        assert result.space.status == "occupied"
        assert result.space.current_session_id == "S1"
        assert result.event.previous_status == SpaceStatus.FREE
        assert result.event.plate == "ABC123"
        assert_consistent(result.space)

    def test_occupy_reserved_with_matching_plate(self, service):
        service.reserve("A001", "TUN1234", "car", ttl=1800)
        result = service.occupy("A001", "S1", " tun1234 ")

        assert result.space.status == "occupied"
        assert result.space.reservation_plate is None
        assert result.event.previous_status == SpaceStatus.RESERVED
        assert result.event.vehicle_class == "car"   # taken from the reservation
        assert_consistent(result.space)

    def test_occupy_reserved_with_other_plate(self, service, sink):
        service.reserve("A001", "YYY999", "car", ttl=1800)
        with pytest.raises(PlateMismatch):
            service.occupy("A001", "S1", "XXX111", "car")

        space = service.store.get_space("A001")
        assert space.status == "reserved"
        assert space.reservation_plate == "YYY999"
        assert len(sink.received) == 1

    def test_occupy_reserved_without_plate(self, service):
        service.reserve("A001", "YYY999", "car", ttl=1800)
        with pytest.raises(PlateRequired) as exc:
            service.occupy("A001", "S1", None, "car")
        assert isinstance(exc.value, PlateMismatch)
        assert service.store.get_space("A001").status == "reserved"

    def test_occupy_occupied_space(self, service):
        service.occupy("A002", "S1", "AAA111", "car")
        with pytest.raises(NotAvailable, match="already occupied"):
            service.occupy("A002", "S2", "BBB222", "car")
        assert service.store.get_space("A002").current_session_id == "S1"

    def test_occupy_out_of_service_space(self, service):
        service.set_out_of_service("A002", "broken barrier")
        with pytest.raises(NotAvailable, match="out of service"):
            service.occupy("A002", "S1", "AAA111", "car")

    def test_session_id_required(self, service):
        with pytest.raises(InvalidTransitionRequest):
            service.occupy("A002", "", "AAA111", "car")


class TestFree:
    def test_free_with_matching_session(self, service):
        service.occupy("A002", "S1", "AAA111", "car")
        result = service.free("A002", "S1")
        assert result.space.status == "free"
        assert result.space.current_session_id is None
        assert_consistent(result.space)

    def test_stale_free_does_not_release_new_occupant(self, service):
        service.occupy("A002", "S1", "AAA111", "car")
        service.free("A002", "S1")
        service.occupy("A002", "S2", "BBB222", "car")

        with pytest.raises(SessionMismatch):
            service.free("A002", "S1")

        space = service.store.get_space("A002")
        assert space.status == "occupied"
        assert space.current_session_id == "S2"

    def test_free_space_that_is_not_occupied(self, service):
        with pytest.raises(SessionMismatch):
            service.free("A002", "S1")


class TestOutOfService:
    def test_free_space_goes_out_of_service(self, service, sink):
        result = service.set_out_of_service("B002", "maintenance")
        assert result.space.status == "out_of_service"
        assert result.space.out_of_service_reason == "maintenance"
        assert sink.received[-1].type == "error"
        assert_consistent(result.space)

    def test_occupied_space_is_not_eligible(self, service):
        service.occupy("B002", "S1", "AAA111", "car")
        with pytest.raises(NotEligible):
            service.set_out_of_service("B002", "maintenance")

        space = service.store.get_space("B002")
        assert space.status == "occupied"
        assert space.current_session_id == "S1"

    def test_reserved_space_is_not_eligible(self, service):
        service.reserve("B002", "AAA111", "car", ttl=600)
        with pytest.raises(NotEligible):
            service.set_out_of_service("B002", "maintenance")
        assert service.store.get_space("B002").status == "reserved"

    def test_force_overrides_occupied(self, service):
        service.occupy("B002", "S1", "AAA111", "car")
        result = service.set_out_of_service("B002", "flooded", force=True)

        assert result.space.status == "out_of_service"
        assert result.space.current_session_id is None
        assert result.event.previous_status == SpaceStatus.OCCUPIED
        assert result.event.session_id == "S1"
        assert_consistent(result.space)

    def test_force_overrides_reserved(self, service):
        service.reserve("B002", "AAA111", "car", ttl=600)
        result = service.set_out_of_service("B002", "flooded", force=True)
        assert result.space.reservation_plate is None
        assert_consistent(result.space)

    def test_already_out_of_service(self, service):
        service.set_out_of_service("B002", "maintenance")
        with pytest.raises(NotEligible):
            service.set_out_of_service("B002", "maintenance", force=True)

    def test_reason_required(self, service):
        with pytest.raises(InvalidTransitionRequest):
            service.set_out_of_service("B002", "  ")

    def test_back_in_service(self, service):
        service.set_out_of_service("B002", "maintenance")
        result = service.set_in_service("B002")
        assert result.space.status == "free"
        assert result.space.out_of_service_reason is None
        assert_consistent(result.space)

    def test_in_service_requires_out_of_service(self, service):
        with pytest.raises(NotOutOfService):
            service.set_in_service("B002")


class TestSideEffects:
    def test_history_row_per_transition(self, service):
        service.reserve("A001", "TUN1234", "car", ttl=600)
        service.cancel_reservation("A001")
        with pytest.raises(NotReserved):
            service.cancel_reservation("A001")

        rows = service.store.history("A001")
        assert [r.action for r in rows] == ["reservation_cancelled", "reserved"]
        assert rows[0].previous_status == "reserved"
        assert rows[0].new_status == "free"
        assert rows[0].changed_by == "user"
        assert rows[1].plate == "TUN1234"

    def test_change_feed_receives_committed_transitions(self, service, change_feed):
        changes = []
        change_feed.subscribe(changes.append)

        service.occupy("A002", "S1", "AAA111", "car")
        with pytest.raises(NotAvailable):
            service.occupy("A002", "S2", "BBB222", "car")

        assert len(changes) == 1
        assert changes[0].space_number == "A002"
        assert changes[0].previous_status == SpaceStatus.FREE
        assert changes[0].status == SpaceStatus.OCCUPIED

    def test_sink_failure_does_not_undo_transition(self, db_session, clock):
        class BrokenSink(NotificationSink):
            def emit(self, notification):
                raise NotificationSinkUnavailable("push gateway down")

        recorder = RecordingSink()
        service = SpaceLifecycleService(SpaceStore(db_session),
                                        NotificationEmitter([BrokenSink(), recorder]), clock=clock)
        result = service.reserve("A001", "TUN1234", "car", ttl=600)

        assert result.space.status == "reserved"
        assert SpaceStore(db_session).get_space("A001").status == "reserved"
        assert len(recorder.received) == 1

    def test_crashing_sink_does_not_fail_transition(self, db_session, clock):
        class CrashingSink(NotificationSink):
            def emit(self, notification):
                raise RuntimeError("sink bug")

        recorder = RecordingSink()
        service = SpaceLifecycleService(SpaceStore(db_session),
                                        NotificationEmitter([CrashingSink(), recorder]), clock=clock)
        result = service.reserve("A001", "TUN1234", "car", ttl=600)

        assert result.space.status == "reserved"
        assert SpaceStore(db_session).get_space("A001").status == "reserved"
        assert len(recorder.received) == 1

    def test_store_outage_after_commit_still_reports_the_transition(self, db_session, sink,
                                                                    change_feed, clock):
        changes = []
        change_feed.subscribe(changes.append)
        store = OneReadStore(db_session)
        service = SpaceLifecycleService(store, NotificationEmitter([sink]), change_feed, clock=clock)

        result = service.reserve("A001", "tun1234", "car", ttl=600)

        assert result.space.status == "reserved"
        assert result.space.reservation_plate == "TUN1234"
        assert result.space.reservation_expires_at == T0 + timedelta(seconds=600)
        assert_consistent(result.space)
        assert len(sink.received) == 1
        assert [c.status for c in changes] == [SpaceStatus.RESERVED]

        db_session.expire_all()
        assert SpaceStore(db_session).get_space("A001").status == "reserved"


class OneReadStore(SpaceStore):
    """Answers the first read, then behaves as if the database went away."""

    def __init__(self, db):
        super().__init__(db)
        self._reads = 0

    def get_space(self, number):
        self._reads += 1
        if self._reads > 1:
            raise StoreUnavailable("connection lost", number)
        return super().get_space(number)


class StaleReadStore(SpaceStore):
    """Serves one outdated read, as if another request won the space right after we looked."""

    def __init__(self, db, stale):
        super().__init__(db)
        self._stale = stale

    def get_space(self, number):
        if self._stale is not None:
            stale, self._stale = self._stale, None
            return stale
        return super().get_space(number)


class BarrierStore(SpaceStore):
    """Holds every writer at the conditional update until all of them arrive."""

    def __init__(self, db, barrier):
        super().__init__(db)
        self._barrier = barrier

    def cas_update_space(self, *args, **kwargs):
        self._barrier.wait(timeout=10)
        return super().cas_update_space(*args, **kwargs)


class TestConcurrency:
    def test_lost_race_reports_the_winning_state(self, seeded_database, clock):
        winner_db, loser_db = seeded_database.session(), seeded_database.session()
        try:
            SpaceLifecycleService(SpaceStore(winner_db), clock=clock).occupy("A001", "S1", "AAA111", "car")

            stale = SimpleNamespace(number="A001", status="free", space_status=SpaceStatus.FREE,
                                    reservation_plate=None, reservation_vehicle_class=None)
            loser = SpaceLifecycleService(StaleReadStore(loser_db, stale), clock=clock)
            with pytest.raises(NotAvailable):
                loser.occupy("A001", "S2", "BBB222", "car")

            space = SpaceStore(loser_db).get_space("A001")
            assert space.current_session_id == "S1"
            assert len(SpaceStore(loser_db).history("A001")) == 1
        finally:
            winner_db.close()
            loser_db.close()

    def test_two_concurrent_occupy_calls_have_one_winner(self, seeded_database, clock):
        barrier = threading.Barrier(2)
        sink = RecordingSink()

        def attempt(session_id):
            db = seeded_database.session()
            try:
                service = SpaceLifecycleService(BarrierStore(db, barrier), NotificationEmitter([sink]),
                                                clock=clock)
                service.occupy("A002", session_id, f"PLATE-{session_id}", "car")
                return "ok"
            except NotAvailable:
                return "not_available"
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(attempt, ["S1", "S2"]))

        assert sorted(outcomes) == ["not_available", "ok"]
        db = seeded_database.session()
        try:
            space = SpaceStore(db).get_space("A002")
            assert space.status == "occupied"
            assert space.current_session_id in ("S1", "S2")
            assert len(SpaceStore(db).history("A002")) == 1
        finally:
            db.close()
        assert len(sink.received) == 1
