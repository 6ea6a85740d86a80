# parkhub/routers/spaces.py
"""
Parking spaces: read endpoints for the dashboard and one POST per lifecycle transition.
Precondition failures come back as 409 with a `code` (see main.py handlers).
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request

from parkhub.dependencies import get_lifecycle_service, get_store
from parkhub.models.enums import SpaceStatus, VehicleClass
from parkhub.schemas.parking_space import (
    FreeRequest, OccupyRequest, OutOfServiceRequest, ParkingSpaceOut, ReserveRequest,
    SpaceStatusHistoryOut, TransitionOut,
)
from parkhub.services.lifecycle_service import SpaceLifecycleService, TransitionResult
from parkhub.services.space_store import SpaceStore

router = APIRouter()


def _transition_out(result: TransitionResult) -> TransitionOut:
    return TransitionOut(
        kind=result.event.kind,
        previous_status=result.event.previous_status,
        space=ParkingSpaceOut.model_validate(result.space),
    )


@router.get("/spaces", response_model=list[ParkingSpaceOut], summary="List parking spaces")
def list_spaces(
    status: Optional[SpaceStatus] = None,
    zone: Optional[str] = None,
    vehicle_class: Optional[VehicleClass] = None,
    updated_since: Optional[datetime] = None,
    store: SpaceStore = Depends(get_store),
):
    """
    All spaces ordered by number. Pollers pass `updated_since` (the newest
    `updated_at` they hold) to fetch only what changed.
    """
    return store.list_spaces(status=status, zone=zone,
                             vehicle_class=vehicle_class.value if vehicle_class else None,
                             updated_since=updated_since)


@router.get("/spaces/{number}", response_model=ParkingSpaceOut, summary="Get one space")
def get_space(number: str, store: SpaceStore = Depends(get_store)):
    return store.get_space(number)


@router.get("/spaces/{number}/history", response_model=list[SpaceStatusHistoryOut],
            summary="Status history of a space, newest first")
def get_space_history(number: str, limit: int = 50, store: SpaceStore = Depends(get_store)):
    store.get_space(number)
    return store.history(number, limit=limit)


@router.post("/spaces/{number}/reserve", response_model=TransitionOut, summary="Reserve a free space")
def reserve_space(number: str, body: ReserveRequest, request: Request,
                  service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    ttl = body.ttl_seconds or request.app.state.settings.RESERVATION_TTL_SECONDS
    return _transition_out(service.reserve(number, body.plate, body.vehicle_class, ttl))


@router.post("/spaces/{number}/cancel-reservation", response_model=TransitionOut,
             summary="Cancel a reservation")
def cancel_reservation(number: str, service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    return _transition_out(service.cancel_reservation(number))


@router.post("/spaces/{number}/occupy", response_model=TransitionOut,
             summary="Occupy a free space, or a reserved one with the reserved plate")
def occupy_space(number: str, body: OccupyRequest,
                 service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    return _transition_out(service.occupy(number, body.session_id, body.plate, body.vehicle_class))


@router.post("/spaces/{number}/free", response_model=TransitionOut,
             summary="Free a space held by the given session")
def free_space(number: str, body: FreeRequest,
               service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    return _transition_out(service.free(number, body.session_id))


@router.post("/spaces/{number}/out-of-service", response_model=TransitionOut,
             summary="Take a space out of service")
def set_out_of_service(number: str, body: OutOfServiceRequest,
                       service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    return _transition_out(service.set_out_of_service(number, body.reason, force=body.force))


@router.post("/spaces/{number}/in-service", response_model=TransitionOut,
             summary="Put an out-of-service space back in service")
def set_in_service(number: str, service: SpaceLifecycleService = Depends(get_lifecycle_service)):
    return _transition_out(service.set_in_service(number))
