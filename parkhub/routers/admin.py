# parkhub/routers/admin.py
"""Administrative one-shots: lot provisioning and an on-demand expiry sweep."""

from fastapi import APIRouter, Depends, Request

from parkhub.dependencies import get_store
from parkhub.schemas.admin import ProvisionOut, ProvisionRequest
from parkhub.services.provisioning_service import provision_spaces
from parkhub.services.space_store import SpaceStore

router = APIRouter()


@router.post("/admin/provision", response_model=ProvisionOut, summary="Reconcile the number of spaces")
def provision(body: ProvisionRequest, request: Request, store: SpaceStore = Depends(get_store)):
    """
    Make the lot hold exactly `total_spaces` spaces (TOTAL_SPACES by default).
    Does nothing when the count already matches. Replacing the lot is refused
    while spaces are reserved or occupied unless `force` is true.
    """
    settings = request.app.state.settings
    total = settings.TOTAL_SPACES if body.total_spaces is None else body.total_spaces
    report = provision_spaces(
        store, total, settings.ZONE_LIST,
        truck_ratio=settings.PROVISION_TRUCK_RATIO,
        motorcycle_ratio=settings.PROVISION_MOTORCYCLE_RATIO,
        force=body.force,
    )
    return ProvisionOut(total=report.total, previous_count=report.previous_count, created=report.created)


@router.post("/admin/sweep", summary="Run the reservation expiry sweep now")
def run_sweep(request: Request):
    report = request.app.state.scheduler.run_sweep()
    return report.to_dict()
