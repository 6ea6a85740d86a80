# parkhub/routers/stats.py
"""Dashboard counters: spaces per status, overall and per zone."""

from fastapi import APIRouter, Depends

from parkhub.dependencies import get_store
from parkhub.models.enums import SpaceStatus
from parkhub.schemas.admin import SpaceStatsOut, ZoneStatsOut
from parkhub.services.space_store import SpaceStore

router = APIRouter()


def _breakdown(counts: dict) -> dict:
    return {
        "total": sum(counts.values()),
        "free": counts[SpaceStatus.FREE],
        "occupied": counts[SpaceStatus.OCCUPIED],
        "reserved": counts[SpaceStatus.RESERVED],
        "out_of_service": counts[SpaceStatus.OUT_OF_SERVICE],
    }


@router.get("/stats/spaces", response_model=SpaceStatsOut, summary="Space counts by status")
def get_space_stats(store: SpaceStore = Depends(get_store)):
    overall = _breakdown(store.count_by_status())
    total = overall["total"]
    return SpaceStatsOut(
        **overall,
        occupancy_rate=round(overall["occupied"] / total * 100) if total else 0,
        zones=[ZoneStatsOut(zone=zone, **_breakdown(counts))
               for zone, counts in sorted(store.count_by_zone().items())],
    )
