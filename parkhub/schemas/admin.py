# parkhub/schemas/admin.py
from pydantic import BaseModel, Field
from typing import Optional


class ProvisionRequest(BaseModel):
    total_spaces: Optional[int] = Field(default=None, ge=0)   # defaults to TOTAL_SPACES
    force: bool = False


class ProvisionOut(BaseModel):
    total: int
    previous_count: int
    created: int


class ZoneStatsOut(BaseModel):
    zone: str
    total: int
    free: int
    occupied: int
    reserved: int
    out_of_service: int


class SpaceStatsOut(BaseModel):
    total: int
    free: int
    occupied: int
    reserved: int
    out_of_service: int
    occupancy_rate: int           # % of all spaces that are occupied
    zones: list[ZoneStatsOut]
