from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cycletrac.tracking.models import RouteData


class RideBase(BaseModel):
    user_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=255)
    start_time: datetime
    end_time: Optional[datetime] = None

    duration: Optional[int] = Field(default=None, ge=0)  # seconds
    distance: Optional[float] = Field(default=None, ge=0)  # km
    avg_speed: Optional[float] = Field(default=None, ge=0)  # km/h
    max_speed: Optional[float] = Field(default=None, ge=0)
    elevation: Optional[int] = None  # m gained over the ride
    total_elevation_gain: Optional[int] = None
    avg_cadence: Optional[int] = Field(default=None, ge=0)  # rpm
    max_cadence: Optional[int] = Field(default=None, ge=0)

    # GPS points plus summary stats
    route_data: RouteData

    # Clients may send back fields they read from us
    model_config = ConfigDict(extra="ignore")


class RideCreate(RideBase):
    """Schema for creating a new ride."""
    pass


class RideReplace(RideBase):
    """Schema for `PUT /rides/{id}`: a full replacement of the ride."""
    pass


class RideRead(RideBase):
    """Schema returned when reading a ride."""

    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
