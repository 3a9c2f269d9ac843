from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cycletrac.core.constants import DEFAULT_RIDE_TITLE
from cycletrac.tracking.identity import Identity, RemoteId


class RideState(str, Enum):
    idle = "idle"
    active = "active"
    paused = "paused"
    ended = "ended"


class GPSFix(BaseModel):
    """One observed position sample, as appended to the route."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    elevation: Optional[float] = None  # meters
    timestamp: int  # epoch millis
    speed: Optional[float] = None  # m/s, as reported by the receiver


class RideSession(BaseModel):
    """Live state of one in-progress ride.

    Values are immutable: every update produces a new session via
    `model_copy(update=...)`, which keeps `compute_update` pure and lets the
    tracker swap the whole state under its lock.
    """

    model_config = ConfigDict(frozen=True)

    state: RideState = RideState.idle
    title: str = ""
    start_time: Optional[datetime] = None
    current_time: Optional[datetime] = None
    elapsed_seconds: int = 0  # active time only
    paused_seconds: float = 0.0
    paused_at: Optional[datetime] = None

    distance: float = 0.0  # km
    current_speed: float = 0.0  # km/h
    avg_speed: float = 0.0
    max_speed: float = 0.0

    current_cadence: int = 0  # rpm
    avg_cadence: float = 0.0
    max_cadence: int = 0

    elevation: float = 0.0  # m
    elevation_gain: float = 0.0

    route: tuple[GPSFix, ...] = ()

    @classmethod
    def started(cls, title: str, now: datetime) -> "RideSession":
        return cls(
            state=RideState.active,
            title=title,
            start_time=now,
            current_time=now,
        )

    @property
    def in_progress(self) -> bool:
        return self.state in (RideState.active, RideState.paused)


class RouteStats(BaseModel):
    top_speed: float = 0.0
    avg_cadence: float = 0.0
    max_cadence: float = 0.0
    total_elevation_gain: float = 0.0


class RouteData(BaseModel):
    points: list[GPSFix] = Field(default_factory=list)
    stats: RouteStats = Field(default_factory=RouteStats)


class Rider(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity: Identity
    username: str


class RideRecord(BaseModel):
    """Archived form of a finished ride.

    `identity` stays None until the local store assigns one; afterwards only
    `identity`, `uploaded` and `updated_at` ever change (during sync).
    """

    model_config = ConfigDict(frozen=True)

    identity: Optional[Identity] = None
    owner: Optional[Identity] = None
    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int = 0  # seconds
    distance: float = 0.0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    elevation_gain: int = 0
    avg_cadence: int = 0
    max_cadence: int = 0
    route: RouteData = Field(default_factory=RouteData)
    uploaded: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_session(
        cls,
        session: RideSession,
        owner: Optional[Identity],
        end_time: datetime,
    ) -> "RideRecord":
        return cls(
            owner=owner,
            title=session.title or DEFAULT_RIDE_TITLE,
            start_time=session.start_time or end_time,
            end_time=end_time,
            duration=session.elapsed_seconds,
            distance=session.distance,
            avg_speed=session.avg_speed,
            max_speed=session.max_speed,
            elevation_gain=round(session.elevation_gain),
            avg_cadence=round(session.avg_cadence),
            max_cadence=session.max_cadence,
            route=RouteData(
                points=list(session.route),
                stats=RouteStats(
                    top_speed=session.max_speed,
                    avg_cadence=session.avg_cadence,
                    max_cadence=session.max_cadence,
                    total_elevation_gain=session.elevation_gain,
                ),
            ),
        )

    @classmethod
    def from_remote(cls, ride, owner: Optional[Identity] = None) -> "RideRecord":
        """Build an uploaded record from a Remote Storage API ride."""
        return cls(
            identity=RemoteId(value=ride.id),
            owner=owner if owner is not None else (
                RemoteId(value=ride.user_id) if ride.user_id else None
            ),
            title=ride.title,
            start_time=ride.start_time,
            end_time=ride.end_time,
            duration=ride.duration or 0,
            distance=ride.distance or 0.0,
            avg_speed=ride.avg_speed or 0.0,
            max_speed=ride.max_speed or 0.0,
            elevation_gain=ride.elevation or 0,
            avg_cadence=ride.avg_cadence or 0,
            max_cadence=ride.max_cadence or 0,
            route=ride.route_data,
            uploaded=True,
            created_at=ride.created_at,
            updated_at=ride.updated_at,
        )

    def to_remote_payload(self, user_id: Optional[int]) -> dict:
        """Fields submitted to `POST /rides`: everything but the local identity."""
        return {
            "user_id": user_id,
            "title": self.title,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "distance": self.distance,
            "avg_speed": self.avg_speed,
            "max_speed": self.max_speed,
            "elevation": self.elevation_gain,
            "total_elevation_gain": self.elevation_gain,
            "avg_cadence": self.avg_cadence,
            "max_cadence": self.max_cadence,
            "route_data": self.route.model_dump(mode="json"),
        }
