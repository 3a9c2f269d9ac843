"""Geolocation sources feeding the ride tracker.

Every source follows the same push contract: `subscribe(on_fix, on_error)`
returns a handle, `unsubscribe(handle)` stops delivery before returning.
"""
import itertools
import logging
import threading
from typing import Callable, Iterable, Optional, Protocol

import gpxpy
from fitparse import FitFile
from pydantic import BaseModel, ConfigDict

from cycletrac.core.time_utils import datetime_to_millis
from cycletrac.tracking.errors import GeolocationError, GeolocationErrorCode
from cycletrac.tracking.models import GPSFix

logger = logging.getLogger(__name__)


class Position(BaseModel):
    """Raw payload delivered by a geolocation source."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    altitude: Optional[float] = None
    accuracy: float = 0.0
    heading: Optional[float] = None
    speed: Optional[float] = None  # m/s
    timestamp_millis: int

    def to_fix(self) -> GPSFix:
        return GPSFix(
            lat=self.latitude,
            lng=self.longitude,
            elevation=self.altitude,
            timestamp=self.timestamp_millis,
            speed=self.speed,
        )


FixCallback = Callable[[Position], None]
ErrorCallback = Callable[[GeolocationError], None]


class GeolocationSource(Protocol):
    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        ...

    def unsubscribe(self, handle: int) -> None:
        ...


class ManualGeolocation:
    """Source driven by explicit `push`/`fail` calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handles = itertools.count(1)
        self._subscribers: dict[int, tuple[FixCallback, ErrorCallback]] = {}

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = (on_fix, on_error)
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._subscribers.pop(handle, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def push(self, position: Position) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        for on_fix, _ in callbacks:
            on_fix(position)

    def fail(self, error: GeolocationError) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        for _, on_error in callbacks:
            on_error(error)


class ReplayGeolocation:
    """Replays recorded positions, one every `interval` seconds.

    The cursor survives unsubscribe/subscribe, so a paused replay picks up
    where it stopped. `finished` is set once every position was delivered.
    """

    def __init__(self, positions: Iterable[Position], interval: float = 1.0):
        self._positions = list(positions)
        self._interval = interval
        self._cursor = 0
        self._lock = threading.Lock()
        self._handles = itertools.count(1)
        self._active: Optional[tuple[int, threading.Thread, threading.Event]] = None
        self.finished = threading.Event()

    def __len__(self) -> int:
        return len(self._positions)

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        with self._lock:
            if self._active is not None:
                raise RuntimeError("replay source already has a subscriber")
            handle = next(self._handles)
            stop = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(on_fix, on_error, stop),
                name=f"replay-geolocation-{handle}",
                daemon=True,
            )
            self._active = (handle, thread, stop)
        thread.start()
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            if self._active is None or self._active[0] != handle:
                return
            _, thread, stop = self._active
            self._active = None
        stop.set()
        if thread is not threading.current_thread():
            thread.join()

    def _run(self, on_fix: FixCallback, on_error: ErrorCallback, stop: threading.Event) -> None:
        if not self._positions:
            on_error(GeolocationError(GeolocationErrorCode.position_unavailable))
            self.finished.set()
            return
        while not stop.is_set():
            with self._lock:
                if self._cursor >= len(self._positions):
                    break
                position = self._positions[self._cursor]
                self._cursor += 1
            on_fix(position)
            if stop.wait(self._interval):
                return
        if self._cursor >= len(self._positions):
            self.finished.set()


def positions_from_gpx(path: str) -> list[Position]:
    """Read every track point of a GPX file as a position.

    Points without a timestamp are spaced one second after their predecessor.
    """
    with open(path, "r", encoding="utf-8") as f:
        gpx = gpxpy.parse(f)

    positions: list[Position] = []
    last_ms: Optional[int] = None
    for track in gpx.tracks:
        for segment in track.segments:
            for p in segment.points:
                if p.time is not None:
                    ts = datetime_to_millis(p.time)
                else:
                    ts = (last_ms + 1000) if last_ms is not None else 0
                positions.append(
                    Position(
                        latitude=p.latitude,
                        longitude=p.longitude,
                        altitude=p.elevation,
                        speed=getattr(p, "speed", None),
                        timestamp_millis=ts,
                    )
                )
                last_ms = ts
    logger.debug(f"Loaded {len(positions)} positions from {path}")
    return positions


def _semicircles_to_degrees(val):
    return val * (180 / 2**31) if val is not None else None


def positions_from_fit(path: str) -> list[Position]:
    """Read FIT `record` messages that carry a position."""
    ff = FitFile(path)
    positions: list[Position] = []
    for record in ff.get_messages("record"):
        fields = {f.name: f.value for f in record}
        lat = _semicircles_to_degrees(fields.get("position_lat"))
        lon = _semicircles_to_degrees(fields.get("position_long"))
        ts = fields.get("timestamp")
        if lat is None or lon is None or ts is None:
            continue
        # Prefer enhanced fields when present
        ele = fields.get("enhanced_altitude")
        if ele is None:
            ele = fields.get("altitude")
        speed = fields.get("enhanced_speed")
        if speed is None:
            speed = fields.get("speed")
        positions.append(
            Position(
                latitude=lat,
                longitude=lon,
                altitude=float(ele) if ele is not None else None,
                speed=float(speed) if speed is not None else None,
                timestamp_millis=datetime_to_millis(ts),
            )
        )
    logger.debug(f"Loaded {len(positions)} positions from {path}")
    return positions
