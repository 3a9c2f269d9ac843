"""Live ride metrics.

`compute_update` folds one new fix into the running session aggregates. It is
a pure function of (session, fix, cadence source): the only nondeterminism
comes from whatever cadence source is injected.
"""
import math
import random
from typing import Optional, Protocol

from cycletrac.core.constants import (
    CADENCE_BASE_RPM,
    CADENCE_JITTER_RPM,
    CADENCE_MAX_VARIATION_RPM,
    CADENCE_MIN_SPEED_KMH,
    CADENCE_SPEED_FACTOR,
    EARTH_RADIUS_KM,
    GPS_JUMP_THRESHOLD_KM,
    MPS_TO_KMH,
    SECONDS_PER_HOUR,
)
from cycletrac.core.time_utils import format_duration
from cycletrac.tracking.models import GPSFix, RideSession


class CadenceSource(Protocol):
    def compute_cadence(self, speed_kmh: float) -> int:
        ...


class SimulatedCadence:
    """Stand-in for a cadence sensor: higher speed, higher cadence, plus jitter."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def compute_cadence(self, speed_kmh: float) -> int:
        if speed_kmh < CADENCE_MIN_SPEED_KMH:
            return 0
        variation = min(CADENCE_MAX_VARIATION_RPM, speed_kmh * CADENCE_SPEED_FACTOR)
        jitter = self._rng.uniform(-CADENCE_JITTER_RPM, CADENCE_JITTER_RPM)
        return max(0, round(CADENCE_BASE_RPM + variation + jitter))


def haversine_km(a: GPSFix, b: GPSFix) -> float:
    """Return great-circle distance in km between two fixes."""
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def speed_kmh(distance_km: float, seconds: float) -> float:
    if seconds <= 0:
        return 0.0
    return distance_km / (seconds / SECONDS_PER_HOUR)


def average_speed(distance_km: float, elapsed_seconds: int) -> float:
    return speed_kmh(distance_km, elapsed_seconds)


def compute_update(
    session: RideSession,
    fix: GPSFix,
    cadence: CadenceSource,
) -> RideSession:
    """Return `session` with `fix` appended and every aggregate updated.

    The first fix only seeds position and elevation. Deltas of
    GPS_JUMP_THRESHOLD_KM or more stay in the route but never count as distance.
    """
    route = session.route + (fix,)
    elevation = fix.elevation if fix.elevation is not None else session.elevation

    if len(route) < 2:
        return session.model_copy(update={"route": route, "elevation": elevation})

    last = route[-2]
    delta_km = haversine_km(last, fix)

    distance = session.distance
    if delta_km < GPS_JUMP_THRESHOLD_KM:
        distance += delta_km

    # a zero reported speed is treated like a missing one
    if fix.speed:
        current_speed = fix.speed * MPS_TO_KMH
    else:
        current_speed = speed_kmh(delta_km, (fix.timestamp - last.timestamp) / 1000.0)

    current_cadence = cadence.compute_cadence(current_speed)
    n = len(route)
    avg_cadence = (session.avg_cadence * (n - 1) + current_cadence) / n

    elevation_gain = session.elevation_gain
    if fix.elevation is not None and last.elevation is not None:
        climb = fix.elevation - last.elevation
        if climb > 0:
            elevation_gain += climb

    return session.model_copy(
        update={
            "route": route,
            "distance": distance,
            "current_speed": current_speed,
            "max_speed": max(session.max_speed, current_speed),
            "avg_speed": average_speed(distance, session.elapsed_seconds),
            "current_cadence": current_cadence,
            "max_cadence": max(session.max_cadence, current_cadence),
            "avg_cadence": avg_cadence,
            "elevation": elevation,
            "elevation_gain": elevation_gain,
        }
    )


def refresh_average_speed(session: RideSession) -> RideSession:
    return session.model_copy(
        update={"avg_speed": average_speed(session.distance, session.elapsed_seconds)}
    )


def summarize(session: RideSession) -> dict:
    """Display-ready figures for the live ride card."""
    return {
        "duration": format_duration(session.elapsed_seconds),
        "distance": f"{session.distance:.1f}",
        "avg_speed": f"{session.avg_speed:.1f}",
        "max_speed": f"{session.max_speed:.1f}",
        "current_speed": f"{session.current_speed:.1f}",
        "elevation": round(session.elevation_gain),
        "current_elevation": round(session.elevation),
        "current_cadence": round(session.current_cadence),
        "avg_cadence": round(session.avg_cadence),
    }
