from datetime import datetime, timedelta, timezone
import math
import random

from cycletrac.core.security import hash_password
from cycletrac.core.time_utils import datetime_to_millis
from cycletrac.db import Base, SessionLocal, engine
from cycletrac.models.ride import Ride
from cycletrac.models.user import User
from cycletrac.tracking.metrics import SimulatedCadence, compute_update
from cycletrac.tracking.models import GPSFix, RideRecord, RideSession

DEMO_USERNAME = "demo_rider"

# Somewhere flat-ish to ride around
BASE_LAT = 52.0907
BASE_LNG = 5.1214


def simulate_ride(start: datetime, minutes: int, speed_kmh: float, rng: random.Random) -> RideSession:
    """Feed a synthetic eastbound route through the metrics engine, one fix every 5s."""
    session = RideSession.started("Demo ride", start)
    cadence = SimulatedCadence(rng)
    step_s = 5
    lat, lng = BASE_LAT + rng.uniform(-0.05, 0.05), BASE_LNG + rng.uniform(-0.05, 0.05)
    km_per_deg_lng = 111.32 * math.cos(math.radians(lat))

    for i in range(minutes * 60 // step_s):
        speed = max(0.0, speed_kmh + rng.uniform(-4, 4))
        lng += (speed * step_s / 3600) / km_per_deg_lng
        lat += rng.uniform(-0.00003, 0.00003)
        fix = GPSFix(
            lat=lat,
            lng=lng,
            elevation=10 + 15 * math.sin(i / 40),
            timestamp=datetime_to_millis(start + timedelta(seconds=i * step_s)),
            speed=speed / 3.6,
        )
        session = session.model_copy(update={"elapsed_seconds": i * step_s})
        session = compute_update(session, fix, cadence)
    return session


def clear_demo_rides(db) -> None:
    """Delete the demo rider (and its rides) so we can reseed cleanly."""
    user = db.query(User).filter(User.username == DEMO_USERNAME).first()
    if user:
        db.query(Ride).filter(Ride.user_id == user.id).delete()
        db.delete(user)
        db.commit()


def seed_demo_rides(db, weeks: int = 8) -> None:
    """Insert a few rides per week (Tue/Thu commute, Sat long ride)."""
    rng = random.Random(42)
    user = User(username=DEMO_USERNAME, password_hash=hash_password("demo"))
    db.add(user)
    db.commit()
    db.refresh(user)

    now = datetime.now(timezone.utc)
    start_day = now - timedelta(weeks=weeks)
    rides_to_add = []

    for week in range(weeks):
        week_start = start_day + timedelta(weeks=week)
        for offset, title, minutes, speed in [
            (1, "Commute", 25, 22.0),
            (3, "Commute", 25, 23.0),
            (5, "Long ride", 120, 26.0),
        ]:
            start = (week_start + timedelta(days=offset)).replace(hour=7, minute=30, second=0, microsecond=0)
            if start > now:
                continue
            session = simulate_ride(start, minutes, speed, rng).model_copy(update={"title": title})
            record = RideRecord.from_session(
                session, owner=None, end_time=start + timedelta(minutes=minutes)
            )
            payload = record.to_remote_payload(user.id)
            payload["start_time"] = record.start_time
            payload["end_time"] = record.end_time
            rides_to_add.append(Ride(**payload))

    if rides_to_add:
        db.add_all(rides_to_add)
        db.commit()

    print(f"Seeded {len(rides_to_add)} demo rides for '{DEMO_USERNAME}'")


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        clear_demo_rides(db)
        seed_demo_rides(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
