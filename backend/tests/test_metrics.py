import random

import pytest

from cycletrac.tracking.metrics import (
    SimulatedCadence,
    average_speed,
    compute_update,
    haversine_km,
    refresh_average_speed,
    summarize,
)
from cycletrac.tracking.models import GPSFix, RideSession, RideState


def fix(lat, lng, t_ms, elevation=None, speed=None):
    return GPSFix(lat=lat, lng=lng, elevation=elevation, timestamp=t_ms, speed=speed)


def active_session(elapsed=0):
    return RideSession(state=RideState.active, title="t", elapsed_seconds=elapsed)


def feed(session, fixes, cadence):
    for f in fixes:
        session = compute_update(session, f, cadence)
    return session


def test_step_over_jump_threshold_still_gives_speed(cadence):
    # 0.001 deg of longitude at the equator is ~0.1112 km, just over the jump limit
    s = feed(active_session(), [fix(0, 0, 0), fix(0, 0.001, 10_000)], cadence)

    assert haversine_km(s.route[0], s.route[1]) == pytest.approx(0.1112, abs=1e-3)
    assert s.distance == 0
    assert s.current_speed == pytest.approx(40.03, abs=0.1)
    assert s.max_speed == s.current_speed
    assert len(s.route) == 2


def test_two_close_fixes_add_distance(cadence):
    s = feed(active_session(), [fix(0, 0, 0), fix(0, 0.0005, 5_000)], cadence)

    assert s.distance == pytest.approx(0.0556, abs=1e-3)
    assert s.current_speed == pytest.approx(40.03, abs=0.1)


def test_first_fix_only_seeds_position_and_elevation(cadence):
    s = compute_update(active_session(), fix(10, 10, 0, elevation=250.0, speed=8.0), cadence)

    assert len(s.route) == 1
    assert s.elevation == 250.0
    assert s.distance == 0
    assert s.current_speed == 0
    assert s.current_cadence == 0
    assert s.elevation_gain == 0


def test_gps_jump_is_kept_in_route_but_not_in_distance(cadence):
    # 0.01 deg of longitude at the equator is ~1.1 km
    s = feed(active_session(), [fix(0, 0, 0), fix(0, 0.0005, 5_000), fix(0, 0.0105, 10_000)], cadence)

    assert haversine_km(s.route[1], s.route[2]) >= 0.1
    assert s.distance == pytest.approx(haversine_km(s.route[0], s.route[1]))
    assert len(s.route) == 3
    assert s.route[-1].lng == 0.0105


def test_reported_speed_wins_over_derived(cadence):
    s = feed(active_session(), [fix(0, 0, 0), fix(0, 0.001, 10_000, speed=5.0)], cadence)
    assert s.current_speed == pytest.approx(18.0)


def test_zero_reported_speed_falls_back_to_derived(cadence):
    s = feed(active_session(), [fix(0, 0, 0), fix(0, 0.001, 10_000, speed=0.0)], cadence)
    assert s.current_speed == pytest.approx(40.03, abs=0.1)


def test_same_timestamp_gives_zero_speed(cadence):
    s = feed(active_session(), [fix(0, 0, 5_000), fix(0, 0.0001, 5_000)], cadence)
    assert s.current_speed == 0


def test_average_speed_is_zero_without_elapsed_time(cadence):
    s = feed(active_session(elapsed=0), [fix(0, 0, 0), fix(0, 0.0008, 10_000)], cadence)
    assert s.distance > 0
    assert s.avg_speed == 0
    assert average_speed(5.0, 0) == 0


def test_average_speed_uses_elapsed_active_time(cadence):
    s = feed(active_session(elapsed=36), [fix(0, 0, 0), fix(0, 0.0008, 10_000)], cadence)
    assert s.avg_speed == pytest.approx(s.distance / (36 / 3600))

    later = refresh_average_speed(s.model_copy(update={"elapsed_seconds": 72}))
    assert later.avg_speed == pytest.approx(s.avg_speed / 2)


def test_elevation_gain_counts_only_climbs(cadence):
    s = feed(
        active_session(),
        [fix(0, 0, 0, elevation=100), fix(0, 0.0001, 1_000, elevation=90), fix(0, 0.0002, 2_000, elevation=110)],
        cadence,
    )
    assert s.elevation_gain == 20
    assert s.elevation == 110


def test_missing_elevation_neither_gains_nor_resets(cadence):
    s = feed(
        active_session(),
        [fix(0, 0, 0, elevation=100), fix(0, 0.0001, 1_000), fix(0, 0.0002, 2_000, elevation=130)],
        cadence,
    )
    assert s.elevation_gain == 0
    assert s.elevation == 130


def test_average_cadence_running_mean(cadence):
    s = feed(
        active_session(),
        [fix(0, 0, 0), fix(0, 0.0005, 5_000), fix(0, 0.001, 10_000)],
        cadence,
    )
    # first fix counts as zero: (0 + 90) / 2, then (45 * 2 + 90) / 3
    assert s.avg_cadence == pytest.approx(60.0)
    assert s.current_cadence == 90
    assert s.max_cadence == 90


def test_compute_update_leaves_input_untouched(cadence):
    before = feed(active_session(), [fix(0, 0, 0)], cadence)
    after = compute_update(before, fix(0, 0.0005, 5_000), cadence)
    assert len(before.route) == 1
    assert before.distance == 0
    assert len(after.route) == 2


def test_random_ride_invariants():
    rng = random.Random(7)
    cadence = SimulatedCadence(random.Random(3))
    s = active_session(elapsed=1)
    lat, lng, t = 45.0, 7.0, 0
    prev = s
    for i in range(300):
        lat += rng.uniform(-0.0004, 0.0004)
        lng += rng.uniform(-0.0004, 0.0004)
        if i % 50 == 0:
            lng += 0.01  # jump
        t += rng.randint(500, 3000)
        speed = rng.choice([None, rng.uniform(0, 12)])
        s = compute_update(s.model_copy(update={"elapsed_seconds": i + 1}), fix(lat, lng, t, rng.uniform(0, 300), speed), cadence)

        assert s.distance >= prev.distance
        assert s.max_speed >= prev.max_speed
        assert s.max_cadence >= prev.max_cadence
        assert s.elevation_gain >= prev.elevation_gain
        assert s.current_cadence >= 0
        prev = s
    assert len(s.route) == 300


def test_simulated_cadence_model():
    sim = SimulatedCadence(random.Random(1))
    assert sim.compute_cadence(0) == 0
    assert sim.compute_cadence(4.99) == 0
    for speed, centre in [(10, 80), (20, 100), (45, 100)]:
        for _ in range(50):
            rpm = sim.compute_cadence(speed)
            assert isinstance(rpm, int)
            assert centre - 5 <= rpm <= centre + 5

    same_a = SimulatedCadence(random.Random(9))
    same_b = SimulatedCadence(random.Random(9))
    assert [same_a.compute_cadence(25) for _ in range(5)] == [same_b.compute_cadence(25) for _ in range(5)]


def test_summarize_formats_for_display(cadence):
    s = feed(active_session(elapsed=3725), [fix(0, 0, 0, 10), fix(0, 0.0005, 5_000, 14.6)], cadence)
    stats = summarize(s)
    assert stats["duration"] == "01:02:05"
    assert stats["distance"] == f"{s.distance:.1f}"
    assert stats["elevation"] == 5
    assert stats["current_elevation"] == 15
    assert summarize(RideSession())["duration"] == "00:00"
