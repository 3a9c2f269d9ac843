import threading
import time

import pytest

from cycletrac.tracking.errors import GeolocationError, GeolocationErrorCode, PersistenceError
from cycletrac.tracking.identity import LocalId
from cycletrac.tracking.models import RideSession, RideState
from cycletrac.tracking.session import RideTracker, Ticker


@pytest.fixture
def messages():
    return []


@pytest.fixture
def tracker(store, geo, cadence, clock, messages):
    store.ensure_demo_user()
    t = RideTracker(
        store,
        geo,
        cadence=cadence,
        clock=clock,
        auto_tick=False,
        notify=messages.append,
    )
    yield t
    t.close()


def ride_some(tracker, geo, make_position, n=3, start_ms=0):
    for i in range(n):
        geo.push(make_position(0, i * 0.0005, start_ms + i * 5_000, altitude=10 + i))


def test_start_pause_resume_end(tracker, geo, store, clock, make_position):
    assert tracker.state == RideState.idle
    assert tracker.start("Morning Ride")
    assert tracker.state == RideState.active
    assert tracker.session.start_time == clock.now
    assert tracker.tracking
    assert geo.subscriber_count == 1

    ride_some(tracker, geo, make_position)
    tracker.tick()
    tracker.tick()

    assert tracker.pause()
    assert tracker.state == RideState.paused
    assert not tracker.tracking
    assert geo.subscriber_count == 0

    clock.advance(30)
    assert tracker.resume()
    assert tracker.state == RideState.active
    assert tracker.session.paused_seconds == pytest.approx(30)
    assert geo.subscriber_count == 1

    record = tracker.end()
    assert record is not None
    assert isinstance(record.identity, LocalId)
    assert record.title == "Morning Ride"
    assert record.duration == 2
    assert record.elevation_gain == 2
    assert len(record.route.points) == 3
    assert record.owner == store.get_current_user().identity
    assert record.uploaded is False

    assert tracker.state == RideState.idle
    assert tracker.session == RideSession()
    assert geo.subscriber_count == 0
    assert store.load_active_session() is None
    assert [r.identity for r in store.list_ride_records()] == [record.identity]


def test_start_while_in_progress_is_rejected(tracker, messages):
    assert tracker.start("first")
    before = tracker.session
    assert not tracker.start("second")
    assert tracker.session is before
    assert messages == ["Cannot start a new ride while one is already active"]

    tracker.pause()
    assert not tracker.start("third")
    assert tracker.session.title == "first"


def test_invalid_transitions_leave_state_alone(tracker, messages):
    assert not tracker.pause()
    assert not tracker.resume()
    assert tracker.state == RideState.idle

    tracker.start("ride")
    assert not tracker.resume()
    tracker.pause()
    assert not tracker.pause()
    assert tracker.state == RideState.paused
    assert messages == [
        "Cannot pause a ride that hasn't started",
        "Cannot resume a ride that hasn't started",
        "Ride is not paused",
        "Ride is already paused",
    ]


def test_fixes_while_paused_are_dropped(tracker, geo, make_position):
    tracker.start("ride")
    ride_some(tracker, geo, make_position, n=2)
    tracker.pause()
    before = tracker.session

    # delivered straight to the sink, as a late callback would be
    tracker.handle_fix(make_position(0, 0.5, 60_000))
    tracker.tick()

    assert tracker.session == before


def test_pause_resume_keeps_aggregates(tracker, geo, clock, make_position):
    tracker.start("ride")
    ride_some(tracker, geo, make_position)
    tracker.tick()
    before = tracker.session

    tracker.pause()
    clock.advance(120)
    tracker.resume()
    after = tracker.session

    for field in ("distance", "max_speed", "avg_speed", "avg_cadence", "max_cadence", "elevation_gain", "route", "elapsed_seconds"):
        assert getattr(after, field) == getattr(before, field), field
    assert after.paused_seconds == pytest.approx(before.paused_seconds + 120)


def test_tick_advances_active_time_only(tracker, clock):
    tracker.tick()
    assert tracker.session.elapsed_seconds == 0

    tracker.start("ride")
    for _ in range(5):
        clock.advance(1)
        tracker.tick()
    assert tracker.session.elapsed_seconds == 5
    assert tracker.session.current_time == clock.now

    tracker.pause()
    tracker.tick()
    assert tracker.session.elapsed_seconds == 5


def test_average_speed_refreshes_on_tick(tracker, geo, make_position):
    tracker.start("ride")
    tracker.tick()
    ride_some(tracker, geo, make_position)
    first = tracker.session.avg_speed
    tracker.tick()
    assert tracker.session.avg_speed == pytest.approx(first / 2)


def test_end_without_fixes_archives_nothing(tracker, store):
    tracker.start("empty")
    tracker.tick()
    assert tracker.end() is None
    assert tracker.state == RideState.idle
    assert store.list_ride_records() == []
    assert store.load_active_session() is None


def test_end_while_idle_is_silent(tracker, messages):
    assert tracker.end() is None
    assert messages == []


def test_end_from_paused(tracker, geo, make_position):
    tracker.start("ride")
    ride_some(tracker, geo, make_position)
    tracker.pause()
    record = tracker.end()
    assert record is not None
    assert tracker.state == RideState.idle


def test_archive_failure_keeps_ride_in_progress(tracker, store, geo, make_position, monkeypatch):
    tracker.start("ride")
    ride_some(tracker, geo, make_position)
    before = tracker.session

    def boom(record):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "append_ride_record", boom)
    with pytest.raises(PersistenceError):
        tracker.end()

    assert tracker.state == RideState.active
    assert tracker.session == before
    assert tracker.tracking
    assert store.load_active_session() == before

    monkeypatch.undo()
    assert tracker.end() is not None
    assert len(store.list_ride_records()) == 1


def test_snapshot_after_every_change(tracker, store, geo, make_position):
    tracker.start("ride")
    assert store.load_active_session() == tracker.session

    geo.push(make_position(0, 0, 0))
    assert store.load_active_session() == tracker.session

    tracker.tick()
    assert store.load_active_session().elapsed_seconds == 1

    tracker.pause()
    assert store.load_active_session().state == RideState.paused


def test_snapshot_failure_does_not_stop_tracking(tracker, store, geo, make_position, monkeypatch):
    tracker.start("ride")

    def boom(session):
        raise PersistenceError("read-only")

    monkeypatch.setattr(store, "save_active_session", boom)
    geo.push(make_position(0, 0, 0))
    geo.push(make_position(0, 0.0005, 5_000))
    tracker.tick()
    assert len(tracker.session.route) == 2
    assert tracker.session.elapsed_seconds == 1


def test_restore_active_ride_resumes_tracking(store, geo, cadence, clock, make_position):
    first = RideTracker(store, geo, cadence=cadence, clock=clock, auto_tick=False)
    first.start("interrupted")
    geo.push(make_position(0, 0, 0))
    first.tick()
    saved = first.session
    first.close()
    assert geo.subscriber_count == 0

    second = RideTracker(store, geo, cadence=cadence, clock=clock, auto_tick=False)
    assert second.restore()
    assert second.session == saved
    assert second.tracking
    geo.push(make_position(0, 0.0005, 5_000))
    assert len(second.session.route) == 2
    second.close()


def test_restore_paused_ride_waits_for_resume(store, geo, cadence, clock):
    first = RideTracker(store, geo, cadence=cadence, clock=clock, auto_tick=False)
    first.start("interrupted")
    first.pause()
    first.close()

    second = RideTracker(store, geo, cadence=cadence, clock=clock, auto_tick=False)
    assert second.restore()
    assert second.state == RideState.paused
    assert not second.tracking
    assert second.resume()
    assert second.tracking
    second.close()


def test_restore_with_nothing_saved(tracker):
    assert not tracker.restore()
    assert tracker.state == RideState.idle


def test_sensor_errors_are_reported_not_fatal(tracker, geo, messages, make_position):
    tracker.start("ride")
    geo.fail(GeolocationError(GeolocationErrorCode.permission_denied))

    assert tracker.state == RideState.active
    assert tracker.last_sensor_error.code == GeolocationErrorCode.permission_denied
    assert messages == ["User denied the request for Geolocation"]

    geo.push(make_position(0, 0, 0))
    assert len(tracker.session.route) == 1


def test_ticker_thread_drives_elapsed_time(store, geo, cadence):
    tracker = RideTracker(store, geo, cadence=cadence, tick_interval=0.01)
    tracker.start("ride")
    deadline = time.monotonic() + 5
    while tracker.session.elapsed_seconds < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    tracker.pause()
    paused_at = tracker.session.elapsed_seconds
    assert paused_at >= 3

    time.sleep(0.05)
    assert tracker.session.elapsed_seconds == paused_at
    tracker.end()
    tracker.close()


def test_ticker_survives_callback_errors():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")

    ticker = Ticker(0.01, flaky)
    ticker.start()
    deadline = time.monotonic() + 5
    while len(calls) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    ticker.stop()
    assert len(calls) >= 3
    assert not ticker.running


def test_concurrent_fixes_and_ticks_are_all_applied(store, geo, cadence, make_position):
    tracker = RideTracker(store, geo, cadence=cadence, auto_tick=False)
    tracker.start("ride")

    def pusher(offset):
        for i in range(50):
            geo.push(make_position(offset, i * 0.0001, i * 1_000))

    def ticker():
        for _ in range(50):
            tracker.tick()

    threads = [threading.Thread(target=pusher, args=(k * 0.001,)) for k in range(4)]
    threads.append(threading.Thread(target=ticker))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(tracker.session.route) == 200
    assert tracker.session.elapsed_seconds == 50
    tracker.end()
    tracker.close()
