"""Ride lifecycle: idle -> active <-> paused -> ended -> idle.

`RideTracker` owns the single live `RideSession`. Three things mutate it: the
one-second tick, fixes pushed by the geolocation source and the lifecycle
calls. Session swaps happen under `_lock`; lifecycle calls are additionally
serialized by `_control_lock`, which is also what guards starting and stopping
the ticker thread and the geolocation subscription (never done while holding
`_lock`, since both the ticker and the source call back into it).
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from cycletrac.core.config import settings
from cycletrac.core.time_utils import utcnow
from cycletrac.tracking.errors import GeolocationError, PersistenceError
from cycletrac.tracking.geolocation import GeolocationSource, Position
from cycletrac.tracking.metrics import (
    CadenceSource,
    SimulatedCadence,
    compute_update,
    refresh_average_speed,
    summarize,
)
from cycletrac.tracking.models import RideRecord, RideSession, RideState
from cycletrac.tracking.store import LocalStore
from cycletrac.tracking.sync import SyncReconciler

logger = logging.getLogger(__name__)


class Ticker:
    """Calls `callback` every `interval` seconds on a daemon thread."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name="ride-ticker", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stop.set()
        if thread is not threading.current_thread():
            thread.join()

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Ride tick failed: {e}", exc_info=True)


class RideTracker:
    def __init__(
        self,
        store: LocalStore,
        geolocation: GeolocationSource,
        reconciler: Optional[SyncReconciler] = None,
        cadence: Optional[CadenceSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tick_interval: Optional[float] = None,
        auto_tick: bool = True,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.geolocation = geolocation
        self.reconciler = reconciler
        self.cadence = cadence or SimulatedCadence()
        self.clock = clock or utcnow
        self.notify = notify
        self.auto_tick = auto_tick
        self._ticker = Ticker(
            tick_interval if tick_interval is not None else settings.tick_interval_seconds,
            self.tick,
        )
        self._subscription: Optional[int] = None
        self._session = RideSession()
        self._lock = threading.RLock()
        self._control_lock = threading.RLock()
        self.last_sensor_error: Optional[GeolocationError] = None

    # --------- read side --------- #

    @property
    def session(self) -> RideSession:
        return self._session

    @property
    def state(self) -> RideState:
        return self._session.state

    @property
    def tracking(self) -> bool:
        return self._subscription is not None

    def stats(self) -> dict:
        return summarize(self._session)

    # --------- helpers --------- #

    def _reject(self, message: str) -> None:
        logger.warning(message)
        if self.notify:
            self.notify(message)

    def _snapshot(self, session: RideSession) -> None:
        """Best-effort save of the live session; called from timer and sensor paths."""
        try:
            self.store.save_active_session(session)
        except PersistenceError as e:
            logger.error(f"Failed to snapshot current ride: {e}")

    def _start_tracking(self) -> None:
        if self._subscription is not None:
            self._stop_tracking()
        self.last_sensor_error = None
        self._subscription = self.geolocation.subscribe(self.handle_fix, self.handle_sensor_error)
        if self.auto_tick:
            self._ticker.start()

    def _stop_tracking(self) -> None:
        self._ticker.stop()
        handle, self._subscription = self._subscription, None
        if handle is not None:
            self.geolocation.unsubscribe(handle)

    # --------- lifecycle --------- #

    def start(self, title: str) -> bool:
        with self._control_lock:
            with self._lock:
                if self._session.in_progress:
                    self._reject("Cannot start a new ride while one is already active")
                    return False
                self._session = RideSession.started(title, self.clock())
                session = self._session
            self._snapshot(session)
            self._start_tracking()
        logger.info(f"Started ride '{title}'")
        return True

    def pause(self) -> bool:
        with self._control_lock:
            with self._lock:
                if self._session.state == RideState.paused:
                    self._reject("Ride is already paused")
                    return False
                if self._session.state != RideState.active:
                    self._reject("Cannot pause a ride that hasn't started")
                    return False
                self._session = self._session.model_copy(
                    update={"state": RideState.paused, "paused_at": self.clock()}
                )
                session = self._session
            self._stop_tracking()
            self._snapshot(session)
        logger.info("Paused ride")
        return True

    def resume(self) -> bool:
        with self._control_lock:
            with self._lock:
                if self._session.state == RideState.active:
                    self._reject("Ride is not paused")
                    return False
                if self._session.state != RideState.paused:
                    self._reject("Cannot resume a ride that hasn't started")
                    return False
                now = self.clock()
                paused_at = self._session.paused_at
                gap = (now - paused_at).total_seconds() if paused_at else 0.0
                self._session = self._session.model_copy(
                    update={
                        "state": RideState.active,
                        "paused_at": None,
                        "paused_seconds": self._session.paused_seconds + max(0.0, gap),
                    }
                )
                session = self._session
            self._snapshot(session)
            self._start_tracking()
        logger.info("Resumed ride")
        return True

    def end(self) -> Optional[RideRecord]:
        """Finish the ride; returns the archived record, or None when nothing was recorded.

        Ending an idle tracker is a silent no-op. If archiving fails the ride is
        put back exactly as it was and `PersistenceError` propagates.
        """
        with self._control_lock:
            with self._lock:
                if not self._session.in_progress:
                    logger.debug("No ride in progress; nothing to end")
                    return None
                previous = self._session
                self._session = previous.model_copy(update={"state": RideState.ended})
            self._stop_tracking()

            with self._lock:
                finished = self._session
            end_time = self.clock()

            record = None
            if finished.route:
                user = self.store.get_current_user()
                draft = RideRecord.from_session(
                    finished, owner=user.identity if user else None, end_time=end_time
                )
                try:
                    record = self.store.append_ride_record(draft)
                except PersistenceError:
                    logger.error("Could not archive ride; keeping it in progress")
                    with self._lock:
                        self._session = finished.model_copy(update={"state": previous.state})
                    if previous.state == RideState.active:
                        self._start_tracking()
                    raise

            with self._lock:
                self._session = RideSession()
            try:
                self.store.clear_active_session()
            except PersistenceError as e:
                logger.error(f"Failed to clear saved ride: {e}")

        if record is None:
            logger.info("Ended ride without any recorded points; nothing archived")
            return None

        logger.info(f"Ended ride '{record.title}': {record.distance:.2f} km in {record.duration}s")
        if self.reconciler is not None and self.reconciler.connectivity.online:
            try:
                self.reconciler.sync()
            except Exception as e:
                logger.error(f"Failed to sync ride: {e}", exc_info=True)
        return record

    def restore(self) -> bool:
        """Pick up a ride saved by a previous run of the app.

        An active ride resumes ticking and tracking at once; a paused one waits
        for `resume()`.
        """
        with self._control_lock:
            saved = self.store.load_active_session()
            if saved is None or not saved.in_progress:
                return False
            with self._lock:
                if self._session.in_progress:
                    self._reject("Cannot restore a saved ride while one is already active")
                    return False
                self._session = saved
            if saved.state == RideState.active:
                self._start_tracking()
        logger.info(f"Restored {saved.state.value} ride '{saved.title}' ({len(saved.route)} points)")
        return True

    def close(self) -> None:
        """Stop timers and the geolocation subscription; the ride itself is kept."""
        with self._control_lock:
            self._stop_tracking()

    # --------- event sinks --------- #

    def tick(self) -> None:
        with self._lock:
            if self._session.state != RideState.active:
                return
            self._session = refresh_average_speed(
                self._session.model_copy(
                    update={
                        "elapsed_seconds": self._session.elapsed_seconds + 1,
                        "current_time": self.clock(),
                    }
                )
            )
            self._snapshot(self._session)

    def handle_fix(self, position: Position) -> None:
        with self._lock:
            if self._session.state != RideState.active:
                logger.debug("Dropping fix received while not riding")
                return
            self._session = compute_update(self._session, position.to_fix(), self.cadence)
            self._snapshot(self._session)

    def handle_sensor_error(self, error: GeolocationError) -> None:
        self.last_sensor_error = error
        logger.warning(f"Geolocation error ({error.code.value}): {error.message}")
        if self.notify:
            self.notify(error.message)
