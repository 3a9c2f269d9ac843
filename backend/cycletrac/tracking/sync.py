"""
Ride Sync Service
Pushes rides archived offline to the Remote Storage API and re-tags them with
the identity the server assigns.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from cycletrac.core.config import settings
from cycletrac.tracking.connectivity import Connectivity
from cycletrac.tracking.errors import PersistenceError, RemoteStorageError
from cycletrac.tracking.identity import Identity, RemoteId
from cycletrac.tracking.models import RideRecord, Rider
from cycletrac.tracking.remote import RemoteStorageClient
from cycletrac.tracking.store import LocalStore

logger = logging.getLogger(__name__)


class UploadOutcome(str, Enum):
    uploaded = "uploaded"
    failed = "failed"
    skipped = "skipped"


class SyncReport(BaseModel):
    total: int = 0
    uploaded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def all_failed(self) -> bool:
        attempted = self.total - self.skipped
        return attempted > 0 and self.failed == attempted


class SyncReconciler:
    """Service to sync rides from the local archive to the remote store.

    Registers itself on `connectivity`, so going online (network back or the
    manual toggle) starts a pass.
    """

    def __init__(
        self,
        store: LocalStore,
        client: RemoteStorageClient,
        connectivity: Connectivity,
        max_workers: Optional[int] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.client = client
        self.connectivity = connectivity
        self.max_workers = max_workers or settings.sync_max_workers
        self.notify = notify
        self._lock = threading.Lock()
        self._in_flight: set = set()
        self._remove_listener = connectivity.add_listener(self._on_connectivity_change)

    def close(self) -> None:
        self._remove_listener()

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.sync()

    def sync(self) -> SyncReport:
        """Upload every unsynced ride of the current user.

        Records are selected from the persisted `uploaded` flag at call time and
        re-checked right before each upload, so overlapping passes never submit
        the same ride twice.
        """
        if not self.connectivity.online:
            logger.debug("Offline; skipping ride sync")
            return SyncReport()

        user = self.store.get_current_user()
        if user is None:
            logger.warning("No current user; skipping ride sync")
            return SyncReport()

        pending = [
            r.identity
            for r in self.store.list_ride_records(user.identity)
            if not r.uploaded
        ]
        if not pending:
            return SyncReport()

        user_id = user.identity.value if user.identity.is_remote else None
        logger.info(f"Starting ride sync of {len(pending)} rides for '{user.username}'")

        workers = max(1, min(self.max_workers, len(pending)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ride-sync") as pool:
            outcomes = list(pool.map(lambda identity: self._upload_one(identity, user_id), pending))

        report = SyncReport(
            total=len(pending),
            uploaded=outcomes.count(UploadOutcome.uploaded),
            failed=outcomes.count(UploadOutcome.failed),
            skipped=outcomes.count(UploadOutcome.skipped),
        )
        logger.info(
            f"Ride sync completed: Uploaded {report.uploaded}, Failed {report.failed}, "
            f"Skipped {report.skipped} out of {report.total}."
        )
        if report.all_failed:
            logger.error(f"Every ride upload failed ({report.failed}); will retry when next online")
            if self.notify:
                self.notify(f"Could not sync {report.failed} rides")
        return report

    def _upload_one(self, identity: Identity, user_id: Optional[int]) -> UploadOutcome:
        with self._lock:
            record = self.store.get_ride_record(identity)
            if record is None or record.uploaded or identity in self._in_flight:
                return UploadOutcome.skipped
            self._in_flight.add(identity)

        try:
            try:
                created = self.client.create_ride(record.to_remote_payload(user_id))
            except (RemoteStorageError, ValidationError) as e:
                logger.warning(f"Failed to sync ride {identity}: {e}")
                return UploadOutcome.failed
            except Exception as e:
                logger.error(f"Unexpected error syncing ride {identity}: {e}", exc_info=True)
                return UploadOutcome.failed

            try:
                self.store.update_ride_record(
                    identity, identity=RemoteId(value=created.id), uploaded=True
                )
            except (PersistenceError, ValidationError) as e:
                logger.error(
                    f"Ride {identity} was stored remotely as {created.id} "
                    f"but could not be marked uploaded: {e}"
                )
                return UploadOutcome.failed

            logger.debug(f"✓ Synced ride {identity} as remote {created.id}")
            return UploadOutcome.uploaded
        finally:
            with self._lock:
                self._in_flight.discard(identity)

    def delete_ride(self, identity: Identity) -> bool:
        """Delete locally; synced rides are also deleted remotely when online."""
        removed = self.store.delete_ride_record(identity)
        if removed and identity.is_remote and self.connectivity.online:
            try:
                self.client.delete_ride(identity.value)
            except RemoteStorageError as e:
                # the local delete stands
                logger.warning(f"Failed to delete ride {identity} from server: {e}")
        return removed

    def register(self, username: str, password: str) -> Rider:
        """Create the rider remotely and adopt everything recorded so far.

        Registration is an explicit request, so it goes out regardless of the
        connectivity flag and its failures (taken username, network) propagate.
        The follow-up sync only runs when online.
        """
        created = self.client.create_user(username, password)
        rider = Rider(identity=RemoteId(value=created.id), username=created.username)

        previous = self.store.get_current_user()
        if previous is not None and previous.identity != rider.identity:
            moved = self.store.reassign_owner(previous.identity, rider.identity)
            logger.info(f"Moved {moved} rides from '{previous.username}' to '{rider.username}'")
        self.store.save_current_user(rider)

        self.sync()
        return rider

    def pull(self) -> list[RideRecord]:
        """Archive remote rides of the current user that this device lacks."""
        user = self.store.get_current_user()
        if not self.connectivity.online or user is None or not user.identity.is_remote:
            return []

        try:
            remote_rides = self.client.list_rides(user.identity.value)
        except (RemoteStorageError, ValidationError) as e:
            logger.warning(f"Failed to fetch rides for '{user.username}': {e}")
            return []

        known = {r.identity for r in self.store.list_ride_records()}
        added = []
        for ride in remote_rides:
            if RemoteId(value=ride.id) in known:
                continue
            added.append(self.store.import_ride_record(RideRecord.from_remote(ride, owner=user.identity)))
        if added:
            logger.info(f"Pulled {len(added)} rides for '{user.username}'")
        return added
