#!/usr/bin/env python3
"""
Replay a recorded GPX or FIT file through the live ride tracker.

The file's points are delivered like a phone's geolocation feed, the ride is
archived in the offline store and, with --online, synced to the API.

Usage examples:
  - Quick offline replay (10 points per second):
      python backend/scripts/replay_ride.py morning.gpx --interval 0.1
  - Replay and upload to a local backend, registering a rider first:
      python backend/scripts/replay_ride.py ride.fit --online \
          --base-url http://localhost:8000 --register alice --password secret
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from cycletrac.core.config import settings
from cycletrac.core.logging_config import configure_logging
from cycletrac.tracking.connectivity import Connectivity
from cycletrac.tracking.errors import TrackingError
from cycletrac.tracking.geolocation import (
    ManualGeolocation,
    ReplayGeolocation,
    positions_from_fit,
    positions_from_gpx,
)
from cycletrac.tracking.remote import RemoteStorageClient
from cycletrac.tracking.session import RideTracker
from cycletrac.tracking.store import FileBackend, LocalStore
from cycletrac.tracking.sync import SyncReconciler

logger = logging.getLogger("replay_ride")


def load_positions(path: str):
    if path.lower().endswith(".fit"):
        return positions_from_fit(path)
    return positions_from_gpx(path)


def main() -> int:
    ap = argparse.ArgumentParser(description="Replay a GPX/FIT file through the ride tracker")
    ap.add_argument("path", help="GPX or FIT file to replay")
    ap.add_argument("--title", default=None, help="Ride title (default: file name)")
    ap.add_argument("--interval", type=float, default=0.05, help="Seconds between replayed points")
    ap.add_argument("--store-dir", default=settings.local_store_dir, help="Offline store directory")
    ap.add_argument("--online", action="store_true", help="Sync archived rides to the API")
    ap.add_argument("--base-url", default=settings.api_base_url, help="API base URL")
    ap.add_argument("--register", metavar="USERNAME", help="Register this rider before syncing")
    ap.add_argument("--password", default=None, help="Password used with --register")
    args = ap.parse_args()

    configure_logging()

    positions = load_positions(args.path)
    if not positions:
        print(f"No positions found in {args.path}", file=sys.stderr)
        return 1

    store = LocalStore(FileBackend(args.store_dir))
    store.ensure_demo_user()
    connectivity = Connectivity(online=False)
    source = ReplayGeolocation(positions, interval=args.interval)

    with RemoteStorageClient(base_url=args.base_url) as client:
        reconciler = SyncReconciler(store, client, connectivity)
        tracker = RideTracker(
            store,
            source,
            reconciler=reconciler,
            tick_interval=args.interval,
            notify=lambda msg: print(f"! {msg}", file=sys.stderr),
        )
        # a ride left over from an interrupted run is archived before replaying
        leftover = RideTracker(store, ManualGeolocation(), auto_tick=False)
        try:
            if leftover.restore():
                logger.warning("Archiving a ride left over from a previous run first")
                leftover.end()

            tracker.start(args.title or args.path.rsplit("/", 1)[-1])
            source.finished.wait()
            print(json.dumps(tracker.stats(), indent=2))
            record = tracker.end()
        except TrackingError as e:
            print(f"Replay failed: {e}", file=sys.stderr)
            return 1
        finally:
            tracker.close()

        if record is None:
            print("Nothing recorded.")
            return 0
        print(f"Archived {record.identity}: {record.distance:.2f} km, {record.duration}s")

        if args.online:
            if args.register:
                if not args.password:
                    print("--register needs --password", file=sys.stderr)
                    return 2
                try:
                    rider = reconciler.register(args.register, args.password)
                except TrackingError as e:
                    print(f"Registration failed: {e}", file=sys.stderr)
                    return 1
                print(f"Registered '{rider.username}' as {rider.identity}")
            # going online triggers the sync pass
            connectivity.set_online(True)
            pending = [r for r in store.list_ride_records() if not r.uploaded]
            print(f"{len(pending)} rides still waiting to be synced")
        reconciler.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
