"""Offline store for the tracking client.

Everything lives under three keys of a small key-value backend: the
in-progress session snapshot, the archive of finished rides and the current
rider. Reads never fail: missing or unreadable state reads as "nothing saved".
Writes raise `PersistenceError`.
"""
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from cycletrac.core.config import settings
from cycletrac.core.constants import CURRENT_RIDE_KEY, CURRENT_USER_KEY, RIDES_KEY
from cycletrac.core.time_utils import utcnow
from cycletrac.tracking.errors import PersistenceError
from cycletrac.tracking.identity import Identity, LocalId
from cycletrac.tracking.models import RideRecord, RideSession, Rider

logger = logging.getLogger(__name__)

_records_adapter = TypeAdapter(list[RideRecord])


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryBackend:
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileBackend:
    """One `<key>.json` file per key; writes go through a temp file + rename."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


class LocalStore:
    def __init__(self, backend: KeyValueBackend):
        self.backend = backend
        self._lock = threading.RLock()
        self._last_local_id = 0

    # --------- raw access --------- #

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.backend.get(key)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read '{key}' from local store: {e}")
            return None

    def _write(self, key: str, value: str) -> None:
        try:
            self.backend.set(key, value)
        except OSError as e:
            logger.error(f"Failed to write '{key}' to local store: {e}")
            raise PersistenceError(f"Failed to save {key} locally") from e

    def _remove(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except OSError as e:
            logger.error(f"Failed to remove '{key}' from local store: {e}")
            raise PersistenceError(f"Failed to clear {key} locally") from e

    # --------- active session --------- #

    def save_active_session(self, session: RideSession) -> None:
        with self._lock:
            self._write(CURRENT_RIDE_KEY, session.model_dump_json())

    def load_active_session(self) -> Optional[RideSession]:
        raw = self._read(CURRENT_RIDE_KEY)
        if not raw:
            return None
        try:
            return RideSession.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable saved ride: {e}")
            return None

    def clear_active_session(self) -> None:
        with self._lock:
            self._remove(CURRENT_RIDE_KEY)

    # --------- ride archive --------- #

    def _load_records(self) -> list[RideRecord]:
        raw = self._read(RIDES_KEY)
        if not raw:
            return []
        try:
            return _records_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable ride archive: {e}")
            return []

    def _save_records(self, records: list[RideRecord]) -> None:
        self._write(RIDES_KEY, _records_adapter.dump_json(records).decode("utf-8"))

    def _next_local_id(self, records: list[RideRecord]) -> LocalId:
        # millisecond clock, bumped past anything already handed out
        used = [r.identity.value for r in records if isinstance(r.identity, LocalId)]
        candidate = max([int(time.time() * 1000), self._last_local_id + 1] + [u + 1 for u in used])
        self._last_local_id = candidate
        return LocalId(value=candidate)

    def append_ride_record(self, record: RideRecord) -> RideRecord:
        with self._lock:
            records = self._load_records()
            now = utcnow()
            saved = record.model_copy(
                update={
                    "identity": self._next_local_id(records),
                    "uploaded": False,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            records.append(saved)
            self._save_records(records)
        logger.info(f"Archived ride {saved.identity} ({saved.title})")
        return saved

    def import_ride_record(self, record: RideRecord) -> RideRecord:
        """Archive a record that already carries its (remote) identity."""
        if record.identity is None:
            raise ValueError("imported rides must carry an identity")
        with self._lock:
            records = self._load_records()
            if any(r.identity == record.identity for r in records):
                raise ValueError(f"ride {record.identity} is already archived")
            records.append(record)
            self._save_records(records)
        return record

    def list_ride_records(self, owner: Optional[Identity] = None) -> list[RideRecord]:
        records = self._load_records()
        if owner is not None:
            records = [r for r in records if r.owner == owner]
        return sorted(records, key=lambda r: r.start_time)

    def get_ride_record(self, identity: Identity) -> Optional[RideRecord]:
        for record in self._load_records():
            if record.identity == identity:
                return record
        return None

    def update_ride_record(self, target: Identity, **patch) -> Optional[RideRecord]:
        """Apply `patch` to the record tagged `target`; the patch may re-tag it."""
        with self._lock:
            records = self._load_records()
            for idx, record in enumerate(records):
                if record.identity == target:
                    patch.setdefault("updated_at", utcnow())
                    records[idx] = record.model_copy(update=patch)
                    self._save_records(records)
                    return records[idx]
        return None

    def delete_ride_record(self, identity: Identity) -> bool:
        with self._lock:
            records = self._load_records()
            kept = [r for r in records if r.identity != identity]
            if len(kept) == len(records):
                return False
            self._save_records(kept)
        logger.info(f"Deleted local ride {identity}")
        return True

    def reassign_owner(self, old: Identity, new: Identity) -> int:
        """Move every ride owned by `old` to `new`; returns how many moved."""
        with self._lock:
            records = self._load_records()
            moved = 0
            for idx, record in enumerate(records):
                if record.owner == old:
                    records[idx] = record.model_copy(update={"owner": new, "updated_at": utcnow()})
                    moved += 1
            if moved:
                self._save_records(records)
        return moved

    # --------- current rider --------- #

    def get_current_user(self) -> Optional[Rider]:
        raw = self._read(CURRENT_USER_KEY)
        if not raw:
            return None
        try:
            return Rider.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable user data: {e}")
            return None

    def save_current_user(self, user: Rider) -> None:
        with self._lock:
            self._write(CURRENT_USER_KEY, user.model_dump_json())

    def clear_current_user(self) -> None:
        with self._lock:
            self._remove(CURRENT_USER_KEY)

    def ensure_demo_user(self, username: Optional[str] = None) -> Rider:
        """Return the current rider, creating the local-only demo identity if needed."""
        with self._lock:
            current = self.get_current_user()
            if current is not None:
                return current
            demo = Rider(identity=LocalId(value=1), username=username or settings.demo_username)
            self.save_current_user(demo)
        logger.info(f"Created local demo user '{demo.username}'")
        return demo
