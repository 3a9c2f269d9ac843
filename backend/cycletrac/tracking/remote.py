"""HTTP client for the Remote Storage API (`/rides`, `/users`)."""
import logging
from typing import Optional

import httpx

from cycletrac.core.config import settings
from cycletrac.schemas.ride import RideRead
from cycletrac.schemas.user import UserRead
from cycletrac.tracking.errors import RemoteStorageError

logger = logging.getLogger(__name__)


class RemoteStorageClient:
    """Thin wrapper over the CRUD routes.

    Pass `http_client` to reuse a configured `httpx.Client` (tests hand in
    FastAPI's TestClient); otherwise one is built from settings and owned here.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.http_timeout,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            r = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStorageError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 400:
            try:
                body = r.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            detail = body.get("detail") or body.get("message") or r.text
            raise RemoteStorageError(
                f"{method} {path} -> HTTP {r.status_code}: {detail}",
                status_code=r.status_code,
                errors=body.get("errors"),
            )
        return r

    @staticmethod
    def _json(r: httpx.Response):
        try:
            return r.json()
        except ValueError as e:
            raise RemoteStorageError(
                f"{r.request.method} {r.request.url.path} -> HTTP {r.status_code}: unreadable body",
                status_code=r.status_code,
            ) from e

    # --------- rides --------- #

    def create_ride(self, payload: dict) -> RideRead:
        r = self._request("POST", "/rides", json=payload)
        return RideRead.model_validate(self._json(r))

    def list_rides(self, user_id: int) -> list[RideRead]:
        r = self._request("GET", "/rides", params={"userId": user_id})
        return [RideRead.model_validate(item) for item in self._json(r)]

    def get_ride(self, ride_id: int) -> Optional[RideRead]:
        try:
            r = self._request("GET", f"/rides/{ride_id}")
        except RemoteStorageError as e:
            if e.not_found:
                return None
            raise
        return RideRead.model_validate(self._json(r))

    def update_ride(self, ride_id: int, payload: dict) -> RideRead:
        r = self._request("PUT", f"/rides/{ride_id}", json=payload)
        return RideRead.model_validate(self._json(r))

    def delete_ride(self, ride_id: int) -> bool:
        try:
            self._request("DELETE", f"/rides/{ride_id}")
        except RemoteStorageError as e:
            if e.not_found:
                return False
            raise
        return True

    # --------- users --------- #

    def create_user(self, username: str, password: str) -> UserRead:
        r = self._request("POST", "/users", json={"username": username, "password": password})
        return UserRead.model_validate(self._json(r))
