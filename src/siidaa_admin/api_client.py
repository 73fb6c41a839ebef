# src/siidaa_admin/api_client.py

import time
import typing
from decimal import Decimal, InvalidOperation

import httpx

from .errors import HttpError, Unauthorized
from .log_store import API, LogStore
from .session import SessionManager
from .transport import elapsed_ms, open_client

# name -> (filename, content, content_type), as accepted by httpx
Files = typing.Dict[str, typing.Tuple[str, bytes, str]]
UnauthorizedListener = typing.Callable[[str], None]


class ApiClient:
    """
    The single path for calls to the catalog backend.

    Attaches the session's bearer token, journals every call with its timing, and on
    a 401 clears the session, notifies the unauthorized listeners and raises `Unauthorized`.
    """

    def __init__(
            self,
            base_url: str,
            session: SessionManager,
            log_store: LogStore,
            http_client: typing.Optional[httpx.AsyncClient] = None,
            timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.log_store = log_store
        self.http_client = http_client
        self.timeout = timeout
        self._unauthorized_listeners: typing.List[UnauthorizedListener] = []

    def add_unauthorized_listener(self, listener: UnauthorizedListener) -> None:
        self._unauthorized_listeners.append(listener)

    def remove_unauthorized_listener(self, listener: UnauthorizedListener) -> None:
        if listener in self._unauthorized_listeners:
            self._unauthorized_listeners.remove(listener)

    async def request(
            self,
            endpoint: str,
            method: str = "GET",
            json: typing.Any = None,
            data: typing.Optional[typing.Dict[str, typing.Any]] = None,
            files: typing.Optional[Files] = None,
    ) -> typing.Any:
        url = f"{self.base_url}/api{endpoint}"
        method = method.upper()

        headers = {}
        # Multipart bodies need httpx to set the boundary itself
        if files is None and data is None:
            headers["Content-Type"] = "application/json"
        if self.session.access_token:
            headers["Authorization"] = f"Bearer {self.session.access_token}"

        self.log_store.api_request(method, url, json)
        started = time.perf_counter()
        async with open_client(self.http_client, self.timeout) as client:
            try:
                response = await client.request(
                    method, url, headers=headers, json=json, data=data, files=files
                )
            except httpx.RequestError as e:
                self.log_store.api_error(method, url, e, elapsed_ms(started))
                raise
        self.log_store.api_response(method, url, response.status_code, elapsed_ms(started))

        if not response.is_success:
            if response.status_code == 401:
                self.session.invalidate(f"{method} {url} returned 401")
                self._notify_unauthorized(url)
                raise Unauthorized(url=url, body=response.text)
            raise HttpError(response.status_code, url=url, body=response.text)

        if not response.content:
            return None
        return response.json()

    def _notify_unauthorized(self, url: str) -> None:
        for listener in list(self._unauthorized_listeners):
            listener(url)

    async def _send_entity(self, endpoint: str, method: str,
                           payload: typing.Dict[str, typing.Any],
                           files: typing.Optional[Files] = None) -> typing.Any:
        if files:
            form = {k: "" if v is None else str(v) for k, v in payload.items()}
            return await self.request(endpoint, method, data=form, files=files)
        return await self.request(endpoint, method, json=payload)

    # --- Artists ---

    async def get_artists(self) -> typing.List[dict]:
        return await self.request("/artists/")

    async def get_artist(self, artist_id: int) -> dict:
        return await self.request(f"/artists/{artist_id}/")

    async def create_artist(self, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity("/artists/", "POST", payload, files)

    async def update_artist(self, artist_id: int, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity(f"/artists/{artist_id}/", "PATCH", payload, files)

    async def delete_artist(self, artist_id: int) -> None:
        await self.request(f"/artists/{artist_id}/", "DELETE")

    # --- Albums ---

    async def get_albums(self) -> typing.List[dict]:
        return await self.request("/albums/")

    async def get_album(self, album_id: int) -> dict:
        return await self.request(f"/albums/{album_id}/")

    async def create_album(self, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity("/albums/", "POST", payload, files)

    async def update_album(self, album_id: int, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity(f"/albums/{album_id}/", "PATCH", payload, files)

    async def delete_album(self, album_id: int) -> None:
        await self.request(f"/albums/{album_id}/", "DELETE")

    # --- Songs ---

    async def get_songs(self) -> typing.List[dict]:
        return await self.request("/songs/")

    async def get_song(self, song_id: int) -> dict:
        return await self.request(f"/songs/{song_id}/")

    async def create_song(self, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity("/songs/", "POST", payload, files)

    async def update_song(self, song_id: int, payload: dict, files: typing.Optional[Files] = None) -> dict:
        return await self._send_entity(f"/songs/{song_id}/", "PATCH", payload, files)

    async def delete_song(self, song_id: int) -> None:
        await self.request(f"/songs/{song_id}/", "DELETE")

    # --- Read-only collaborators ---

    async def get_users(self) -> typing.List[dict]:
        return await self.request("/users/")

    async def get_payment_transactions(self) -> typing.List[dict]:
        return await self.request("/payment-transactions/")

    async def get_purchases(self) -> typing.List[dict]:
        return await self.request("/purchases/")

    async def health_check(self) -> dict:
        return await self.request("/health/")

    async def get_dashboard_stats(self) -> typing.Dict[str, typing.Any]:
        artists = await self.get_artists()
        albums = await self.get_albums()
        songs = await self.get_songs()
        transactions = await self.get_payment_transactions()

        total_revenue = Decimal("0")
        for tx in transactions:
            if tx.get("status") != "success":
                continue
            try:
                total_revenue += Decimal(str(tx.get("amount", "0")))
            except InvalidOperation:
                self.log_store.warn(API, "Skipping transaction with unreadable amount", {"id": tx.get("id")})

        return {
            "total_artists": len(artists),
            "total_albums": len(albums),
            "total_songs": len(songs),
            "total_revenue": float(total_revenue),
        }
