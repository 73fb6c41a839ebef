# src/siidaa_admin/diagnostics.py

import platform
import sys
import time
import typing
from datetime import datetime, timezone

import httpx

from .config import Settings
from .log_store import NETWORK, LogStore
from .session import TOKEN_KEY, USER_KEY
from .storage import Storage
from .transport import elapsed_ms, open_client

PROBE_ENDPOINTS = ("/api/health/", "/api/token/", "/api/artists/", "/")
PROBE_BODY_PREVIEW = 200

HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def environment_snapshot(settings: Settings, storage: Storage) -> typing.Dict[str, typing.Any]:
    now = datetime.now(timezone.utc).astimezone()
    return {
        "app_env": settings.APP_ENV,
        "api_url": settings.API_BASE_URL,
        "python_version": sys.version.split()[0],
        "platform": platform.platform(),
        "timestamp": now.isoformat(),
        "timezone": str(now.tzinfo),
        "storage_path": str(settings.STORAGE_PATH),
        "saved_token": storage.get_item(TOKEN_KEY) is not None,
        "saved_user": storage.get_item(USER_KEY) is not None,
    }


async def check_connectivity(
        base_url: str,
        log_store: LogStore,
        http_client: typing.Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
) -> bool:
    """Unauthenticated GET against the health endpoint. Never raises."""
    log_store.info(NETWORK, "Manual connectivity test initiated")
    url = f"{base_url.rstrip('/')}/api/health/"
    started = time.perf_counter()
    try:
        async with open_client(http_client, timeout) as client:
            response = await client.get(url, headers=HEADERS)
    except httpx.RequestError as e:
        log_store.network_test(url, False, elapsed_ms(started), e)
        return False

    log_store.network_test(url, response.is_success, elapsed_ms(started))
    if response.is_success:
        try:
            body = response.json()
        except ValueError:
            body = response.text[:PROBE_BODY_PREVIEW]
        log_store.info(NETWORK, "Health check successful", body)
    return response.is_success


async def probe_endpoints(
        base_url: str,
        http_client: typing.Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        endpoints: typing.Sequence[str] = PROBE_ENDPOINTS,
) -> typing.List[typing.Dict[str, typing.Any]]:
    base_url = base_url.rstrip("/")
    results = []
    async with open_client(http_client, timeout) as client:
        for endpoint in endpoints:
            url = f"{base_url}{endpoint}"
            started = time.perf_counter()
            try:
                response = await client.get(url, headers=HEADERS)
            except httpx.RequestError as e:
                results.append({
                    "url": url,
                    "ok": False,
                    "duration": elapsed_ms(started),
                    "error": str(e) or type(e).__name__,
                    "error_type": type(e).__name__,
                })
                continue
            result = {
                "url": url,
                "ok": response.is_success,
                "status": response.status_code,
                "reason": response.reason_phrase,
                "duration": elapsed_ms(started),
                "headers": dict(response.headers),
            }
            if response.is_success:
                result["preview"] = response.text[:PROBE_BODY_PREVIEW]
            results.append(result)
    return results
