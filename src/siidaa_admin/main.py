# src/siidaa_admin/main.py

import typing

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from . import diagnostics
from .api_client import ApiClient, Files
from .browser_sessions import BrowserSessions, SessionCookieMiddleware, new_session_id
from .config import Settings, settings
from .errors import HttpError, InvalidCredentials, LoginInProgress, ProfileFetchFailed, Unauthorized
from .formatting import present_catalog_item
from .log_store import SYSTEM, LogStore, entries_to_json, parse_level
from .models import LogLevel
from .session import SessionManager
from .storage import JsonFileStorage, Storage

LOGIN_PATH = "/login"

# collection -> singular, as used in the ApiClient method names
WRITABLE_RESOURCES = {"artists": "artist", "albums": "album", "songs": "song"}
# collection -> ApiClient list method
READ_ONLY_RESOURCES = {
    "users": "get_users",
    "purchases": "get_purchases",
    "payment-transactions": "get_payment_transactions",
}


class LoginRequest(BaseModel):
    username: str
    password: str


# --- Dependencies ---

def get_log_store(request: Request) -> LogStore:
    return request.app.state.log_store


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session


def get_browser_sessions(request: Request) -> BrowserSessions:
    return request.app.state.browser_sessions


def get_api(request: Request) -> ApiClient:
    return request.app.state.api


def is_signed_in(request: Request) -> bool:
    """True only for the browser bound at the operator's latest login."""
    return (
        get_session_manager(request).is_authenticated
        and get_browser_sessions(request).is_bound(request.state.browser_session["id"])
    )


async def get_authenticated_user(request: Request) -> dict:
    if not is_signed_in(request):
        print(f"MAIN: get_authenticated_user - No session for {request.url.path}. Redirecting to {LOGIN_PATH}.")
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            detail="Not authenticated",
            headers={"Location": LOGIN_PATH},
        )
    return get_session_manager(request).user.model_dump()


def _catalog_resource(resource: str, write: bool = False) -> str:
    if resource in WRITABLE_RESOURCES:
        return resource
    if resource in READ_ONLY_RESOURCES and not write:
        return resource
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown catalog resource: {resource}")


async def _call_backend(action: str, resource: str, call: typing.Awaitable) -> typing.Any:
    try:
        return await call
    except Unauthorized:
        raise
    except HttpError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Failed to {action} {resource}")
    except httpx.RequestError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Could not connect to backend: {e}",
        )


async def _read_entity(request: Request) -> typing.Tuple[typing.Dict[str, typing.Any], typing.Optional[Files]]:
    """Reads a JSON object body, or a multipart form whose file parts become uploads."""
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        payload: typing.Dict[str, typing.Any] = {}
        files: Files = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                files[key] = (
                    value.filename or key,
                    await value.read(),
                    value.content_type or "application/octet-stream",
                )
            else:
                payload[key] = value
        return payload, files or None

    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Request body must be a JSON object or a multipart form",
        )
    return payload, None


def create_app(
        app_settings: typing.Optional[Settings] = None,
        storage: typing.Optional[Storage] = None,
        http_client: typing.Optional[httpx.AsyncClient] = None,
        console: typing.Optional[typing.Callable[[str], None]] = print,
) -> FastAPI:
    app_settings = app_settings or settings
    storage = storage if storage is not None else JsonFileStorage(app_settings.STORAGE_PATH)

    app = FastAPI(
        title="Siidaa Admin BFF",
        description="Session handling, diagnostics and catalog proxy for the Siidaa music admin dashboard.",
        version="0.1.0"
    )

    log_store = LogStore(
        storage,
        min_level=LogLevel.INFO if app_settings.IS_PRODUCTION else LogLevel.DEBUG,
        max_entries=app_settings.LOG_MAX_ENTRIES,
        persist_entries=app_settings.LOG_PERSIST_ENTRIES,
        storage_key=app_settings.LOG_STORAGE_KEY,
        console=console,
    )
    session = SessionManager(
        storage, log_store, app_settings.API_BASE_URL,
        http_client=http_client, timeout=app_settings.REQUEST_TIMEOUT,
    )
    api = ApiClient(
        app_settings.API_BASE_URL, session, log_store,
        http_client=http_client, timeout=app_settings.REQUEST_TIMEOUT,
    )
    browser_sessions = BrowserSessions(storage, log_store)

    def on_unauthorized(url: str) -> None:
        print(f"MAIN: Backend rejected the session at {url}. Unbinding browsers; next response redirects to {LOGIN_PATH}.")
        browser_sessions.revoke_all()

    api.add_unauthorized_listener(on_unauthorized)

    app.add_middleware(SessionCookieMiddleware, secure=app_settings.IS_PRODUCTION)

    app.state.settings = app_settings
    app.state.storage = storage
    app.state.http_client = http_client
    app.state.log_store = log_store
    app.state.session = session
    app.state.browser_sessions = browser_sessions
    app.state.api = api

    @app.on_event("startup")
    async def startup_event():
        print("--- Siidaa Admin BFF (FastAPI) Starting Up ---")
        print(f"API Base URL: {app_settings.API_BASE_URL}")
        print(f"Environment: {app_settings.APP_ENV} (minimum log level: {log_store.min_level.name})")
        log_store.restore()
        log_store.info(SYSTEM, "Logger initialized")
        log_store.debug(SYSTEM, "Settings loaded", {
            "api_url": app_settings.API_BASE_URL,
            "request_timeout": app_settings.REQUEST_TIMEOUT,
            "log_max_entries": app_settings.LOG_MAX_ENTRIES,
            "log_persist_entries": app_settings.LOG_PERSIST_ENTRIES,
        })
        session.restore()
        if session.is_authenticated:
            browser_sessions.restore()
        else:
            browser_sessions.revoke_all()
        print(f"Session restored: {'Yes (' + session.username + ')' if session.is_authenticated else 'No'}")
        print("-------------------------------------------")

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized):
        return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_302_FOUND)

    # --- Authentication Routes ---

    @app.get(LOGIN_PATH)
    async def login_status(request: Request, session: SessionManager = Depends(get_session_manager)):
        if is_signed_in(request):
            return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
        return {"authenticated": False, "is_loading": session.is_loading}

    @app.post(LOGIN_PATH)
    async def login(
            body: LoginRequest,
            request: Request,
            session: SessionManager = Depends(get_session_manager),
    ):
        try:
            user = await session.login(body.username, body.password)
        except InvalidCredentials as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.detail)
        except ProfileFetchFailed as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
        except LoginInProgress as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except httpx.RequestError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Could not connect to backend: {e}",
            )
        # a fresh id on every sign-in; the pre-login cookie never becomes the bound one
        request.state.browser_session["id"] = browser_sessions.bind()
        return {"user": user.model_dump()}

    @app.api_route("/logout", methods=["GET", "POST"])
    async def logout(request: Request, session: SessionManager = Depends(get_session_manager)):
        if not is_signed_in(request):
            print("MAIN: /logout route hit from an unbound browser. Nothing to end.")
            return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_302_FOUND)
        print(f"MAIN: /logout route hit. User before logout: {session.username or 'Not in session'}")
        session.logout()
        browser_sessions.revoke_all()
        request.state.browser_session["id"] = new_session_id()
        return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_302_FOUND)

    @app.get("/api/bff/userinfo")
    async def get_user_info(user: dict = Depends(get_authenticated_user)):
        return {"user": user}

    # --- Dashboard ---

    @app.get("/")
    async def dashboard(
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        stats = await _call_backend("load", "dashboard stats", api.get_dashboard_stats())
        return {"user": user, "stats": stats}

    # --- Diagnostic log endpoints ---

    @app.get("/api/bff/logs")
    async def list_logs(
            category: typing.Optional[str] = None,
            level: typing.Optional[str] = None,
            search: typing.Optional[str] = None,
            user: dict = Depends(get_authenticated_user),
            log_store: LogStore = Depends(get_log_store),
    ):
        if category == "all":
            category = None
        try:
            min_level = parse_level(level)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        entries = log_store.query(category=category, min_level=min_level, search=search)
        return Response(content=entries_to_json(entries), media_type="application/json")

    @app.get("/api/bff/logs/stats")
    async def log_stats(
            user: dict = Depends(get_authenticated_user),
            log_store: LogStore = Depends(get_log_store),
    ):
        return log_store.stats()

    @app.get("/api/bff/logs/export")
    async def export_logs(
            user: dict = Depends(get_authenticated_user),
            log_store: LogStore = Depends(get_log_store),
    ):
        return Response(
            content=log_store.export(),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{log_store.export_filename()}"'},
        )

    @app.delete("/api/bff/logs")
    async def clear_logs(
            user: dict = Depends(get_authenticated_user),
            log_store: LogStore = Depends(get_log_store),
    ):
        log_store.clear()
        return log_store.stats()

    @app.post("/api/bff/connectivity-test")
    async def connectivity_test(
            user: dict = Depends(get_authenticated_user),
            log_store: LogStore = Depends(get_log_store),
    ):
        ok = await diagnostics.check_connectivity(
            app_settings.API_BASE_URL, log_store, http_client=http_client, timeout=app_settings.REQUEST_TIMEOUT,
        )
        return {"ok": ok, "stats": log_store.stats()}

    # --- Public debug endpoints (no session required) ---

    @app.get("/debug-public")
    async def debug_public(log_store: LogStore = Depends(get_log_store)):
        snapshot = diagnostics.environment_snapshot(app_settings, storage)
        log_store.environment(snapshot)
        return snapshot

    @app.post("/debug-public/probe")
    async def debug_probe():
        results = await diagnostics.probe_endpoints(
            app_settings.API_BASE_URL, http_client=http_client, timeout=app_settings.REQUEST_TIMEOUT,
        )
        return JSONResponse({"api_url": app_settings.API_BASE_URL, "results": results})

    # --- Catalog proxy ---

    def present(resource: str, result: typing.Any) -> typing.Any:
        if resource not in WRITABLE_RESOURCES:
            return result
        if isinstance(result, list):
            return [present_catalog_item(item, app_settings.API_BASE_URL) for item in result]
        return present_catalog_item(result, app_settings.API_BASE_URL)

    @app.get("/api/bff/catalog/{resource}")
    async def list_catalog(
            resource: str,
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        resource = _catalog_resource(resource)
        if resource in WRITABLE_RESOURCES:
            call = getattr(api, f"get_{resource}")()
        else:
            call = getattr(api, READ_ONLY_RESOURCES[resource])()
        return present(resource, await _call_backend("load", resource, call))

    @app.get("/api/bff/catalog/{resource}/{item_id}")
    async def get_catalog_item(
            resource: str,
            item_id: int,
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        resource = _catalog_resource(resource)
        if resource in WRITABLE_RESOURCES:
            call = getattr(api, f"get_{WRITABLE_RESOURCES[resource]}")(item_id)
        else:
            call = api.request(f"/{resource}/{item_id}/")
        return present(resource, await _call_backend("load", resource, call))

    @app.post("/api/bff/catalog/{resource}", status_code=status.HTTP_201_CREATED)
    async def create_catalog_item(
            resource: str,
            request: Request,
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        resource = _catalog_resource(resource, write=True)
        payload, files = await _read_entity(request)
        create = getattr(api, f"create_{WRITABLE_RESOURCES[resource]}")
        return present(resource, await _call_backend("create", resource, create(payload, files)))

    @app.patch("/api/bff/catalog/{resource}/{item_id}")
    async def update_catalog_item(
            resource: str,
            item_id: int,
            request: Request,
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        resource = _catalog_resource(resource, write=True)
        payload, files = await _read_entity(request)
        update = getattr(api, f"update_{WRITABLE_RESOURCES[resource]}")
        return present(resource, await _call_backend("update", resource, update(item_id, payload, files)))

    @app.delete("/api/bff/catalog/{resource}/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_catalog_item(
            resource: str,
            item_id: int,
            user: dict = Depends(get_authenticated_user),
            api: ApiClient = Depends(get_api),
    ):
        resource = _catalog_resource(resource, write=True)
        delete = getattr(api, f"delete_{WRITABLE_RESOURCES[resource]}")
        await _call_backend("delete", resource, delete(item_id))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


app = create_app()
