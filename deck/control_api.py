"""JSON control API served by aiohttp.

Every blocking panel operation runs on a small thread pool so the event loop
stays responsive while a transcription or a process teardown is in progress.
Failures come back as ``{"ok": false, "error": "..."}`` with a status code
chosen from the exception type.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web
from aiohttp.web import AppKey

from deck.app_registry import (
    AppLaunchError,
    AppNotFoundError,
    AppRegistryError,
    RegisteredApp,
)
from deck.recording_session import InvalidTransitionError, RecordingError
from deck.services import ServiceError, UnknownServiceError
from deck.transcription import TranscriptionError

if TYPE_CHECKING:
    from deck.panel import ControlPanel

_LOG = logging.getLogger("control_api")


class BadRequestError(Exception):
    """Raised for request bodies the API cannot use."""


CONTROL_EXECUTOR_MAX_WORKERS = 4

PANEL_KEY: AppKey[Any] = web.AppKey("control_panel", object)
EXECUTOR_KEY: AppKey[ThreadPoolExecutor] = web.AppKey(
    "control_executor", ThreadPoolExecutor
)

# Checked in order; subclasses come before their bases.
_ERROR_STATUS: tuple[tuple[type[BaseException], int], ...] = (
    (InvalidTransitionError, 409),
    (AppNotFoundError, 404),
    (UnknownServiceError, 404),
    (AppLaunchError, 502),
    (AppRegistryError, 409),
    (ServiceError, 502),
    (TranscriptionError, 502),
    (RecordingError, 502),
    (BadRequestError, 400),
)


def status_for_exception(exc: BaseException) -> int:
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


def _ok(**payload: Any) -> web.Response:
    return web.json_response({"ok": True, **payload})


@web.middleware
async def _error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as exc:
        status = status_for_exception(exc)
        if status == 500:
            _LOG.exception("%s %s failed", request.method, request.path)
        else:
            _LOG.warning("%s %s failed: %s", request.method, request.path, exc)
        return _error(str(exc) or exc.__class__.__name__, status)


async def _blocking(request: web.Request, func: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        request.app[EXECUTOR_KEY], functools.partial(func, *args)
    )


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except Exception as exc:
        raise BadRequestError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise BadRequestError("Expected a JSON object")
    return data


def build_app(panel: "ControlPanel") -> web.Application:
    app = web.Application(middlewares=[_error_middleware])
    app[PANEL_KEY] = panel
    app[EXECUTOR_KEY] = ThreadPoolExecutor(
        max_workers=CONTROL_EXECUTOR_MAX_WORKERS,
        thread_name_prefix="control_api_io",
    )

    async def _shutdown_executor(app: web.Application) -> None:
        app[EXECUTOR_KEY].shutdown(wait=False, cancel_futures=True)

    app.on_cleanup.append(_shutdown_executor)

    # --- recording ---
    async def recording_status(request: web.Request) -> web.Response:
        return _ok(**panel.recording.snapshot())

    async def recording_start(request: web.Request) -> web.Response:
        path = await _blocking(request, panel.recording.start)
        return _ok(file=str(path), **panel.recording.snapshot())

    async def recording_pause(request: web.Request) -> web.Response:
        await _blocking(request, panel.recording.pause)
        return _ok(**panel.recording.snapshot())

    async def recording_resume(request: web.Request) -> web.Response:
        await _blocking(request, panel.recording.resume)
        return _ok(**panel.recording.snapshot())

    async def recording_stop(request: web.Request) -> web.Response:
        text = await _blocking(request, panel.recording.stop_and_transcribe)
        return _ok(text=text, **panel.recording.snapshot())

    # --- alerts ---
    async def alerts_modified(request: web.Request) -> web.Response:
        modified = await _blocking(request, panel.alerts.check_alerts_log_modified)
        return _ok(modified=modified)

    async def alerts_reset(request: web.Request) -> web.Response:
        await _blocking(request, panel.alerts.reset_baseline)
        return _ok(last_file_position=panel.alerts.last_file_position())

    async def notifications_get(request: web.Request) -> web.Response:
        return _ok(enabled=panel.alerts.notifications_enabled())

    async def notifications_set(request: web.Request) -> web.Response:
        data = await _read_json(request)
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            return _error("'enabled' must be true or false", 400)
        return _ok(enabled=panel.alerts.set_notifications_enabled(enabled))

    # --- apps ---
    async def apps_list(request: web.Request) -> web.Response:
        apps = await _blocking(request, panel.apps.list_apps)
        return _ok(apps=[app.to_dict() for app in apps])

    async def apps_register(request: web.Request) -> web.Response:
        data = await _read_json(request)
        try:
            entry = RegisteredApp.from_dict(data)
        except AppRegistryError as exc:
            return _error(str(exc), 400)
        app_entry = await _blocking(request, panel.apps.register, entry)
        return _ok(app=app_entry.to_dict())

    async def apps_remove(request: web.Request) -> web.Response:
        await _blocking(request, panel.apps.remove, request.match_info["app_id"])
        return _ok()

    async def apps_launch(request: web.Request) -> web.Response:
        pid = await _blocking(request, panel.apps.launch, request.match_info["app_id"])
        return _ok(pid=pid)

    async def apps_stop(request: web.Request) -> web.Response:
        await _blocking(request, panel.apps.stop, request.match_info["app_id"])
        return _ok()

    # --- services ---
    async def services_list(request: web.Request) -> web.Response:
        return _ok(services=await panel.services.statuses())

    async def service_action(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        action = request.match_info["action"]
        if action == "start":
            await panel.services.start(name)
        else:
            await panel.services.stop(name)
        return _ok(name=name, action=action)

    app.router.add_get("/api/recording/status", recording_status)
    app.router.add_post("/api/recording/start", recording_start)
    app.router.add_post("/api/recording/pause", recording_pause)
    app.router.add_post("/api/recording/resume", recording_resume)
    app.router.add_post("/api/recording/stop", recording_stop)
    app.router.add_get("/api/alerts/modified", alerts_modified)
    app.router.add_post("/api/alerts/reset", alerts_reset)
    app.router.add_get("/api/alerts/notifications", notifications_get)
    app.router.add_post("/api/alerts/notifications", notifications_set)
    app.router.add_get("/api/apps", apps_list)
    app.router.add_post("/api/apps", apps_register)
    app.router.add_delete("/api/apps/{app_id}", apps_remove)
    app.router.add_post("/api/apps/{app_id}/launch", apps_launch)
    app.router.add_post("/api/apps/{app_id}/stop", apps_stop)
    app.router.add_get("/api/services", services_list)
    app.router.add_post("/api/services/{name}/{action:start|stop}", service_action)
    return app


class ControlApiHandle:
    """Handle returned by start_control_api_in_thread(). Call stop() to shut down."""

    def __init__(
        self,
        thread: threading.Thread,
        loop: asyncio.AbstractEventLoop,
        runner: web.AppRunner,
    ) -> None:
        self.thread = thread
        self.loop = loop
        self.runner = runner

    def stop(self, timeout: float = 5.0) -> None:
        _LOG.info("Stopping control API ...")
        if not self.loop.is_closed():
            # The server thread runs runner.cleanup() once the loop stops.
            self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=timeout)
        _LOG.info("Control API stopped")


def start_control_api_in_thread(
    panel: "ControlPanel",
    host: str = "127.0.0.1",
    port: int = 8765,
    *,
    access_log: bool = False,
) -> ControlApiHandle:
    """Run the aiohttp server in a dedicated thread with its own event loop."""
    loop = asyncio.new_event_loop()
    started = threading.Event()
    box: dict[str, Any] = {}

    def _run() -> None:
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(build_app(panel), access_log=_LOG if access_log else None)
        try:
            loop.run_until_complete(runner.setup())
            site = web.TCPSite(runner, host, port)
            loop.run_until_complete(site.start())
        except Exception as exc:
            box["error"] = exc
            started.set()
            loop.run_until_complete(runner.cleanup())
            loop.close()
            return
        box["runner"] = runner
        started.set()
        _LOG.info("Control API listening on http://%s:%s", host, port)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(runner.cleanup())
            loop.close()

    thread = threading.Thread(target=_run, name="control_api", daemon=True)
    thread.start()

    started.wait()

    if "error" in box:
        thread.join(timeout=1.0)
        raise RuntimeError(f"Control API failed to start on {host}:{port}: {box['error']}")

    return ControlApiHandle(thread, loop, box["runner"])
