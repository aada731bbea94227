"""JSON-backed registry of companion applications the panel can launch."""
from __future__ import annotations

import enum
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Sequence

from deck.config import section
from deck.process_handle import ProcessHandle

_LOG = logging.getLogger("app_registry")


class AppRegistryError(Exception):
    """Raised when an app cannot be registered, launched or stopped."""


class AppNotFoundError(AppRegistryError):
    pass


class AppLaunchError(AppRegistryError):
    pass


class AppStatus(str, enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class RegisteredApp:
    id: str
    name: str
    executable: str
    path: str = ""
    description: str = ""
    icon: str | None = None
    status: AppStatus = AppStatus.STOPPED
    pid: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RegisteredApp":
        app_id = str(payload.get("id") or "").strip()
        name = str(payload.get("name") or "").strip()
        executable = str(payload.get("executable") or "").strip()
        if not app_id or not name or not executable:
            raise AppRegistryError("App entries need 'id', 'name' and 'executable'")
        try:
            status = AppStatus(str(payload.get("status") or "stopped").lower())
        except ValueError:
            status = AppStatus.STOPPED
        icon = payload.get("icon")
        return cls(
            id=app_id,
            name=name,
            executable=executable,
            path=str(payload.get("path") or ""),
            description=str(payload.get("description") or ""),
            icon=str(icon) if icon else None,
            status=status,
        )


SpawnFn = Callable[..., ProcessHandle]


def _write_json_atomic(destination: Path, payload: Any) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_suffix(destination.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, destination)


class AppRegistry:
    def __init__(self, registry_path: Path | str, *, spawn: SpawnFn = ProcessHandle.spawn) -> None:
        self.registry_path = Path(registry_path).expanduser()
        self._spawn = spawn
        self._lock = threading.Lock()
        self._apps: Dict[str, RegisteredApp] = self._load()
        self._processes: Dict[str, ProcessHandle] = {}

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "AppRegistry":
        cfg = cfg if cfg is not None else section("apps")
        return cls(cfg.get("registry_path") or "~/.local/share/control-deck/apps.json")

    def _load(self) -> Dict[str, RegisteredApp]:
        try:
            with self.registry_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            _LOG.warning("Ignoring unreadable app registry %s: %s", self.registry_path, exc)
            return {}

        apps: Dict[str, RegisteredApp] = {}
        entries = payload if isinstance(payload, list) else []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                app = RegisteredApp.from_dict(entry)
            except AppRegistryError as exc:
                _LOG.warning("Skipping registry entry: %s", exc)
                continue
            # Processes from an earlier run are not ours to manage.
            if app.status is AppStatus.RUNNING:
                app.status = AppStatus.STOPPED
            apps[app.id] = app
        return apps

    def _persist(self) -> None:
        payload = [app.to_dict() for app in self._apps.values()]
        try:
            _write_json_atomic(self.registry_path, payload)
        except OSError as exc:
            raise AppRegistryError(f"Failed to save app registry: {exc}") from exc

    def _get(self, app_id: str) -> RegisteredApp:
        app = self._apps.get(app_id)
        if app is None:
            raise AppNotFoundError(f"App with id '{app_id}' not found")
        return app

    def _refresh(self, app: RegisteredApp) -> None:
        handle = self._processes.get(app.id)
        if handle is not None and not handle.running():
            code = handle.terminate_and_reap()
            del self._processes[app.id]
            app.pid = None
            app.status = AppStatus.STOPPED if code == 0 else AppStatus.ERROR

    # --- commands ---
    def list_apps(self) -> list[RegisteredApp]:
        with self._lock:
            for app in self._apps.values():
                self._refresh(app)
            return [RegisteredApp(**asdict(app)) for app in self._apps.values()]

    def register(self, app: RegisteredApp | Dict[str, Any]) -> RegisteredApp:
        if isinstance(app, dict):
            app = RegisteredApp.from_dict(app)
        with self._lock:
            if app.id in self._processes:
                raise AppRegistryError(f"App '{app.id}' is running; stop it before updating")
            app.status = AppStatus.STOPPED
            app.pid = None
            self._apps[app.id] = app
            self._persist()
        _LOG.info("Registered app %s (%s)", app.id, app.executable)
        return app

    def remove(self, app_id: str) -> None:
        with self._lock:
            self._get(app_id)
            handle = self._processes.pop(app_id, None)
            if handle is not None:
                handle.terminate_and_reap()
            del self._apps[app_id]
            self._persist()
        _LOG.info("Removed app %s", app_id)

    def launch(self, app_id: str) -> int:
        with self._lock:
            app = self._get(app_id)
            self._refresh(app)
            if app.id in self._processes:
                raise AppRegistryError(f"App '{app.name}' is already running")
            argv: Sequence[str] = [app.executable]
            try:
                handle = self._spawn(argv, cwd=app.path or None, new_session=True)
            except OSError as exc:
                app.status = AppStatus.ERROR
                app.pid = None
                self._persist()
                raise AppLaunchError(f"Failed to launch app: {exc}") from exc
            self._processes[app.id] = handle
            app.status = AppStatus.RUNNING
            app.pid = handle.pid
            self._persist()
        _LOG.info("Launched %s (pid %s)", app.name, handle.pid)
        return handle.pid

    def stop(self, app_id: str) -> None:
        with self._lock:
            app = self._get(app_id)
            handle = self._processes.pop(app_id, None)
            if handle is not None:
                handle.terminate_and_reap()
            app.status = AppStatus.STOPPED
            app.pid = None
            self._persist()
        _LOG.info("Stopped %s", app_id)

    def shutdown(self) -> None:
        with self._lock:
            for app_id, handle in list(self._processes.items()):
                handle.terminate_and_reap()
                app = self._apps.get(app_id)
                if app is not None:
                    app.status = AppStatus.STOPPED
                    app.pid = None
            self._processes.clear()
