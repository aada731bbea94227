#!/usr/bin/env python3
"""
Unified configuration loader for the control deck.

Load order (first found wins):
  1) DECK_CONFIG (env, absolute or relative to CWD)
  2) /etc/control-deck/config.yaml
  3) ~/.config/control-deck/config.yaml
  4) <project_root>/config.yaml (derived from this file's location)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

_DEFAULTS: Dict[str, Any] = {
    "recording": {
        "media_root": "Music",
        "subdir": "SpeechToText",
        "recorder": "arecord",
        "sample_format": "S16_LE",
        "sample_rate": 48000,
        "channels": 1,
    },
    "transcription": {
        "command": "whisper",
        "model": "base",
        "use_gpu": True,
        "scratch_dir": "/tmp/deck-transcripts",
        "completion_sound": "/usr/share/sounds/freedesktop/stereo/complete.oga",
        "sound_player": "paplay",
    },
    "clipboard": {
        "backends": [
            ["wl-copy"],
            ["xclip", "-selection", "clipboard"],
        ],
    },
    "alerts": {
        "log_path": "/var/ossec/logs/alerts/alerts.log",
        "boundary_marker": "** Alert",
        "notifications_enabled": True,
        "watch": True,
    },
    "notifications": {
        "app_name": "Control Deck",
        "notify_command": "notify-send",
        "webhook": {},
    },
    "apps": {
        "registry_path": "~/.local/share/control-deck/apps.json",
    },
    "services": {
        "privilege_helper": ["pkexec"],
        "units": {
            "security_monitor": "wazuh-agent.service",
            "file_integrity": "aide-check.service",
            "connection_filter": "opensnitch.service",
            "web_ui": "deck-web-ui.service",
        },
    },
    "control_api": {
        "enabled": True,
        "listen_host": "127.0.0.1",
        "listen_port": 8765,
    },
    "logging": {
        "dev_mode": False  # if True or ENV DEV=1, enable verbose debug
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

_LOG = logging.getLogger("config")


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        # Ignore parse errors and continue with other locations/defaults
        _LOG.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    return {}


def _candidate_search_paths(project_root: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("DECK_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser().absolute())
    search.extend(
        [
            Path("/etc/control-deck/config.yaml"),
            Path("~/.config/control-deck/config.yaml").expanduser(),
            project_root / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    env_map = {
        "DECK_MEDIA_ROOT": ("recording", "media_root", str),
        "DECK_ALERTS_LOG": ("alerts", "log_path", str),
        "DECK_ALERTS_NOTIFY": ("alerts", "notifications_enabled", _parse_bool),
        "DECK_WHISPER_MODEL": ("transcription", "model", str),
        "DECK_WHISPER_GPU": ("transcription", "use_gpu", _parse_bool),
        "DECK_TRANSCRIPT_DIR": ("transcription", "scratch_dir", str),
        "DECK_APPS_REGISTRY": ("apps", "registry_path", str),
        "DECK_API_HOST": ("control_api", "listen_host", str),
        "DECK_API_PORT": ("control_api", "listen_port", int),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key not in os.environ:
            continue
        raw = os.environ[env_key].strip()
        if not raw:
            continue
        try:
            cfg.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            _LOG.warning("Ignoring invalid %s=%r", env_key, raw)


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # Derive project root relative to this file (deck/ -> project root)
    project_root = Path(__file__).resolve().parent.parent

    search = _candidate_search_paths(project_root)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            continue

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active

    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def section(name: str) -> Dict[str, Any]:
    """Return a config section as a dict, falling back to an empty one."""
    value = get_cfg().get(name)
    return value if isinstance(value, dict) else {}
