"""Start/stop toggles for the local security units."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from deck.config import section

_LOG = logging.getLogger("services")

DEFAULT_UNITS = {
    "security_monitor": "wazuh-agent.service",
    "file_integrity": "aide-check.service",
    "connection_filter": "opensnitch.service",
    "web_ui": "deck-web-ui.service",
}

ACTIONS = ("start", "stop")


class ServiceError(Exception):
    """Raised when a unit action fails."""


class UnknownServiceError(ServiceError):
    pass


async def _run(cmd: Sequence[str]) -> tuple[int, str, str]:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return 127, "", f"{cmd[0]} not found"
    except OSError as exc:
        return 1, "", str(exc)

    stdout_raw, stderr_raw = await proc.communicate()
    stdout = stdout_raw.decode("utf-8", errors="replace")
    stderr = stderr_raw.decode("utf-8", errors="replace")
    return proc.returncode, stdout, stderr


class ServiceToggles:
    def __init__(
        self,
        units: Mapping[str, str] | None = None,
        *,
        privilege_helper: Sequence[str] = ("pkexec",),
        runner=_run,
    ) -> None:
        self.units = dict(units if units is not None else DEFAULT_UNITS)
        self.privilege_helper = [str(part) for part in privilege_helper]
        self._runner = runner

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "ServiceToggles":
        cfg = cfg if cfg is not None else section("services")
        units = cfg.get("units")
        helper = cfg.get("privilege_helper")
        if isinstance(helper, str):
            helper = helper.split()
        return cls(
            {str(k): str(v) for k, v in units.items()} if isinstance(units, dict) else None,
            privilege_helper=helper if isinstance(helper, list) else ("pkexec",),
        )

    def unit_for(self, name: str) -> str:
        unit = self.units.get(name)
        if not unit:
            raise UnknownServiceError(f"Unknown service '{name}'")
        return unit

    def command_for(self, action: str, name: str) -> list[str]:
        if action not in ACTIONS:
            raise ServiceError(f"Unsupported action '{action}'")
        return [*self.privilege_helper, "systemctl", action, self.unit_for(name)]

    async def run_action(self, name: str, action: str) -> None:
        cmd = self.command_for(action, name)
        _LOG.info("Running %s", " ".join(cmd))
        code, _stdout, stderr = await self._runner(cmd)
        if code != 0:
            message = stderr.strip() or f"exit status {code}"
            _LOG.warning("%s %s failed: %s", action, name, message)
            raise ServiceError(f"Failed to {action} {name}: {message}")

    async def start(self, name: str) -> None:
        await self.run_action(name, "start")

    async def stop(self, name: str) -> None:
        await self.run_action(name, "stop")

    async def status(self, name: str) -> str:
        unit = self.unit_for(name)
        # is-active exits nonzero for inactive units; the state text is the answer.
        code, stdout, stderr = await self._runner(
            ["systemctl", "--no-ask-password", "is-active", unit]
        )
        state = stdout.strip()
        if not state:
            state = "unknown"
            if code != 0 and stderr.strip():
                _LOG.debug("is-active %s: %s", unit, stderr.strip())
        return state

    async def statuses(self) -> list[dict[str, str]]:
        results = await asyncio.gather(*(self.status(name) for name in self.units))
        return [
            {"name": name, "unit": unit, "active_state": state}
            for (name, unit), state in zip(self.units.items(), results)
        ]
