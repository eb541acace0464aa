from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        result = executor.run(["sh", "-c", f"command -v {self.executable}"], check=False, mutable=False)
        return result.returncode == 0

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", "--quiet", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", "--quiet", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd services.

    ``restart = true`` always reports a change, which is what handlers
    such as ``restart ssh`` rely on.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("service")
        if not raw_name:
            raise ValueError("service operation requires a service name")
        self.name = str(raw_name)
        self._enabled = self._coerce_bool(spec.get("enabled"))
        self._state = spec.get("state")
        self.restart = bool(self._coerce_bool(spec.get("restart", False)))
        if self._state not in {None, "running", "stopped"}:
            raise ValueError("service state must be 'running' or 'stopped'")
        self.systemctl = SystemCtl()

    @property
    def resource(self) -> Optional[str]:
        return self.name

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        if not self.systemctl.available(executor):
            raise RuntimeError(f"systemctl is not available on {host.name}")

        changes: list[str] = []
        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self._enabled and not enabled:
                changes.append("enabled")
            elif not self._enabled and enabled:
                changes.append("disabled")

        if self._state is not None:
            active = self.systemctl.is_active(executor, self.name)
            if self._state == "running" and not active:
                changes.append("started")
            elif self._state == "stopped" and active:
                changes.append("stopped")

        if self.restart and "started" not in changes:
            changes.append("restarted")
        return changes

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        actions = {
            "enabled": self.systemctl.enable,
            "disabled": self.systemctl.disable,
            "started": self.systemctl.start,
            "stopped": self.systemctl.stop,
            "restarted": self.systemctl.restart,
        }
        for change in changes:
            logger.debug("service=%s host=%s action=%s", self.name, host.name, change)
            actions[change](executor, self.name)
        return ", ".join(changes)
