from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

from .base import Operation
from ..executors import Executor
from ..types import HostConfig

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass
class DpkgQuery:
    executable: str = "dpkg-query"

    def check(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            [self.executable, "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and result.stdout.strip().endswith(" installed")


class AptPackageManager:
    name = "apt"

    def __init__(self) -> None:
        self.query = DpkgQuery()

    def update_cache(self, executor: Executor) -> None:
        executor.run(["apt-get", "update", "-q"], env=APT_ENV)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", "-q", "--no-install-recommends", *packages], env=APT_ENV)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", "-q", *packages], env=APT_ENV)

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query.check(executor, package)


class PackageOperation(Operation):
    """Install or remove Debian packages with apt."""

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("packages") or spec.get("package")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(pkg) for pkg in (packages or [])]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("package operation state must be 'present' or 'absent'")
        self.update_cache = bool(self._coerce_bool(spec.get("update_cache", False)))
        self.manager = AptPackageManager()
        self._pending: list[str] = []

    @property
    def resource(self) -> Optional[str]:
        rendered = ", ".join(self.packages[:3])
        if len(self.packages) > 3:
            rendered += ", ..."
        return rendered

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        logger.debug("package-manager=%s host=%s packages=%s", self.manager.name, host.name, self.packages)
        if self.state == "present":
            self._pending = [pkg for pkg in self.packages if not self.manager.is_installed(executor, pkg)]
            return [f"install={','.join(self._pending)}"] if self._pending else []
        self._pending = [pkg for pkg in self.packages if self.manager.is_installed(executor, pkg)]
        return [f"remove={','.join(self._pending)}"] if self._pending else []

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        if self.state == "present":
            if self.update_cache:
                self.manager.update_cache(executor)
            self.manager.install(executor, self._pending)
            return f"manager={self.manager.name} installed={','.join(self._pending)}"
        self.manager.remove(executor, self._pending)
        return f"manager={self.manager.name} removed={','.join(self._pending)}"
