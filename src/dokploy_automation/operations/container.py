from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation
from .exec import ExecOperation
from ..executors import Executor
from ..types import HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SwarmService:
    name: str
    running: int
    desired: int
    published_ports: list[int]

    @property
    def converged(self) -> bool:
        return self.desired > 0 and self.running == self.desired


@dataclass
class DockerCli:
    executable: str = "docker"

    def inspect_service(self, executor: Executor, name: str) -> Optional[SwarmService]:
        """Return the swarm service called ``name`` or ``None`` when absent.

        A host without docker, or whose engine is not a swarm manager, has
        no services.
        """

        listing = executor.run(
            [self.executable, "service", "ls", "--filter", f"name={name}", "--format", "{{.Name}} {{.Replicas}}"],
            check=False,
            mutable=False,
        )
        if listing.returncode != 0:
            logger.debug("docker service ls failed rc=%s: %s", listing.returncode, listing.stderr.strip())
            return None
        replicas = None
        for line in listing.stdout.splitlines():
            service_name, _, value = line.strip().partition(" ")
            if service_name == name:
                replicas = value.split()[0] if value else "0/0"
                break
        if replicas is None:
            return None
        running, _, desired = replicas.partition("/")
        return SwarmService(
            name=name,
            running=int(running or 0),
            desired=int(desired or 0),
            published_ports=self.published_ports(executor, name),
        )

    def published_ports(self, executor: Executor, name: str) -> list[int]:
        result = executor.run(
            [self.executable, "service", "inspect", "--format", "{{json .Endpoint.Ports}}", name],
            check=False,
            mutable=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return []
        ports = json.loads(result.stdout.strip()) or []
        return [int(port["PublishedPort"]) for port in ports if "PublishedPort" in port]

    def force_update(self, executor: Executor, name: str) -> None:
        executor.run([self.executable, "service", "update", "--force", "--detach=false", name])

    def publish(self, executor: Executor, name: str, port: int) -> None:
        executor.run(
            [
                self.executable,
                "service",
                "update",
                "--detach=false",
                "--publish-add",
                f"published={port},target={port},mode=host",
                name,
            ]
        )


class DockerServiceOperation(Operation):
    """Ensure a docker swarm service exists, runs, and publishes its port.

    When the service is missing the ``install`` command (for Dokploy, the
    upstream install script) is run to create it.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("service")
        if not raw_name:
            raise ValueError("docker_service operation requires a service name")
        self.name = str(raw_name)
        install = spec.get("install")
        if not install:
            raise ValueError("docker_service operation requires an install command")
        self.install = ExecOperation._normalize_command(install)
        self.env = ExecOperation._normalize_env(spec.get("env"))
        self.timeout = ExecOperation._normalize_timeout(spec.get("timeout"))
        port = spec.get("port")
        self.port = int(port) if port is not None else None
        self.docker = DockerCli()

    @property
    def resource(self) -> Optional[str]:
        return self.name

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        service = self.docker.inspect_service(executor, self.name)
        if service is None:
            return ["install"]
        changes: list[str] = []
        if not service.converged:
            changes.append(f"restart ({service.running}/{service.desired} running)")
        if self.port is not None and self.port not in service.published_ports:
            changes.append(f"publish {self.port}")
        return changes

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        if changes == ["install"]:
            result = executor.run(self.install, check=False, env=self.env, timeout=self.timeout)
            if result.returncode != 0:
                raise RuntimeError(ExecOperation._error_detail(result))
            return "installed"
        for change in changes:
            if change.startswith("restart"):
                self.docker.force_update(executor, self.name)
            elif change.startswith("publish"):
                self.docker.publish(executor, self.name, int(change.split()[1]))
        return ", ".join(changes)
