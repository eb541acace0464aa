from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class Reachability(str, Enum):
    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class Outcome(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    WOULD_CHANGE = "would-change"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_ATTEMPTED = "not-attempted"


@dataclass
class HostConfig:
    name: str
    connection: str = "ssh"
    address: Optional[str] = None
    user: str = "root"
    port: int = 22
    key_file: Optional[Path] = None
    key_env: Optional[str] = None
    known_hosts: Optional[Path] = None
    become: bool = True
    variables: dict[str, Any] = field(default_factory=dict)
    reachability: Reachability = Reachability.UNKNOWN


@dataclass
class TaskSpec:
    name: str
    type: str
    data: dict[str, Any]
    when: Optional[str] = None
    notify: list[str] = field(default_factory=list)
    ignore_errors: bool = False


@dataclass
class RoleBundle:
    name: str
    tasks: list[TaskSpec]
    handlers: list[TaskSpec] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass
class Playbook:
    name: str
    roles: list[RoleBundle]

    @property
    def tasks(self) -> list[TaskSpec]:
        return [task for role in self.roles for task in role.tasks]

    @property
    def handlers(self) -> dict[str, TaskSpec]:
        merged: dict[str, TaskSpec] = {}
        for role in self.roles:
            for handler in role.handlers:
                merged.setdefault(handler.name, handler)
        return merged

    @property
    def defaults(self) -> list[dict[str, Any]]:
        return [role.defaults for role in self.roles]


@dataclass
class ActionResult:
    host: str
    task: str
    action: str
    outcome: Outcome
    details: str
    resource: Optional[str] = None
    diff: Optional[str] = None
    handler: bool = False
    ignored: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome in (Outcome.CHANGED, Outcome.WOULD_CHANGE)

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED


@dataclass
class RunResult:
    host: str
    results: list[ActionResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> bool:
        return any(result.failed and not result.ignored for result in self.results)

    def outcomes(self) -> list[Outcome]:
        return [result.outcome for result in self.results if not result.handler]
