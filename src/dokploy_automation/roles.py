from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .types import Playbook, RoleBundle, TaskSpec

RESERVED_KEYS = {"name", "type", "when", "notify", "ignore_errors"}

PLAYBOOKS: dict[str, tuple[str, ...]] = {
    "deploy": ("base",),
    "harden": ("hardening",),
}


def builtin_roles_dir() -> Path:
    return Path(str(resources.files("dokploy_automation") / "roles"))


class RoleLoader:
    """Loads role bundles from ``<roles_dir>/<name>.toml``."""

    def __init__(self, roles_dir: Optional[Path] = None):
        self.roles_dir = Path(roles_dir) if roles_dir is not None else builtin_roles_dir()

    def load(self, name: str) -> RoleBundle:
        path = self.roles_dir / f"{name}.toml"
        if not path.exists():
            raise ValueError(f"role bundle '{name}' not found in {self.roles_dir}")
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{path}: {exc}") from None

        defaults = data.get("defaults", {})
        if not isinstance(defaults, dict):
            raise ValueError(f"{path}: [defaults] must be a table")
        tasks = [
            self._parse_task(raw, f"{name}.tasks.{index}", path.parent)
            for index, raw in enumerate(data.get("tasks", []), start=1)
        ]
        handlers = [
            self._parse_task(raw, f"{name}.handlers.{index}", path.parent)
            for index, raw in enumerate(data.get("handlers", []), start=1)
        ]
        self._check_handlers(path, tasks, handlers)
        return RoleBundle(
            name=str(data.get("name", name)),
            description=str(data.get("description", "")),
            defaults=dict(defaults),
            tasks=tasks,
            handlers=handlers,
        )

    @staticmethod
    def _parse_task(raw: Any, task_index: str, base_dir: Path) -> TaskSpec:
        if not isinstance(raw, dict):
            raise ValueError(f"Task {task_index} must be a table")
        task_type = raw.get("type")
        if not task_type:
            raise ValueError(f"Task {task_index} is missing a type")
        notify = raw.get("notify", [])
        if isinstance(notify, str):
            notify_list = [notify]
        else:
            notify_list = [str(item) for item in notify or []]
        data = {k: v for k, v in raw.items() if k not in RESERVED_KEYS}
        data.setdefault("_plan_dir", str(base_dir))
        when = raw.get("when")
        return TaskSpec(
            name=str(raw.get("name") or f"{task_type} #{task_index.rsplit('.', 1)[-1]}"),
            type=str(task_type),
            data=data,
            when=str(when) if when is not None else None,
            notify=notify_list,
            ignore_errors=bool(raw.get("ignore_errors", False)),
        )

    @staticmethod
    def _check_handlers(path: Path, tasks: list[TaskSpec], handlers: list[TaskSpec]) -> None:
        names = [handler.name for handler in handlers]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"{path}: duplicate handler name(s) {', '.join(sorted(duplicates))}")
        for task in tasks:
            for target in task.notify:
                if target not in names:
                    raise ValueError(f"{path}: task '{task.name}' notifies unknown handler '{target}'")


class PlaybookComposer:
    """Selects the role bundles an entry point runs."""

    def __init__(self, loader: Optional[RoleLoader] = None, playbooks: Optional[dict[str, tuple[str, ...]]] = None):
        self.loader = loader or RoleLoader()
        self.playbooks = dict(playbooks or PLAYBOOKS)

    def compose(self, entry_point: str) -> Playbook:
        try:
            role_names = self.playbooks[entry_point]
        except KeyError:
            known = ", ".join(sorted(self.playbooks))
            raise ValueError(f"unknown entry point '{entry_point}' (expected one of: {known})") from None
        return Playbook(name=entry_point, roles=[self.loader.load(name) for name in role_names])
