from __future__ import annotations

import difflib
import shlex
from pathlib import Path
from string import Template
from typing import Optional

from .base import Operation
from ..executors import Executor
from ..templating import looks_like_jinja, render_text
from ..types import HostConfig


class FileOperation(Operation):
    """Ensure files exist with the requested contents."""

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        raw_path = spec.get("path")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = Path(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent", "directory"}:
            raise ValueError("file operation state must be 'present', 'absent', or 'directory'")
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.mode = self._parse_mode(spec.get("mode"))
        self.template = spec.get("template")
        self.variables = spec.get("variables", {})
        self.plan_dir = spec.get("_plan_dir")
        validate = spec.get("validate")
        self.validate = str(validate) if validate else None
        if self.validate and "%s" not in self.validate:
            raise ValueError("file validate command must contain %s for the candidate path")
        if self.template is not None:
            self.template = str(self.template)
        if not isinstance(self.variables, dict):
            raise ValueError("file operation variables must be a mapping")
        if self.plan_dir is not None:
            self.plan_dir = Path(str(self.plan_dir))
        self._desired: Optional[str] = None
        self._diff: Optional[str] = None

    @property
    def resource(self) -> Optional[str]:
        return str(self.path)

    def diff(self) -> Optional[str]:
        return self._diff

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        info = executor.stat(self.path)
        if self.state == "absent":
            return ["remove"] if info is not None else []
        if self.state == "directory":
            changes = []
            if info is None:
                changes.append("create-dir")
            elif info.kind != "directory":
                changes.append("replace-non-dir")
            if self.mode is not None and (info is None or info.kind != "directory" or info.mode != self.mode):
                changes.append(f"mode->{self.mode:04o}")
            return changes

        if info is not None and info.kind == "directory":
            raise RuntimeError(f"{self.path} is a directory")
        self._desired = self._render_content(host)
        current = executor.read_file(self.path)
        changes = []
        if current != self._desired:
            changes.append("content")
            self._diff = self._unified_diff(current, self._desired)
        if self.mode is not None and (info is None or info.mode != self.mode):
            changes.append(f"mode->{self.mode:04o}")
        return changes

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        if self.state == "absent":
            removed = executor.remove_path(self.path)
            return "removed" if removed else "noop"
        if self.state == "directory":
            _, detail = executor.ensure_directory(self.path, mode=self.mode)
            return detail
        content = self._desired if self._desired is not None else self._render_content(host)
        if self.validate:
            self._validate(executor, content)
        _, detail = executor.write_file(self.path, content=content, mode=self.mode)
        return detail

    def _validate(self, executor: Executor, content: str) -> None:
        candidate = self.path.with_name(f".{self.path.name}.candidate")
        executor.write_file(candidate, content=content, mode=None)
        try:
            command = self.validate.replace("%s", shlex.quote(str(candidate)))
            result = executor.run(["sh", "-c", command], check=False)
        finally:
            executor.remove_path(candidate)
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            raise RuntimeError(f"validation failed for {self.path} (rc={result.returncode}): {output}")

    def _render_content(self, host: HostConfig) -> str:
        if not self.template:
            return self.content
        template_path = Path(self.template).expanduser()
        if not template_path.is_absolute() and self.plan_dir is not None:
            template_path = self.plan_dir / template_path
        template_text = template_path.read_text()
        context: dict[str, object] = dict(host.variables)
        context.update(self.variables)
        if looks_like_jinja(template_text):
            return render_text(template_text, context)
        return Template(template_text).safe_substitute(context)

    def _unified_diff(self, current: Optional[str], desired: str) -> str:
        before = (current or "").splitlines(keepends=True)
        after = desired.splitlines(keepends=True)
        lines = difflib.unified_diff(
            before,
            after,
            fromfile=f"{self.path} (current)" if current is not None else "/dev/null",
            tofile=f"{self.path} (desired)",
        )
        return "".join(lines)

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        base = 8 if text.startswith("0") else 10
        return int(text, base)
