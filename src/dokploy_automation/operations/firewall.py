from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import re

from .base import Operation
from ..executors import Executor
from ..types import HostConfig

UFW_DEFAULTS = Path("/etc/default/ufw")

_POLICY_NAMES = {"DROP": "deny", "ACCEPT": "allow", "REJECT": "reject"}
_DEFAULT_RE = re.compile(r'^DEFAULT_(INPUT|OUTPUT)_POLICY="?([A-Z]+)"?\s*$', re.MULTILINE)


@dataclass
class Ufw:
    executable: str = "ufw"

    def installed(self, executor: Executor) -> bool:
        result = executor.run(["sh", "-c", f"command -v {self.executable}"], check=False, mutable=False)
        return result.returncode == 0

    def added_rules(self, executor: Executor) -> list[tuple[str, str]]:
        """Return ``(action, target)`` pairs of user rules, active or not."""

        if not self.installed(executor):
            return []
        result = executor.run([self.executable, "show", "added"], mutable=False)
        rules: list[tuple[str, str]] = []
        for line in result.stdout.splitlines():
            tokens = line.split()
            if len(tokens) < 3 or tokens[0] != self.executable:
                continue
            rules.append((tokens[1], tokens[2]))
        return rules

    def is_active(self, executor: Executor) -> bool:
        if not self.installed(executor):
            return False
        result = executor.run([self.executable, "status"], mutable=False)
        return result.stdout.strip().lower().startswith("status: active")

    def default_policies(self, executor: Executor) -> dict[str, str]:
        text = executor.read_file(UFW_DEFAULTS) or ""
        policies: dict[str, str] = {}
        for chain, value in _DEFAULT_RE.findall(text):
            direction = "incoming" if chain == "INPUT" else "outgoing"
            policies[direction] = _POLICY_NAMES.get(value, value.lower())
        return policies


class UfwRuleOperation(Operation):
    """Ensure a single ``ufw <rule> <port>/<proto>`` rule is present or absent."""

    RULES = {"allow", "deny", "reject", "limit"}

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        port = spec.get("port")
        if port is None or str(port).strip() == "":
            raise ValueError("ufw_rule operation requires a port")
        self.port = str(port).strip()
        if not re.fullmatch(r"\d+(:\d+)?", self.port):
            raise ValueError(f"ufw_rule port '{self.port}' must be a number or range")
        self.proto = str(spec.get("proto", "tcp")).lower()
        if self.proto not in {"tcp", "udp", "any"}:
            raise ValueError("ufw_rule proto must be 'tcp', 'udp' or 'any'")
        self.rule = str(spec.get("rule", "allow")).lower()
        if self.rule not in self.RULES:
            raise ValueError(f"ufw_rule rule must be one of {', '.join(sorted(self.RULES))}")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("ufw_rule state must be 'present' or 'absent'")
        self.ufw = Ufw()

    @property
    def target(self) -> str:
        return self.port if self.proto == "any" else f"{self.port}/{self.proto}"

    @property
    def resource(self) -> Optional[str]:
        return f"{self.rule} {self.target}"

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        present = (self.rule, self.target) in self.ufw.added_rules(executor)
        if self.state == "present" and not present:
            return [f"add {self.rule} {self.target}"]
        if self.state == "absent" and present:
            return [f"delete {self.rule} {self.target}"]
        return []

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        if self.state == "present":
            executor.run([self.ufw.executable, self.rule, self.target])
            return f"added {self.rule} {self.target}"
        executor.run([self.ufw.executable, "delete", self.rule, self.target])
        return f"deleted {self.rule} {self.target}"


class UfwPolicyOperation(Operation):
    """Set ufw default policies and enable or disable the firewall."""

    POLICIES = {"allow", "deny", "reject"}

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.policies: dict[str, str] = {}
        for direction in ("incoming", "outgoing"):
            value = spec.get(direction)
            if value is None:
                continue
            value = str(value).lower()
            if value not in self.POLICIES:
                raise ValueError(f"ufw_policy {direction} must be one of {', '.join(sorted(self.POLICIES))}")
            self.policies[direction] = value
        self.enabled = self._coerce_bool(spec.get("enabled", True))
        self.ufw = Ufw()

    @property
    def resource(self) -> Optional[str]:
        return ", ".join(f"{direction}={policy}" for direction, policy in self.policies.items()) or None

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        changes: list[str] = []
        current = self.ufw.default_policies(executor)
        for direction, policy in self.policies.items():
            if current.get(direction) != policy:
                changes.append(f"default {policy} {direction}")
        if self.enabled is not None:
            active = self.ufw.is_active(executor)
            if self.enabled and not active:
                changes.append("enable")
            elif not self.enabled and active:
                changes.append("disable")
        return changes

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        for change in changes:
            if change.startswith("default "):
                _, policy, direction = change.split()
                executor.run([self.ufw.executable, "default", policy, direction])
            elif change == "enable":
                executor.run([self.ufw.executable, "--force", "enable"])
            elif change == "disable":
                executor.run([self.ufw.executable, "disable"])
        return ", ".join(changes)
