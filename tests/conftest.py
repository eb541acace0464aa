import copy
import json
from pathlib import Path
from typing import Optional

import pytest

from dokploy_automation.executors import CommandResult, Executor, PathStat
from dokploy_automation.roles import PlaybookComposer
from dokploy_automation.runner import TaskRunner
from dokploy_automation.types import HostConfig

UFW_DEFAULTS = 'IPV6=yes\nDEFAULT_INPUT_POLICY="DROP"\nDEFAULT_OUTPUT_POLICY="ACCEPT"\n'


class SimulatedExecutor(Executor):
    """In-memory Ubuntu host that understands the commands the bundles issue."""

    def __init__(self, host: Optional[HostConfig] = None, *, dry_run: bool = False):
        super().__init__(host or HostConfig(name="sim", connection="local"), dry_run=dry_run)
        self.files: dict[str, tuple[str, int]] = {}
        self.dirs: set[str] = {"/etc", "/etc/ssh/sshd_config.d"}
        self.binaries: set[str] = {"systemctl", "curl", "sshd"}
        self.packages: set[str] = set()
        self.services: dict[str, dict[str, bool]] = {"ssh": {"enabled": True, "active": True}}
        self.ufw_rules: list[tuple[str, str]] = []
        self.ufw_active = False
        self.swarm: dict[str, dict] = {}
        self.http_status: Optional[int] = None
        self.sshd_rejects = False
        self.fail_on: set[str] = set()
        self.commands: list[list[str]] = []
        self.restarts: list[str] = []
        self.connects = 0

    def connect(self) -> None:
        self.connects += 1
        super().connect()

    def snapshot(self) -> dict:
        return copy.deepcopy(
            {
                "files": self.files,
                "dirs": self.dirs,
                "binaries": self.binaries,
                "packages": self.packages,
                "services": self.services,
                "ufw_rules": self.ufw_rules,
                "ufw_active": self.ufw_active,
                "swarm": self.swarm,
            }
        )

    # Command dispatch ------------------------------------------------------
    def _execute(self, cmd_list, *, env, cwd, timeout, input):  # type: ignore[override]
        self.commands.append(list(cmd_list))
        joined = " ".join(cmd_list)
        if any(marker in joined for marker in self.fail_on):
            return self._result(cmd_list, rc=1, stderr="simulated failure")
        handler = getattr(self, f"_cmd_{cmd_list[0].replace('-', '_')}", None)
        if handler is None:
            return self._result(cmd_list, rc=127, stderr=f"{cmd_list[0]}: command not found")
        return handler(cmd_list)

    @staticmethod
    def _result(cmd_list, rc=0, stdout="", stderr=""):
        return CommandResult(list(cmd_list), stdout, stderr, rc)

    def _cmd_dpkg_query(self, cmd):
        package = cmd[-1]
        if package in self.packages:
            return self._result(cmd, stdout="install ok installed")
        return self._result(cmd, rc=1, stderr=f"dpkg-query: no packages found matching {package}")

    def _cmd_apt_get(self, cmd):
        verb = cmd[1]
        names = [arg for arg in cmd[2:] if not arg.startswith("-")]
        if verb == "install":
            for name in names:
                self._install_package(name)
        elif verb == "remove":
            self.packages.difference_update(names)
        return self._result(cmd)

    def _install_package(self, name):
        self.packages.add(name)
        if name == "ufw":
            self.binaries.add("ufw")
            self.files.setdefault("/etc/default/ufw", (UFW_DEFAULTS, 0o644))
        if name == "fail2ban":
            self.dirs.add("/etc/fail2ban")
            self.services["fail2ban"] = {"enabled": True, "active": True}

    def _cmd_sh(self, cmd):
        script = cmd[2]
        if script.startswith("command -v "):
            binary = script.split()[-1]
            return self._result(cmd, rc=0 if binary in self.binaries else 1)
        if "get.docker.com" in script:
            self.binaries.add("docker")
            self.packages.add("docker-ce")
            self.files["/usr/bin/docker"] = ("", 0o755)
            self.services["docker"] = {"enabled": False, "active": False}
            return self._result(cmd)
        if "dokploy.com/install.sh" in script:
            if not self.services.get("docker", {}).get("active"):
                return self._result(cmd, rc=1, stderr="Cannot connect to the Docker daemon")
            self.swarm["dokploy"] = {"running": 1, "desired": 1, "ports": [3000]}
            return self._result(cmd)
        if script.startswith("sshd -t"):
            return self._result(cmd, rc=1 if self.sshd_rejects else 0, stderr="Bad configuration option")
        return self._result(cmd)

    def _cmd_systemctl(self, cmd):
        verb, name = cmd[1], cmd[-1]
        unit = self.services.get(name)
        if verb == "is-enabled":
            return self._result(cmd, rc=0 if unit and unit["enabled"] else 1)
        if verb == "is-active":
            return self._result(cmd, rc=0 if unit and unit["active"] else 3)
        if unit is None:
            return self._result(cmd, rc=5, stderr=f"Unit {name}.service not found.")
        if verb in {"enable", "disable"}:
            unit["enabled"] = verb == "enable"
        elif verb in {"start", "restart"}:
            unit["active"] = True
            if verb == "restart":
                self.restarts.append(name)
        elif verb == "stop":
            unit["active"] = False
        return self._result(cmd)

    def _cmd_ufw(self, cmd):
        if "ufw" not in self.binaries:
            return self._result(cmd, rc=127, stderr="ufw: command not found")
        args = cmd[1:]
        if args == ["show", "added"]:
            lines = ["Added user rules (see 'ufw status' for running firewall):"]
            lines += [f"ufw {action} {target}" for action, target in self.ufw_rules] or ["(None)"]
            return self._result(cmd, stdout="\n".join(lines) + "\n")
        if args == ["status"]:
            return self._result(cmd, stdout=f"Status: {'active' if self.ufw_active else 'inactive'}\n")
        if args[0] == "default":
            policy, direction = args[1], args[2]
            chain = "INPUT" if direction == "incoming" else "OUTPUT"
            value = {"deny": "DROP", "allow": "ACCEPT", "reject": "REJECT"}[policy]
            content, mode = self.files["/etc/default/ufw"]
            lines = [
                f'DEFAULT_{chain}_POLICY="{value}"' if line.startswith(f"DEFAULT_{chain}_POLICY") else line
                for line in content.splitlines()
            ]
            self.files["/etc/default/ufw"] = ("\n".join(lines) + "\n", mode)
            return self._result(cmd)
        if args == ["--force", "enable"]:
            self.ufw_active = True
            return self._result(cmd)
        if args == ["disable"]:
            self.ufw_active = False
            return self._result(cmd)
        if args[0] == "delete":
            rule = (args[1], args[2])
            if rule in self.ufw_rules:
                self.ufw_rules.remove(rule)
            return self._result(cmd)
        rule = (args[0], args[1])
        if rule not in self.ufw_rules:
            self.ufw_rules.append(rule)
        return self._result(cmd)

    def _cmd_docker(self, cmd):
        if "docker" not in self.binaries:
            return self._result(cmd, rc=127, stderr="docker: command not found")
        if not self.services["docker"]["active"]:
            return self._result(cmd, rc=1, stderr="Cannot connect to the Docker daemon")
        if cmd[1:3] == ["service", "ls"]:
            prefix = cmd[cmd.index("--filter") + 1].split("=", 1)[1]
            lines = [
                f"{name} {svc['running']}/{svc['desired']}"
                for name, svc in self.swarm.items()
                if name.startswith(prefix)
            ]
            return self._result(cmd, stdout="\n".join(lines))
        if cmd[1:3] == ["service", "inspect"]:
            svc = self.swarm.get(cmd[-1])
            if svc is None:
                return self._result(cmd, rc=1, stderr="no such service")
            ports = [{"Protocol": "tcp", "TargetPort": p, "PublishedPort": p} for p in svc["ports"]]
            return self._result(cmd, stdout=json.dumps(ports) + "\n")
        if cmd[1:3] == ["service", "update"]:
            svc = self.swarm[cmd[-1]]
            if "--force" in cmd:
                svc["running"] = svc["desired"]
            if "--publish-add" in cmd:
                spec = cmd[cmd.index("--publish-add") + 1]
                published = int(spec.split(",")[0].split("=")[1])
                svc["ports"].append(published)
            return self._result(cmd)
        return self._result(cmd, rc=1, stderr="unsupported docker command")

    def _cmd_curl(self, cmd):
        if self.http_status is None:
            return self._result(cmd, rc=7, stderr="curl: (7) Failed to connect")
        return self._result(cmd, stdout=str(self.http_status))

    # File primitives -------------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        entry = self.files.get(str(path))
        return entry[0] if entry else None

    def stat(self, path: Path) -> Optional[PathStat]:
        key = str(path)
        if key in self.files:
            return PathStat(kind="file", mode=self.files[key][1])
        if key in self.dirs:
            return PathStat(kind="directory", mode=0o755)
        return None

    def remove_path(self, path: Path) -> bool:
        key = str(path)
        if key not in self.files and key not in self.dirs:
            return False
        if self.dry_run:
            return True
        self.files.pop(key, None)
        self.dirs.discard(key)
        return True

    def _put_file(self, path: Path, content: str) -> None:
        key = str(path)
        mode = self.files.get(key, ("", 0o644))[1]
        self.files[key] = (content, mode)

    def _chmod(self, path: Path, mode: int) -> None:
        key = str(path)
        if key in self.files:
            self.files[key] = (self.files[key][0], mode)

    def _make_dirs(self, path: Path) -> None:
        self.dirs.add(str(path))


@pytest.fixture
def fresh_host() -> SimulatedExecutor:
    return SimulatedExecutor()


@pytest.fixture
def run_playbook():
    """Run an entry point's bundles against a simulated host."""

    def _run(entry_point, executor, *, dry_run=False, overrides=None, variables=None, host=None):
        playbook = PlaybookComposer().compose(entry_point)

        def factory(host):
            executor.host = host
            executor.dry_run = dry_run
            return executor

        runner = TaskRunner(
            playbook,
            variables,
            overrides=overrides,
            dry_run=dry_run,
            executor_factory=factory,
        )
        return runner.apply(host or HostConfig(name="production", connection="local"))

    return _run
