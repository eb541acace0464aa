from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union
import io
import logging
import os
import shlex
import shutil
import socket
import stat
import subprocess

import paramiko

from .errors import Unreachable
from .types import HostConfig, Reachability

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


@dataclass
class PathStat:
    kind: str
    mode: int


class Executor:
    """Base executor abstraction used by operations.

    Probes call :meth:`run` with ``mutable=False``; everything else is
    treated as a change and is skipped when ``dry_run`` is set.
    """

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def connect(self) -> None:
        self.host.reachability = Reachability.REACHABLE

    def close(self) -> None:
        pass

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        logger.debug("host=%s run=%s", self.host.name, shlex.join(cmd_list))
        result = self._execute(cmd_list, env=env, cwd=cwd, timeout=timeout, input=input)
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                result.stdout,
                result.stderr,
            )
        return result

    def _execute(
        self,
        cmd_list: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
        input: Optional[str],
    ) -> CommandResult:
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        proc = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            check=False,
            env=exec_env,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
            input=input,
        )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def stat(self, path: Path) -> Optional[PathStat]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def _put_file(self, path: Path, content: str) -> None:
        raise NotImplementedError

    def _chmod(self, path: Path, mode: int) -> None:
        raise NotImplementedError

    def _make_dirs(self, path: Path) -> None:
        raise NotImplementedError

    def file_mode(self, path: Path) -> Optional[int]:
        info = self.stat(path)
        return info.mode if info else None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                self._put_file(path, content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    self._chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []
        info = self.stat(path)

        if info is None:
            changed = True
            reasons.append("created")
            if not self.dry_run:
                self._make_dirs(path)
        elif info.kind != "directory":
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                self._make_dirs(path)

        if mode is not None:
            existing_mode = info.mode if info is not None and info.kind == "directory" else None
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    self._chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return Path(path).read_text()
        except FileNotFoundError:
            return None

    def stat(self, path: Path) -> Optional[PathStat]:
        try:
            info = os.lstat(path)
        except FileNotFoundError:
            return None
        if stat.S_ISLNK(info.st_mode):
            kind = "link"
        elif stat.S_ISDIR(info.st_mode):
            kind = "directory"
        elif stat.S_ISREG(info.st_mode):
            kind = "file"
        else:
            kind = "other"
        return PathStat(kind=kind, mode=stat.S_IMODE(info.st_mode))

    def remove_path(self, path: Path) -> bool:
        path = Path(path)
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def _put_file(self, path: Path, content: str) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def _chmod(self, path: Path, mode: int) -> None:
        os.chmod(path, mode)

    def _make_dirs(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)


_STAT_KINDS = {
    "regular file": "file",
    "regular empty file": "file",
    "directory": "directory",
    "symbolic link": "link",
}


class SshExecutor(Executor):
    """Executor that drives a remote host over SSH with paramiko."""

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        connect_timeout: float = 30.0,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        super().__init__(host, dry_run=dry_run)
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None

    def __repr__(self) -> str:
        return f"<SshExecutor {self.host.user}@{self.host.address}:{self.host.port}>"

    def connect(self) -> None:
        if self._client is not None:
            return
        client = self._client_factory()
        if self.host.known_hosts:
            client.load_host_keys(str(self.host.known_hosts))
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.WarningPolicy())
        pkey = self._load_key()
        try:
            client.connect(
                str(self.host.address),
                port=self.host.port,
                username=self.host.user,
                pkey=pkey,
                key_filename=str(self.host.key_file) if self.host.key_file else None,
                look_for_keys=pkey is None and self.host.key_file is None,
                allow_agent=pkey is None and self.host.key_file is None,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as exc:
            self.host.reachability = Reachability.UNREACHABLE
            client.close()
            raise Unreachable(self.host.name, str(exc) or exc.__class__.__name__) from exc
        logger.info("Connected to %s@%s:%s", self.host.user, self.host.address, self.host.port)
        self._client = client
        self.host.reachability = Reachability.REACHABLE

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _load_key(self) -> Optional[paramiko.PKey]:
        if not self.host.key_env:
            return None
        material = os.environ.get(self.host.key_env, "")
        if not material.strip():
            self.host.reachability = Reachability.UNREACHABLE
            raise Unreachable(self.host.name, f"environment variable {self.host.key_env} holds no private key")
        try:
            return parse_private_key(material)
        except ValueError as exc:
            self.host.reachability = Reachability.UNREACHABLE
            raise Unreachable(self.host.name, str(exc)) from exc

    def _needs_sudo(self) -> bool:
        return self.host.become and self.host.user != "root"

    def build_script(
        self,
        cmd_list: list[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> str:
        argv = list(cmd_list)
        if env:
            argv = ["env", *(f"{key}={value}" for key, value in env.items()), *argv]
        script = shlex.join(argv)
        if cwd is not None:
            script = f"cd {shlex.quote(str(cwd))} && {script}"
        if self._needs_sudo():
            script = shlex.join(["sudo", "-n", "sh", "-c", script])
        return script

    def _execute(
        self,
        cmd_list: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
        input: Optional[str],
    ) -> CommandResult:
        if self._client is None:
            raise RuntimeError(f"{self!r} is not connected")
        script = self.build_script(cmd_list, env=env, cwd=cwd)
        stdin, stdout, stderr = self._client.exec_command(script, timeout=timeout)
        try:
            if input is not None:
                stdin.write(input)
                stdin.flush()
            stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            returncode = stdout.channel.recv_exit_status()
        except socket.timeout:
            raise subprocess.TimeoutExpired(cmd_list, timeout or 0) from None
        return CommandResult(cmd_list, out, err, returncode)

    def read_file(self, path: Path) -> Optional[str]:
        result = self.run(["cat", "--", str(path)], check=False, mutable=False)
        if result.returncode == 0:
            return result.stdout
        if self.stat(path) is None:
            return None
        raise subprocess.CalledProcessError(result.returncode, result.command, result.stdout, result.stderr)

    def stat(self, path: Path) -> Optional[PathStat]:
        result = self.run(["stat", "-c", "%F|%a", "--", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        kind, _, mode = result.stdout.strip().partition("|")
        return PathStat(kind=_STAT_KINDS.get(kind, "other"), mode=int(mode, 8))

    def remove_path(self, path: Path) -> bool:
        if self.stat(path) is None:
            return False
        self.run(["rm", "-rf", "--", str(path)])
        return True

    def _put_file(self, path: Path, content: str) -> None:
        self.run(["mkdir", "-p", "--", str(Path(path).parent)])
        self.run(["sh", "-c", 'cat > "$1"', "sh", str(path)], input=content)

    def _chmod(self, path: Path, mode: int) -> None:
        self.run(["chmod", f"{mode:04o}", "--", str(path)])

    def _make_dirs(self, path: Path) -> None:
        self.run(["mkdir", "-p", "--", str(path)])


_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def parse_private_key(material: str) -> paramiko.PKey:
    """Load an unencrypted private key of any supported type from text."""

    text = material.strip().replace("\r\n", "\n") + "\n"
    errors: list[str] = []
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError) as exc:
            errors.append(f"{key_type.__name__}: {exc}")
    raise ValueError("unsupported or invalid private key (" + "; ".join(errors) + ")")
