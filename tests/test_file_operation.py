from pathlib import Path
import os

import pytest

from dokploy_automation.executors import LocalExecutor
from dokploy_automation.operations.file import FileOperation
from dokploy_automation.types import HostConfig


def build_executor(dry_run: bool = False) -> LocalExecutor:
    host = HostConfig(name="local", connection="local")
    return LocalExecutor(host, dry_run=dry_run)


def apply(op: FileOperation, host: HostConfig = None, executor: LocalExecutor = None):
    host = host or HostConfig("local", connection="local")
    executor = executor or build_executor()
    changes = op.probe(host, executor)
    if not changes:
        return changes, "noop"
    return changes, op.converge(host, executor, changes)


def test_file_present_creates_content(tmp_path: Path) -> None:
    target = tmp_path / "config.txt"
    op = FileOperation({"path": str(target), "content": "hello\n", "mode": "0640"})

    changes, detail = apply(op)

    assert changes == ["content", "mode->0640"]
    assert "content" in detail
    assert target.read_text() == "hello\n"
    assert oct(os.stat(target).st_mode & 0o777) == "0o640"

    # Second run should be idempotent
    again, _ = apply(FileOperation({"path": str(target), "content": "hello\n", "mode": "0640"}))
    assert again == []


def test_file_probe_records_unified_diff(tmp_path: Path) -> None:
    target = tmp_path / "jail.local"
    target.write_text("maxretry = 5\n")
    op = FileOperation({"path": str(target), "content": "maxretry = 3\n"})

    changes = op.probe(HostConfig("local"), build_executor())

    assert changes == ["content"]
    assert "-maxretry = 5" in op.diff()
    assert "+maxretry = 3" in op.diff()
    assert target.read_text() == "maxretry = 5\n"


def test_file_dry_run_leaves_disk_untouched(tmp_path: Path) -> None:
    target = tmp_path / "new.conf"
    op = FileOperation({"path": str(target), "content": "x"})

    changes = op.probe(HostConfig("local"), build_executor(dry_run=True))
    op.converge(HostConfig("local"), build_executor(dry_run=True), changes)

    assert changes == ["content"]
    assert not target.exists()


def test_file_template_renders_host_variables(tmp_path: Path) -> None:
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "motd.j2").write_text("Welcome to {{ target_name }} on port {{ port }}\n")
    target = tmp_path / "motd"
    host = HostConfig("local", connection="local", variables={"target_name": "production", "port": 22})
    op = FileOperation(
        {
            "path": str(target),
            "template": "templates/motd.j2",
            "_plan_dir": str(tmp_path),
            "variables": {"port": 2222},
        }
    )

    apply(op, host)

    assert target.read_text() == "Welcome to production on port 2222\n"


def test_file_plain_template_uses_string_substitution(tmp_path: Path) -> None:
    template = tmp_path / "plain.tmpl"
    template.write_text("user=$target_user\n")
    target = tmp_path / "out"
    host = HostConfig("local", connection="local", variables={"target_user": "deploy"})

    apply(FileOperation({"path": str(target), "template": str(template)}), host)

    assert target.read_text() == "user=deploy\n"


def test_file_validate_accepts_candidate(tmp_path: Path) -> None:
    target = tmp_path / "sshd.conf"
    op = FileOperation({"path": str(target), "content": "PasswordAuthentication no\n", "validate": "grep -q no %s"})

    apply(op)

    assert target.read_text() == "PasswordAuthentication no\n"
    assert not (tmp_path / ".sshd.conf.candidate").exists()


def test_file_validate_rejection_keeps_original(tmp_path: Path) -> None:
    target = tmp_path / "sshd.conf"
    target.write_text("PasswordAuthentication yes\n")
    op = FileOperation({"path": str(target), "content": "Garbage\n", "validate": "grep -q Password %s"})

    with pytest.raises(RuntimeError, match="validation failed"):
        apply(op)

    assert target.read_text() == "PasswordAuthentication yes\n"
    assert not (tmp_path / ".sshd.conf.candidate").exists()


def test_file_validate_requires_placeholder():
    with pytest.raises(ValueError, match="%s"):
        FileOperation({"path": "/tmp/x", "validate": "sshd -t"})


def test_file_directory_creates_and_sets_mode(tmp_path: Path) -> None:
    target = tmp_path / "config.d"
    op = FileOperation({"path": str(target), "state": "directory", "mode": "0750"})

    changes, _ = apply(op)

    assert changes == ["create-dir", "mode->0750"]
    assert target.is_dir()
    assert oct(os.stat(target).st_mode & 0o777) == "0o750"
    assert apply(FileOperation({"path": str(target), "state": "directory", "mode": "0750"}))[0] == []


def test_file_absent_removes_files(tmp_path: Path) -> None:
    target = tmp_path / "obsolete.txt"
    target.write_text("old")

    changes, detail = apply(FileOperation({"path": str(target), "state": "absent"}))

    assert changes == ["remove"]
    assert detail == "removed"
    assert not target.exists()


def test_file_present_refuses_directory(tmp_path: Path) -> None:
    op = FileOperation({"path": str(tmp_path), "content": "x"})

    with pytest.raises(RuntimeError, match="is a directory"):
        op.probe(HostConfig("local"), build_executor())
