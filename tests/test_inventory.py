from pathlib import Path
import textwrap

import pytest

from dokploy_automation.errors import UnknownTarget
from dokploy_automation.inventory import InventoryResolver


def write_inventory(tmp_path: Path) -> Path:
    path = tmp_path / "inventory.toml"
    path.write_text(
        textwrap.dedent(
            """
            [targets.production]
            address = "203.0.113.10"
            user = "ubuntu"
            key_env = "SSH_PRIVATE_KEY"

              [targets.production.variables]
              dokploy_domain = "panel.example.com"

            [targets.workstation]
            connection = "local"
            """
        ).strip()
    )
    return path


def test_resolves_inventory_target(tmp_path: Path) -> None:
    host = InventoryResolver.from_file(write_inventory(tmp_path)).resolve("production")

    assert host.connection == "ssh"
    assert host.address == "203.0.113.10"
    assert host.user == "ubuntu"
    assert host.port == 22
    assert host.key_env == "SSH_PRIVATE_KEY"
    assert host.become is True
    assert host.variables == {"dokploy_domain": "panel.example.com"}


def test_overrides_replace_inventory_fields(tmp_path: Path) -> None:
    resolver = InventoryResolver.from_file(write_inventory(tmp_path))

    host = resolver.resolve("production", {"address": "198.51.100.7", "port": 2222, "user": None})

    assert host.address == "198.51.100.7"
    assert host.port == 2222
    assert host.user == "ubuntu"


def test_unknown_target_raises(tmp_path: Path) -> None:
    resolver = InventoryResolver.from_file(write_inventory(tmp_path))

    with pytest.raises(UnknownTarget) as excinfo:
        resolver.resolve("staging")
    assert excinfo.value.name == "staging"


def test_unknown_target_with_address_only_still_raises() -> None:
    with pytest.raises(UnknownTarget):
        InventoryResolver().resolve("production", {"address": "203.0.113.10"})


def test_overrides_alone_define_target() -> None:
    host = InventoryResolver().resolve(
        "production",
        {"address": "203.0.113.10", "key_env": "SSH_PRIVATE_KEY", "user": "deploy"},
    )

    assert host.name == "production"
    assert host.address == "203.0.113.10"
    assert host.user == "deploy"
    assert host.variables == {}


def test_local_target_needs_no_address(tmp_path: Path) -> None:
    host = InventoryResolver.from_file(write_inventory(tmp_path)).resolve("workstation")

    assert host.connection == "local"
    assert host.address is None


def test_missing_file_gives_empty_inventory(tmp_path: Path) -> None:
    resolver = InventoryResolver.from_file(tmp_path / "missing.toml")

    assert resolver.targets == {}


def test_invalid_toml_reports_line(tmp_path: Path) -> None:
    path = tmp_path / "inventory.toml"
    path.write_text("[targets.production\naddress = 1\n")

    with pytest.raises(ValueError, match=r"inventory.toml: .*line 1"):
        InventoryResolver.from_file(path)


def test_rejects_unsupported_override() -> None:
    with pytest.raises(ValueError, match="password"):
        InventoryResolver({"production": {"address": "x"}}).resolve("production", {"password": "hunter2"})


def test_rejects_ssh_target_without_address() -> None:
    with pytest.raises(ValueError, match="requires an address"):
        InventoryResolver({"production": {"user": "root"}}).resolve("production")


def test_rejects_unknown_connection_type() -> None:
    with pytest.raises(ValueError, match="winrm"):
        InventoryResolver({"production": {"connection": "winrm"}}).resolve("production")


def test_key_file_override_replaces_inventory_key_env(tmp_path: Path) -> None:
    resolver = InventoryResolver.from_file(write_inventory(tmp_path))

    host = resolver.resolve("production", {"key_file": str(tmp_path / "id_ed25519")})

    assert host.key_file == tmp_path / "id_ed25519"
    assert host.key_env is None


def test_key_env_override_replaces_inventory_key_file() -> None:
    resolver = InventoryResolver({"staging": {"address": "203.0.113.20", "key_file": "/keys/staging"}})

    host = resolver.resolve("staging", {"key_env": "SSH_PRIVATE_KEY"})

    assert host.key_env == "SSH_PRIVATE_KEY"
    assert host.key_file is None
