from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import UnknownTarget
from .types import HostConfig

CONNECTION_KEYS = ("connection", "address", "user", "port", "key_file", "key_env", "known_hosts", "become")
CONNECTION_TYPES = {"ssh", "local"}


class InventoryResolver:
    """Maps a logical target name to connection parameters.

    The inventory is a TOML file with one ``[targets.<name>]`` table per
    host::

        [targets.production]
        address = "203.0.113.10"
        user = "root"
        key_env = "SSH_PRIVATE_KEY"

          [targets.production.variables]
          dokploy_domain = "panel.example.com"
    """

    def __init__(self, targets: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.targets: dict[str, dict[str, Any]] = {
            str(name): dict(payload) for name, payload in (targets or {}).items()
        }

    @classmethod
    def from_file(cls, path: Path) -> "InventoryResolver":
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{path}: {exc}") from None
        targets = data.get("targets", {})
        if not isinstance(targets, dict):
            raise ValueError(f"{path}: 'targets' must be a table of tables")
        for name, payload in targets.items():
            if not isinstance(payload, dict):
                raise ValueError(f"{path}: target '{name}' must be a table")
        return cls(targets)

    def resolve(self, target_name: str, overrides: Optional[Mapping[str, Any]] = None) -> HostConfig:
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        unknown = set(overrides) - set(CONNECTION_KEYS)
        if unknown:
            raise ValueError(f"unsupported target override(s): {', '.join(sorted(unknown))}")

        payload = self.targets.get(target_name)
        if payload is None:
            if not self._self_sufficient(overrides):
                raise UnknownTarget(target_name)
            payload = {}

        merged: dict[str, Any] = {k: payload[k] for k in CONNECTION_KEYS if k in payload}
        if "key_file" in overrides or "key_env" in overrides:
            # an override credential replaces whichever kind the inventory set
            merged.pop("key_file", None)
            merged.pop("key_env", None)
        merged.update(overrides)
        return self._build_host(target_name, merged, payload.get("variables", {}))

    @staticmethod
    def _self_sufficient(overrides: Mapping[str, Any]) -> bool:
        if overrides.get("connection") == "local":
            return True
        has_credential = bool(overrides.get("key_file") or overrides.get("key_env"))
        return bool(overrides.get("address")) and has_credential

    @staticmethod
    def _build_host(name: str, data: Mapping[str, Any], variables: Any) -> HostConfig:
        connection = str(data.get("connection", "ssh"))
        if connection not in CONNECTION_TYPES:
            raise ValueError(f"target '{name}' has unknown connection type '{connection}'")
        if connection == "ssh" and not data.get("address"):
            raise ValueError(f"target '{name}' requires an address")
        if not isinstance(variables, dict):
            raise ValueError(f"target '{name}' variables must be a table")
        key_file = data.get("key_file")
        known_hosts = data.get("known_hosts")
        return HostConfig(
            name=name,
            connection=connection,
            address=str(data["address"]) if data.get("address") else None,
            user=str(data.get("user", "root")),
            port=int(data.get("port", 22)),
            key_file=Path(str(key_file)).expanduser() if key_file else None,
            key_env=str(data["key_env"]) if data.get("key_env") else None,
            known_hosts=Path(str(known_hosts)).expanduser() if known_hosts else None,
            become=bool(data.get("become", True)),
            variables=dict(variables),
        )
