from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/dokploy-automation/main.conf")
DEFAULT_INVENTORY = Path("/etc/dokploy-automation/inventory.toml")
DEFAULT_TARGET = "production"


@dataclass
class AutomationConfig:
    inventory: Path = DEFAULT_INVENTORY
    target: str = DEFAULT_TARGET
    vars_file: Optional[Path] = None
    known_hosts: Optional[Path] = None
    connect_timeout: float = 30.0
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)


def load_config(path: Path) -> AutomationConfig:
    if not path.exists():
        return AutomationConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    variables = data.get("variables", {})
    if not isinstance(variables, dict):
        raise ValueError(f"{path}: [variables] must be a table")
    inventory = defaults.get("inventory", DEFAULT_INVENTORY)
    vars_file = defaults.get("vars_file")
    known_hosts = defaults.get("known_hosts")
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    return AutomationConfig(
        inventory=Path(inventory),
        target=str(defaults.get("target", DEFAULT_TARGET)),
        vars_file=Path(vars_file) if vars_file else None,
        known_hosts=Path(known_hosts) if known_hosts else None,
        connect_timeout=float(defaults.get("connect_timeout", 30.0)),
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
        variables=dict(variables),
    )


def load_vars_file(path: Path) -> dict[str, Any]:
    """Read a TOML file of run-time variable overrides."""

    try:
        return dict(tomllib.loads(Path(path).read_text()))
    except FileNotFoundError:
        raise ValueError(f"variables file {path} does not exist") from None
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
