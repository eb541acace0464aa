from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..executors import Executor
from ..types import HostConfig


class Operation(ABC):
    """Shared surface for idempotent desired-state assertions.

    ``probe`` inspects the host without mutating it and returns the list of
    changes still needed; an empty list means the host already converged.
    ``converge`` applies exactly those changes.
    """

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        """Return the changes required on ``host``; read-only."""

    @abstractmethod
    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        """Apply ``changes`` to ``host`` and describe what was done."""

    def diff(self) -> Optional[str]:
        """Optional human readable diff computed by the last probe."""
        return None

    @property
    def resource(self) -> Optional[str]:
        return None

    @staticmethod
    def _coerce_bool(value: Any) -> Optional[bool]:
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"true", "yes", "on", "1"}:
                return True
            if lowered in {"false", "no", "off", "0"}:
                return False
            raise ValueError(f"Unable to interpret boolean value '{value}'")
        return bool(value)
