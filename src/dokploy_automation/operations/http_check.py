from __future__ import annotations

from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import HostConfig


class HttpCheckOperation(Operation):
    """Read-only precondition: ``url`` must answer with an accepted status.

    The request is made with ``curl`` from the target itself. A failing check
    surfaces as a probe failure, which halts the rest of the bundle.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        url = spec.get("url")
        if not url:
            raise ValueError("http_check operation requires a url")
        self.url = str(url)
        codes = spec.get("status_codes", [200, 301, 302, 307, 308])
        if isinstance(codes, (int, str)):
            codes = [codes]
        self.status_codes = {int(code) for code in codes}
        self.timeout = int(spec.get("timeout", 10))

    @property
    def resource(self) -> Optional[str]:
        return self.url

    def probe(self, host: HostConfig, executor: Executor) -> list[str]:
        result = executor.run(
            [
                "curl",
                "--silent",
                "--show-error",
                "--output",
                "/dev/null",
                "--write-out",
                "%{http_code}",
                "--max-time",
                str(self.timeout),
                self.url,
            ],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            raise RuntimeError(f"{self.url} unreachable (curl rc={result.returncode}): {result.stderr.strip()}")
        status = int(result.stdout.strip() or 0)
        if status not in self.status_codes:
            raise RuntimeError(f"{self.url} answered HTTP {status}")
        return []

    def converge(self, host: HostConfig, executor: Executor, changes: list[str]) -> str:
        raise RuntimeError("http_check is a read-only precondition")
