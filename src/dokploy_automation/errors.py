from __future__ import annotations


class AutomationError(Exception):
    """Base class for failures surfaced to the operator."""


class UnknownTarget(AutomationError):
    def __init__(self, name: str):
        super().__init__(f"target '{name}' is not in the inventory and no address/credentials were given")
        self.name = name


class Unreachable(AutomationError):
    def __init__(self, host: str, reason: str):
        super().__init__(f"cannot connect to {host}: {reason}")
        self.host = host
        self.reason = reason


class TaskError(AutomationError):
    """Failure tied to a single task or handler."""

    stage = "task"

    def __init__(self, task: str, cause: BaseException | str):
        self.task = task
        self.cause = cause
        super().__init__(f"{self.stage} failed for '{task}': {_describe(cause)}")


class ProbeFailed(TaskError):
    stage = "probe"


class ApplyFailed(TaskError):
    stage = "apply"


class HandlerFailed(TaskError):
    stage = "handler"


def _describe(cause: BaseException | str) -> str:
    if isinstance(cause, str):
        return cause
    stderr = getattr(cause, "stderr", None)
    if stderr:
        line = str(stderr).strip().splitlines()[-1] if str(stderr).strip() else ""
        if line:
            return f"{cause} ({line})"
    return str(cause) or cause.__class__.__name__
