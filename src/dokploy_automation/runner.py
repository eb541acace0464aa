from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Optional

from .errors import ApplyFailed, HandlerFailed, ProbeFailed, TaskError, Unreachable
from .executors import Executor, LocalExecutor, SshExecutor
from .operations import OPERATION_REGISTRY, Operation
from .secrets import SecretResolver
from .templating import evaluate_guard, render_value
from .types import ActionResult, HostConfig, Outcome, Playbook, Reachability, RunResult, TaskSpec
from .variables import resolve

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[HostConfig, TaskSpec], None]


class TaskRunner:
    """Converges targets towards the tasks of a playbook.

    Tasks run strictly in declared order. A failed task halts the rest of
    the list for that target unless it is marked ``ignore_errors``. Handlers
    notified by changed tasks run once each, in first-notified order, after
    the main pass.
    """

    def __init__(
        self,
        playbook: Playbook,
        variables: Optional[Mapping[str, Any]] = None,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
        connect_timeout: float = 30.0,
        executor_factory: Optional[Callable[[HostConfig], Executor]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        secret_resolver: Optional[SecretResolver] = None,
    ):
        self.playbook = playbook
        self.variables = dict(variables or {})
        self.overrides = dict(overrides or {})
        self.secret_resolver = secret_resolver or SecretResolver()
        self.dry_run = dry_run
        self.connect_timeout = connect_timeout
        self.executor_factory = executor_factory or self._executor_for
        self.progress_callback = progress_callback
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop before the next task; the task in flight is left to finish."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, hosts: Iterable[HostConfig]) -> list[RunResult]:
        return [self.apply(host) for host in hosts]

    def apply(self, target: HostConfig) -> RunResult:
        run = RunResult(host=target.name)
        try:
            variables = self._host_variables(target)
        except Exception as exc:  # noqa: BLE001
            logger.error("host=%s cannot resolve variables: %s", target.name, exc)
            run.results.append(self._setup_failure(target, "variables", str(exc)))
            run.results.extend(self._not_attempted(target, self.playbook.tasks, "variables unresolved"))
            return run

        host = replace(target, variables=variables)
        executor = self.executor_factory(host)
        try:
            executor.connect()
        except Unreachable as exc:
            logger.error("host=%s unreachable: %s", host.name, exc.reason)
            target.reachability = Reachability.UNREACHABLE
            run.results.append(self._setup_failure(host, "connect", str(exc)))
            run.results.extend(self._not_attempted(host, self.playbook.tasks, "unreachable"))
            return run
        target.reachability = host.reachability

        try:
            pending = self._main_pass(host, executor, run)
            self._flush_handlers(host, executor, run, pending)
        finally:
            executor.close()
        return run

    def _main_pass(self, host: HostConfig, executor: Executor, run: RunResult) -> list[str]:
        pending: list[str] = []
        tasks = self.playbook.tasks
        for index, task in enumerate(tasks):
            if self.cancelled:
                logger.warning("host=%s run cancelled before task '%s'", host.name, task.name)
                run.cancelled = True
                run.results.extend(self._not_attempted(host, tasks[index:], "cancelled"))
                break
            if self.progress_callback:
                self.progress_callback(host, task)
            result = self._run_task(host, executor, task)
            run.results.append(result)
            if result.changed:
                for handler_name in task.notify:
                    if handler_name not in pending:
                        pending.append(handler_name)
            if result.failed:
                if task.ignore_errors:
                    result.ignored = True
                    logger.warning("host=%s task '%s' failed; ignoring", host.name, task.name)
                    continue
                run.results.extend(self._not_attempted(host, tasks[index + 1:], "halted after failure"))
                break
        return pending

    def _run_task(self, host: HostConfig, executor: Executor, task: TaskSpec, *, handler: bool = False) -> ActionResult:
        variables = host.variables
        try:
            applicable = evaluate_guard(task.when, variables)
        except Exception as exc:  # noqa: BLE001
            return self._failure(host, task, ProbeFailed(task.name, f"guard '{task.when}': {exc}"), handler=handler)
        if not applicable:
            logger.debug("task=%s host=%s skipped by guard %r", task.name, host.name, task.when)
            return self._result(host, task, Outcome.SKIPPED, f"skipped (when: {task.when})", handler=handler)

        operation_cls = OPERATION_REGISTRY.get(task.type)
        if not operation_cls:
            detail = f"unknown operation '{task.type}'"
            logger.warning(detail)
            return self._failure(host, task, ProbeFailed(task.name, detail), handler=handler)

        operation: Optional[Operation] = None
        try:
            operation = operation_cls(render_value(task.data, variables))
            changes = operation.probe(host, executor)
        except Exception as exc:  # noqa: BLE001
            error_cls = HandlerFailed if handler else ProbeFailed
            return self._failure(host, task, error_cls(task.name, exc), operation=operation, handler=handler)

        if not changes:
            return self._result(host, task, Outcome.UNCHANGED, "noop", operation=operation, handler=handler)

        if self.dry_run:
            detail = ", ".join(changes)
            return self._result(host, task, Outcome.WOULD_CHANGE, detail, operation=operation, handler=handler)

        try:
            detail = operation.converge(host, executor, changes)
        except Exception as exc:  # noqa: BLE001
            error_cls = HandlerFailed if handler else ApplyFailed
            return self._failure(host, task, error_cls(task.name, exc), operation=operation, handler=handler)
        logger.debug("task=%s host=%s changed: %s", task.name, host.name, detail)
        return self._result(host, task, Outcome.CHANGED, detail or ", ".join(changes), operation=operation, handler=handler)

    def _flush_handlers(self, host: HostConfig, executor: Executor, run: RunResult, pending: list[str]) -> None:
        handlers = self.playbook.handlers
        for position, name in enumerate(pending):
            handler = handlers[name]
            if self.cancelled:
                run.cancelled = True
                skipped = [handlers[rest] for rest in pending[position:]]
                run.results.extend(self._not_attempted(host, skipped, "cancelled", handler=True))
                return
            logger.info("host=%s running handler '%s'", host.name, name)
            run.results.append(self._run_task(host, executor, handler, handler=True))

    def _failure(
        self,
        host: HostConfig,
        task: TaskSpec,
        error: TaskError,
        *,
        operation: Optional[Operation] = None,
        handler: bool = False,
    ) -> ActionResult:
        logger.error("task=%s host=%s %s", task.name, host.name, error, exc_info=logger.isEnabledFor(logging.DEBUG))
        return self._result(host, task, Outcome.FAILED, str(error), operation=operation, handler=handler)

    @staticmethod
    def _result(
        host: HostConfig,
        task: TaskSpec,
        outcome: Outcome,
        details: str,
        *,
        operation: Optional[Operation] = None,
        handler: bool = False,
    ) -> ActionResult:
        resource = operation.resource if operation is not None else None
        diff = operation.diff() if operation is not None and outcome is not Outcome.UNCHANGED else None
        return ActionResult(
            host=host.name,
            task=task.name,
            action=task.type,
            outcome=outcome,
            details=details,
            resource=resource,
            diff=diff,
            handler=handler,
        )

    @staticmethod
    def _not_attempted(
        host: HostConfig, tasks: Iterable[TaskSpec], reason: str, *, handler: bool = False
    ) -> list[ActionResult]:
        return [
            ActionResult(
                host=host.name,
                task=task.name,
                action=task.type,
                outcome=Outcome.NOT_ATTEMPTED,
                details=reason,
                handler=handler,
            )
            for task in tasks
        ]

    @staticmethod
    def _setup_failure(host: HostConfig, stage: str, details: str) -> ActionResult:
        return ActionResult(
            host=host.name,
            task=stage,
            action=stage,
            outcome=Outcome.FAILED,
            details=details,
            resource=host.address,
        )

    def _host_variables(self, host: HostConfig) -> dict[str, Any]:
        facts = {
            "target_name": host.name,
            "target_address": host.address,
            "target_user": host.user,
            "target_port": host.port,
        }
        merged = resolve([facts, self.variables, *self.playbook.defaults, host.variables, self.overrides])
        # one pass, so a default such as "{{ target_port }}" sees the facts
        merged = {key: render_value(value, merged) for key, value in merged.items()}
        return self.secret_resolver.resolve(merged)

    def _executor_for(self, host: HostConfig) -> Executor:
        if host.connection == "local":
            return LocalExecutor(host, dry_run=self.dry_run)
        if host.connection == "ssh":
            return SshExecutor(host, dry_run=self.dry_run, connect_timeout=self.connect_timeout)
        raise ValueError(f"Unknown connection type '{host.connection}'")
