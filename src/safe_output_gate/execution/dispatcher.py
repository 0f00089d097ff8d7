"""Dependency-aware execution of resolved operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from safe_output_gate.diagnostics import DiagnosticEvent, DiagnosticSink
from safe_output_gate.domain.operations import Operation, OperationStatus
from safe_output_gate.domain.references import Resolved, Unresolved
from safe_output_gate.domain.temporary_id import TemporaryIdMapping
from safe_output_gate.errors import ErrorCode, PipelineError, PlatformApiError
from safe_output_gate.execution.github_client import GitHubClient
from safe_output_gate.execution.handlers import HandlerContext, get_handler
from safe_output_gate.execution.retry import RetryOutcome, RetryPolicy, execute_with_retry
from safe_output_gate.policy.authorizer import RepositoryAuthorizer
from safe_output_gate.resolver.graph import ResolutionPlan

_STAGE = "execute"

_SUCCESS = frozenset({OperationStatus.EXECUTED, OperationStatus.PREVIEWED})


class _Aborted(Exception):
    """Fail-fast tripped before an operation's first attempt."""

    def __init__(self, failed: Operation) -> None:
        super().__init__(f"operation #{failed.index} failed")
        self.failed = failed


class ExecutionDispatcher:
    """Run each operation once its providers have finished.

    Independent operations run concurrently up to ``max_concurrency``; a
    failed provider blocks its dependents only. In staged mode handlers
    only describe the requests they would make and nothing is sent.
    """

    def __init__(
        self,
        ctx: HandlerContext,
        client: GitHubClient | None,
        mapping: TemporaryIdMapping,
        authorizer: RepositoryAuthorizer,
        sink: DiagnosticSink,
        *,
        policy: RetryPolicy | None = None,
        max_concurrency: int = 4,
        fail_fast: bool = False,
        staged: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if client is None and not staged:
            raise ValueError("A platform client is required outside staged mode")
        self._ctx = ctx
        self._client = client
        self._mapping = mapping
        self._authorizer = authorizer
        self._sink = sink
        self._policy = policy or RetryPolicy()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._fail_fast = fail_fast
        self._staged = staged
        self._sleep = sleep
        self._aborted_by: Operation | None = None

    async def run(self, plan: ResolutionPlan) -> None:
        by_index = {op.index: op for op in plan.order}
        done = {op.index: asyncio.Event() for op in plan.order}

        async def _run(operation: Operation) -> None:
            try:
                if operation.is_terminal:
                    return
                deps = plan.dependencies.get(operation.index, set())
                await asyncio.gather(*(done[d].wait() for d in deps if d in done))
                failed = sorted(d for d in deps if by_index[d].status not in _SUCCESS)
                if failed:
                    cause = by_index[failed[0]]
                    self._finish(
                        operation,
                        OperationStatus.BLOCKED,
                        PipelineError(
                            code=ErrorCode.DEPENDENCY_BLOCKED,
                            message=(
                                f"Depends on operation #{cause.index} ({cause.type}), "
                                f"which {cause.status.value}"
                            ),
                        ),
                    )
                    return
                await self._execute(operation)
            finally:
                done[operation.index].set()

        await asyncio.gather(*(_run(op) for op in plan.order))

    async def _execute(self, operation: Operation) -> None:
        operation.resolve_references(self._mapping.resolve)
        error = self._check_reference_targets(operation)
        if error is not None:
            self._finish(operation, OperationStatus.REJECTED, error)
            return

        handler = get_handler(operation.kind)
        if self._staged:
            operation.preview = self._preview(operation, handler.plan(operation, self._ctx))
            operation.advance(OperationStatus.PREVIEWED)
            self._record(operation, "info", "Preview recorded (staged mode)")
            return

        outcome = RetryOutcome()

        # The slot is held per attempt so backoff sleeps leave it free.
        async def attempt():
            async with self._semaphore:
                if outcome.attempts == 1 and self._aborted_by is not None:
                    raise _Aborted(self._aborted_by)
                return await handler.execute(operation, self._client, self._ctx)

        try:
            result = await execute_with_retry(
                attempt, self._policy, sleep=self._sleep, outcome=outcome
            )
        except _Aborted as exc:
            self._finish(
                operation,
                OperationStatus.BLOCKED,
                PipelineError(
                    code=ErrorCode.EXECUTION_ABORTED,
                    message=(
                        f"Not attempted: operation #{exc.failed.index} failed "
                        "and fail-fast is enabled"
                    ),
                ),
            )
            return
        except PlatformApiError as exc:
            operation.attempts = outcome.attempts
            if self._fail_fast and self._aborted_by is None:
                self._aborted_by = operation
            self._finish(
                operation,
                OperationStatus.FAILED,
                PipelineError(
                    code=ErrorCode.PLATFORM_API_ERROR,
                    message=str(exc),
                    transient=exc.transient,
                ),
            )
            return

        operation.attempts = outcome.attempts
        operation.result_ref = result
        if operation.temporary_id and result is not None:
            self._mapping.bind(operation.temporary_id, result)
        operation.advance(OperationStatus.EXECUTED)
        self._record(
            operation,
            "info",
            f"Executed {operation.type}" + (f" -> {result.display()}" if result else ""),
        )

    def _check_reference_targets(self, operation: Operation) -> PipelineError | None:
        for name, ref in operation.references.items():
            if isinstance(ref, Unresolved):
                if self._staged:
                    continue
                return PipelineError(
                    code=ErrorCode.MISSING_DEPENDENCY,
                    message=f"Temporary ID '{ref.placeholder}' was not resolved",
                    field=name,
                )
            if isinstance(ref, Resolved) and not self._authorizer.is_allowed(operation.type, ref.ref.repo):
                return PipelineError(
                    code=ErrorCode.UNAUTHORIZED_REPOSITORY,
                    message=f"Referenced repository '{ref.ref.repo}' is not allowed for {operation.type}",
                    field=name,
                )
        return None

    def _preview(self, operation: Operation, calls: list) -> dict[str, object]:
        fields = dict(operation.sanitized_fields)
        for name in operation.text_templates:
            fields[name] = operation.rendered_text(name, operation.target_repository)
        references: dict[str, object] = {}
        for name, ref in operation.references.items():
            if isinstance(ref, Resolved):
                references[name] = ref.ref.to_dict()
            else:
                references[name] = {"temporary_id": ref.placeholder, "pending": True}
        preview: dict[str, object] = {
            "index": operation.index,
            "type": operation.type,
            "repository": operation.target_repository,
            "fields": fields,
            "requests": [call.to_dict() for call in calls],
        }
        if references:
            preview["references"] = references
        if operation.temporary_id:
            preview["temporary_id"] = operation.temporary_id
        return preview

    def _finish(self, operation: Operation, status: OperationStatus, error: PipelineError) -> None:
        operation.reject(error, status=status)
        level = "error" if status is OperationStatus.FAILED else "warning"
        self._record(operation, level, f"{error.code.value}: {error.message}")

    def _record(self, operation: Operation, level: str, message: str) -> None:
        self._sink.record(
            DiagnosticEvent(stage=_STAGE, level=level, index=operation.index, message=message)
        )
