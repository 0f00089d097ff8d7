"""Safe-output pipeline: validate, sanitize, authorize, resolve, execute, summarize."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping

import httpx

from safe_output_gate.audit.artifacts import ArtifactStore
from safe_output_gate.config import Settings
from safe_output_gate.diagnostics import (
    DiagnosticEvent,
    DiagnosticSink,
    LoggingSink,
    MemorySink,
    TeeSink,
)
from safe_output_gate.domain.operations import Operation, OperationStatus
from safe_output_gate.domain.records import RecordBatch, load_records, parse_records
from safe_output_gate.domain.references import TextTemplate
from safe_output_gate.domain.temporary_id import TemporaryIdMapping
from safe_output_gate.errors import (
    ConfigurationIntegrityError,
    ErrorCode,
    PipelineError,
    SanitizationUnrecoverableError,
)
from safe_output_gate.execution.dispatcher import ExecutionDispatcher
from safe_output_gate.execution.github_client import GitHubClient
from safe_output_gate.execution.handlers import HandlerContext
from safe_output_gate.execution.retry import RetryPolicy
from safe_output_gate.policy.authorizer import RepositoryAuthorizer
from safe_output_gate.policy.loader import load_safe_outputs_config
from safe_output_gate.policy.models import SafeOutputsConfig
from safe_output_gate.resolver.graph import DependencyResolver
from safe_output_gate.sanitize import Sanitizer
from safe_output_gate.summary import BatchSummary, build_summary
from safe_output_gate.validation.schemas import get_operation_spec, text_fields_for
from safe_output_gate.validation.validator import SchemaValidator

RecordSource = str | Iterable[str | Mapping[str, object]]

SUMMARY_FILENAME = "summary.json"
TEMPORARY_ID_MAP_FILENAME = "temporary_id_map.json"


class SafeOutputPipeline:
    """Process one batch of agent-proposed operations.

    Every stage records its decisions on the operations themselves; the
    returned ``BatchSummary`` is the only report. A batch with nothing to
    do is a success.
    """

    def __init__(
        self,
        config: SafeOutputsConfig,
        *,
        repository: str,
        client: GitHubClient | None = None,
        mapping: TemporaryIdMapping | None = None,
        staged: bool | None = None,
        workflow_name: str | None = None,
        run_url: str | None = None,
        retry_policy: RetryPolicy | None = None,
        max_concurrency: int = 4,
        fail_fast: bool = False,
        sink: DiagnosticSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        config_digest: str | None = None,
    ) -> None:
        self.config = config
        self.repository = config.repository or repository
        self.staged = config.staged if staged is None else staged
        self.mapping = mapping or TemporaryIdMapping()
        self._client = client
        self._workflow_name = workflow_name
        self._run_url = run_url
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_concurrency = max_concurrency
        self._fail_fast = fail_fast
        self._memory = MemorySink()
        self._sink = LoggingSink(tee=self._memory) if sink is None else TeeSink(sink, self._memory)
        self._sleep = sleep
        self._config_digest = config_digest

    async def run(self, records: RecordSource | RecordBatch) -> BatchSummary:
        batch = records if isinstance(records, RecordBatch) else parse_records(records, self._sink)
        operations = batch.operations

        validator = SchemaValidator(self.config, self._sink, self.repository)
        validator.validate(operations)

        self._sanitize(operations)
        validator.enforce_atomic(operations)

        authorizer = RepositoryAuthorizer(
            self.config,
            self.repository,
            self._sink,
            schema_lookup=lambda op: validator.schema_for(op.kind) if op.kind else None,
        )
        authorizer.authorize_all(operations)
        validator.enforce_atomic(operations)

        plan = DependencyResolver(self.mapping, self._sink).resolve(operations)
        validator.enforce_atomic(operations)

        if plan.order:
            dispatcher = ExecutionDispatcher(
                HandlerContext(
                    config=self.config,
                    repository=self.repository,
                    workflow_name=self._workflow_name,
                    run_url=self._run_url,
                ),
                self._client,
                self.mapping,
                authorizer,
                self._sink,
                policy=self._retry_policy,
                max_concurrency=self._max_concurrency,
                fail_fast=self._fail_fast,
                staged=self.staged,
                sleep=self._sleep,
            )
            await dispatcher.run(plan)

        summary = build_summary(
            operations,
            skipped_records=batch.skipped,
            staged=self.staged,
            mapping=self.mapping,
            batch_errors=batch.errors,
            events=self._memory.events,
            config_digest=self._config_digest,
        )
        self._sink.record(
            DiagnosticEvent(
                stage="summary",
                message=(
                    f"Examined {summary.total_examined} record(s): "
                    f"{len(summary.results)} executed, {len(summary.previews)} previewed, "
                    f"{len(summary.errors)} error(s)"
                ),
            )
        )
        return summary

    def _sanitize(self, operations: list[Operation]) -> None:
        sanitizer = Sanitizer(self.config.allowed_mentions, self.config.allowed_domains)
        for operation in operations:
            if operation.status is not OperationStatus.VALIDATED:
                continue
            spec = get_operation_spec(operation.kind)
            text_fields = text_fields_for(spec, self.config.type_config(operation.type))

            sanitized: dict[str, object] = {}
            redactions = []
            current = None
            try:
                for name, value in operation.raw_fields.items():
                    current = name
                    if name in text_fields:
                        clean, found = sanitizer.sanitize_value(value, name)
                        sanitized[name] = clean
                        redactions.extend(found)
                    else:
                        sanitized[name] = value
            except SanitizationUnrecoverableError as exc:
                operation.raw_fields = {
                    k: v for k, v in operation.raw_fields.items() if k not in text_fields
                }
                operation.reject(
                    PipelineError(
                        code=ErrorCode.SANITIZATION_UNRECOVERABLE,
                        message=str(exc),
                        field=exc.field or current,
                    )
                )
                self._sink.record(
                    DiagnosticEvent(
                        stage="sanitize",
                        level="warning",
                        index=operation.index,
                        message=f"{ErrorCode.SANITIZATION_UNRECOVERABLE.value}: {exc}",
                    )
                )
                continue

            operation.sanitized_fields = sanitized
            operation.redactions = redactions
            operation.raw_fields = {k: v for k, v in operation.raw_fields.items() if k not in text_fields}
            for name in text_fields:
                value = sanitized.get(name)
                if isinstance(value, str):
                    template = TextTemplate.parse(value)
                    if template.has_references:
                        operation.text_templates[name] = template
            if redactions:
                self._sink.record(
                    DiagnosticEvent(
                        stage="sanitize",
                        index=operation.index,
                        message=f"{len(redactions)} redaction(s) applied",
                    )
                )
            operation.advance(OperationStatus.SANITIZED)


def reject_batch(batch: RecordBatch, error: PipelineError) -> BatchSummary:
    """Summary for a batch that must not run at all (configuration integrity failure)."""
    for operation in batch.operations:
        operation.reject(
            PipelineError(code=error.code, message=error.message, index=operation.index)
        )
    return build_summary(
        batch.operations,
        skipped_records=batch.skipped,
        staged=False,
        mapping=TemporaryIdMapping(),
        batch_errors=[error, *batch.errors],
    )


async def run_from_settings(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sink: DiagnosticSink | None = None,
) -> BatchSummary:
    """Load configuration and records from ``settings`` paths, run, and write artifacts."""
    sink = sink or LoggingSink()
    workflow = settings.workflow
    store = ArtifactStore(settings.paths.output_dir)
    batch = load_records(settings.paths.records_path, sink)

    try:
        config = load_safe_outputs_config(settings.paths.config_path, workflow.config_sha256)
    except ConfigurationIntegrityError as exc:
        sink.record(DiagnosticEvent(stage="config", level="error", message=str(exc)))
        summary = reject_batch(
            batch, PipelineError(code=ErrorCode.CONFIGURATION_INTEGRITY, message=str(exc))
        )
        store.write_json("summary", summary.to_dict(), filename=SUMMARY_FILENAME)
        return summary

    repository = config.repository or workflow.repository
    if not repository:
        raise RuntimeError(
            "Invalid configuration: GITHUB_REPOSITORY or a configured repository is required"
        )
    mapping = TemporaryIdMapping.from_json(workflow.temporary_id_map, repository)
    staged = config.staged if workflow.staged is None else workflow.staged

    client = None
    if not staged:
        client = GitHubClient(
            workflow.token,
            api_url=workflow.api_url,
            timeout=settings.execution.http_timeout_seconds,
            transport=transport,
        )
    try:
        pipeline = SafeOutputPipeline(
            config,
            repository=repository,
            client=client,
            mapping=mapping,
            staged=staged,
            workflow_name=workflow.workflow_name,
            run_url=workflow.run_url,
            retry_policy=RetryPolicy.from_settings(settings.execution),
            max_concurrency=settings.execution.max_concurrency,
            fail_fast=settings.execution.fail_fast,
            sink=sink,
        )
        summary = await pipeline.run(batch)
    finally:
        if client is not None:
            await client.aclose()

    store.write_json("summary", summary.to_dict(), filename=SUMMARY_FILENAME)
    store.write_json("temporary_id_map", summary.temporary_id_map, filename=TEMPORARY_ID_MAP_FILENAME)
    return summary
