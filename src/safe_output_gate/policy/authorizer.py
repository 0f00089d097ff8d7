"""Repository and domain authorization."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import replace

from safe_output_gate.diagnostics import DiagnosticEvent, DiagnosticSink
from safe_output_gate.domain.operations import Operation, OperationStatus
from safe_output_gate.domain.references import Resolved
from safe_output_gate.errors import ErrorCode, PipelineError
from safe_output_gate.policy.models import SafeOutputsConfig
from safe_output_gate.utils.urls import is_url_allowed

_OWNER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")

_STAGE = "authorize"

SchemaLookup = Callable[[Operation], dict[str, object] | None]


def parse_repository(value: object, default_owner: str | None = None) -> str:
    """Return a canonical ``owner/repo`` or raise ``ValueError``.

    A bare repository name is qualified with ``default_owner``. URLs, SSH
    remotes and names outside the platform character set are malformed.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Repository must be a non-empty 'owner/repo' string")
    text = value.strip()
    if "://" in text or text.lower().startswith(("git@", "http:", "https:", "www.")):
        raise ValueError(f"Repository '{text}' must not include a protocol or host")
    if "/" not in text:
        if not default_owner:
            raise ValueError(f"Repository '{text}' must be in 'owner/repo' form")
        text = f"{default_owner}/{text}"
    parts = text.split("/")
    if len(parts) != 2:
        raise ValueError(f"Repository '{text}' must be in 'owner/repo' form")
    owner, name = parts
    if not _OWNER_RE.match(owner) or not _NAME_RE.match(name) or name in {".", ".."}:
        raise ValueError(f"Repository '{text}' contains invalid characters")
    return f"{owner}/{name}"


class RepositoryAuthorizer:
    """Decide which repository each operation may target.

    Resolution order: the workflow's own repository (or the type's
    configured ``target_repo``) is always allowed; otherwise a per-type
    allow-list is authoritative; otherwise the global allow-list applies;
    otherwise cross-repository targets are denied. Matching is exact.
    """

    def __init__(
        self,
        config: SafeOutputsConfig,
        default_repo: str,
        sink: DiagnosticSink,
        schema_lookup: SchemaLookup | None = None,
    ) -> None:
        self._config = config
        self._default_repo = default_repo
        self._default_owner = default_repo.split("/", 1)[0]
        self._sink = sink
        self._schema_lookup = schema_lookup

    def home_repository(self, op_type: str) -> str:
        type_config = self._config.type_config(op_type)
        if type_config is not None and type_config.target_repo:
            return type_config.target_repo
        return self._default_repo

    def is_allowed(self, op_type: str, repository: str) -> bool:
        if repository == self.home_repository(op_type) or repository == self._default_repo:
            return True
        type_config = self._config.type_config(op_type)
        if type_config is not None and type_config.allowed_repos:
            return repository in type_config.allowed_repos
        if self._config.allowed_repos:
            return repository in self._config.allowed_repos
        return False

    def authorize_all(self, operations: list[Operation]) -> None:
        for operation in operations:
            if operation.status is OperationStatus.SANITIZED:
                self.authorize(operation)

    def authorize(self, operation: Operation) -> None:
        requested = operation.sanitized_fields.get("target_repository")
        if requested is None:
            target = self.home_repository(operation.type)
        else:
            try:
                target = parse_repository(requested, self._default_owner)
            except ValueError as exc:
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.MALFORMED_REPOSITORY,
                        message=str(exc),
                        field="target_repository",
                    ),
                )
                return
            if not self.is_allowed(operation.type, target):
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.UNAUTHORIZED_REPOSITORY,
                        message=f"Repository '{target}' is not in the allowed repositories list",
                        field="target_repository",
                        hint="Add the repository to allowed_repos for this operation type.",
                    ),
                )
                return

        domain_error = self._check_uri_fields(operation)
        if domain_error is not None:
            self._reject(operation, domain_error)
            return

        operation.target_repository = target
        for name, ref in list(operation.references.items()):
            if isinstance(ref, Resolved) and ref.ref.repo != target:
                operation.references[name] = Resolved(replace(ref.ref, repo=target))
        operation.advance(OperationStatus.AUTHORIZED)

    def _check_uri_fields(self, operation: Operation) -> PipelineError | None:
        if not self._config.allowed_domains or self._schema_lookup is None:
            return None
        schema = self._schema_lookup(operation) or {}
        properties = schema.get("properties") or {}
        for name, prop in properties.items():
            if not isinstance(prop, dict) or prop.get("format") != "uri":
                continue
            value = operation.sanitized_fields.get(name)
            if isinstance(value, str) and not is_url_allowed(value, self._config.allowed_domains):
                return PipelineError(
                    code=ErrorCode.UNAUTHORIZED_DOMAIN,
                    message=f"URL in field '{name}' points to a domain that is not allowed",
                    field=name,
                )
        return None

    def _reject(self, operation: Operation, error: PipelineError) -> None:
        operation.reject(error)
        self._sink.record(
            DiagnosticEvent(
                stage=_STAGE,
                level="warning",
                index=operation.index,
                message=f"{error.code.value}: {error.message}",
            )
        )
