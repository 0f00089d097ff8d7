"""Temporary-id dependency graph.

Operations that declare a ``temporary_id`` are providers; operations whose
reference fields or text mention ``#aw_...`` depend on them. The resolver
rejects ambiguous, missing and cyclic dependencies, blocks dependents of
rejected providers, and orders the rest so providers run first.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field

from safe_output_gate.diagnostics import DiagnosticEvent, DiagnosticSink
from safe_output_gate.domain.operations import Operation, OperationStatus
from safe_output_gate.domain.references import Unresolved
from safe_output_gate.domain.temporary_id import TemporaryIdMapping, is_temporary_id, normalize_temporary_id
from safe_output_gate.errors import ErrorCode, PipelineError

_STAGE = "resolve"


@dataclass
class ResolutionPlan:
    """Execution order plus, per operation index, the indices it waits for."""

    order: list[Operation] = field(default_factory=list)
    dependencies: dict[int, set[int]] = field(default_factory=dict)
    providers: dict[str, Operation] = field(default_factory=dict)

    def dependents_of(self, index: int) -> list[int]:
        return sorted(i for i, deps in self.dependencies.items() if index in deps)


def declared_temporary_id(operation: Operation) -> str | None:
    if operation.temporary_id:
        return operation.temporary_id
    raw = operation.raw_fields.get("temporary_id")
    if is_temporary_id(raw):
        return normalize_temporary_id(raw)
    return None


class DependencyResolver:
    def __init__(self, mapping: TemporaryIdMapping, sink: DiagnosticSink) -> None:
        self._mapping = mapping
        self._sink = sink

    def resolve(self, operations: list[Operation]) -> ResolutionPlan:
        ordered = sorted(operations, key=lambda op: op.index)
        by_index = {op.index: op for op in ordered}

        declarers: dict[str, list[Operation]] = {}
        for operation in ordered:
            temporary_id = declared_temporary_id(operation)
            if temporary_id is not None:
                declarers.setdefault(temporary_id, []).append(operation)

        ambiguous: set[str] = set()
        for temporary_id, ops in declarers.items():
            if len(ops) > 1 or temporary_id in self._mapping:
                ambiguous.add(temporary_id)
                indices = ", ".join(str(op.index) for op in ops)
                for op in ops:
                    if not op.is_terminal:
                        self._fail(
                            op,
                            ErrorCode.DUPLICATE_TEMPORARY_ID,
                            (
                                f"Temporary ID '{temporary_id}' is declared by operations {indices}"
                                if len(ops) > 1
                                else f"Temporary ID '{temporary_id}' is already bound by an earlier step"
                            ),
                            field="temporary_id",
                        )

        pending = [op for op in ordered if op.status is OperationStatus.AUTHORIZED]
        for op in pending:
            op.resolve_references(self._mapping.resolve)

        plan = ResolutionPlan()
        for temporary_id, ops in declarers.items():
            if temporary_id not in ambiguous:
                plan.providers[temporary_id] = ops[0]

        for op in pending:
            if op.is_terminal:
                continue
            deps: set[int] = set()
            for placeholder in sorted(op.referenced_ids):
                provider = plan.providers.get(placeholder)
                if provider is None and placeholder not in ambiguous:
                    self._fail(
                        op,
                        ErrorCode.MISSING_DEPENDENCY,
                        f"Temporary ID '{placeholder}' is not created by any operation in this batch",
                        field=_field_for(op, placeholder),
                    )
                    break
                if provider is None:
                    self._fail(
                        op,
                        ErrorCode.DEPENDENCY_BLOCKED,
                        f"Temporary ID '{placeholder}' is ambiguous",
                        field=_field_for(op, placeholder),
                        status=OperationStatus.BLOCKED,
                    )
                    break
                deps.add(provider.index)
            if not op.is_terminal:
                plan.dependencies[op.index] = deps

        self._block_dependents(plan, by_index)
        self._reject_cycles(plan, by_index)
        self._block_dependents(plan, by_index)

        live = {i for i in plan.dependencies if not by_index[i].is_terminal}
        plan.dependencies = {i: plan.dependencies[i] & live for i in live}
        plan.order = [by_index[i] for i in _topological_order(plan.dependencies)]
        for op in plan.order:
            op.advance(OperationStatus.RESOLVED)
        return plan

    def _block_dependents(self, plan: ResolutionPlan, by_index: dict[int, Operation]) -> None:
        changed = True
        while changed:
            changed = False
            for index, deps in plan.dependencies.items():
                op = by_index[index]
                if op.is_terminal:
                    continue
                failed = sorted(d for d in deps if by_index[d].is_terminal)
                if failed:
                    cause = by_index[failed[0]]
                    self._fail(
                        op,
                        ErrorCode.DEPENDENCY_BLOCKED,
                        f"Depends on operation #{cause.index} ({cause.type}), which was {cause.status.value}",
                        status=OperationStatus.BLOCKED,
                    )
                    changed = True

    def _reject_cycles(self, plan: ResolutionPlan, by_index: dict[int, Operation]) -> None:
        graph = {i: deps for i, deps in plan.dependencies.items() if not by_index[i].is_terminal}
        for component in _strongly_connected(graph):
            if len(component) == 1:
                only = next(iter(component))
                if only not in graph.get(only, set()):
                    continue
            members = ", ".join(f"#{i}" for i in sorted(component))
            for index in sorted(component):
                self._fail(
                    by_index[index],
                    ErrorCode.DEPENDENCY_CYCLE,
                    f"Dependency cycle between operations {members}",
                )

    def _fail(
        self,
        operation: Operation,
        code: ErrorCode,
        message: str,
        *,
        field: str | None = None,
        status: OperationStatus = OperationStatus.REJECTED,
    ) -> None:
        operation.reject(PipelineError(code=code, message=message, field=field), status=status)
        self._sink.record(
            DiagnosticEvent(
                stage=_STAGE,
                level="warning",
                index=operation.index,
                message=f"{code.value}: {message}",
            )
        )


def _field_for(operation: Operation, placeholder: str) -> str | None:
    for name, ref in operation.references.items():
        if isinstance(ref, Unresolved) and ref.placeholder == placeholder:
            return name
    for name, template in operation.text_templates.items():
        if placeholder in template.placeholders:
            return name
    return None


def _strongly_connected(graph: dict[int, set[int]]) -> list[set[int]]:
    """Tarjan's algorithm, iterative; nodes outside ``graph`` are ignored."""
    index_of: dict[int, int] = {}
    lowlink: dict[int, int] = {}
    on_stack: set[int] = set()
    stack: list[int] = []
    components: list[set[int]] = []
    counter = 0

    for root in sorted(graph):
        if root in index_of:
            continue
        work: list[tuple[int, list[int]]] = [(root, sorted(graph[root] & graph.keys()))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            node, successors = work[-1]
            if successors:
                succ = successors.pop(0)
                if succ not in index_of:
                    index_of[succ] = lowlink[succ] = counter
                    counter += 1
                    stack.append(succ)
                    on_stack.add(succ)
                    work.append((succ, sorted(graph[succ] & graph.keys())))
                elif succ in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[succ])
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                component: set[int] = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == node:
                        break
                components.append(component)
    return components


def _topological_order(dependencies: dict[int, set[int]]) -> list[int]:
    """Kahn's algorithm; ties broken by batch index so independent order is stable."""
    remaining = {i: set(deps) for i, deps in dependencies.items()}
    ready = [i for i, deps in remaining.items() if not deps]
    heapq.heapify(ready)
    order: list[int] = []
    while ready:
        index = heapq.heappop(ready)
        order.append(index)
        for other, deps in remaining.items():
            if index in deps:
                deps.discard(index)
                if not deps:
                    heapq.heappush(ready, other)
    return order
