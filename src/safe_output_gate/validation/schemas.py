"""Built-in operation type definitions.

Each type carries its JSON Schema, the fields holding free text (sanitized),
the fields holding item references (temporary ids allowed), and field
aliases accepted from agents.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

from safe_output_gate.domain.operations import OperationType
from safe_output_gate.policy.models import TypeConfig

_REPOSITORY_FIELD = {"type": "string", "minLength": 1, "maxLength": 140}
_TEMPORARY_ID_FIELD = {"type": "string", "minLength": 1, "maxLength": 64}
_REFERENCE_FIELD = {"type": ["integer", "string"]}
_LABEL_LIST = {
    "type": "array",
    "items": {"type": "string", "minLength": 1, "maxLength": 64},
    "maxItems": 20,
}
_TITLE = {"type": "string", "minLength": 1, "maxLength": 256}
_BODY = {"type": "string", "maxLength": 65536}


def _object(properties: dict[str, object], required: list[str]) -> dict[str, object]:
    props = {"target_repository": _REPOSITORY_FIELD, **properties}
    return {
        "type": "object",
        "properties": props,
        "required": required,
        "additionalProperties": False,
    }


@dataclass(frozen=True)
class OperationSpec:
    type: OperationType
    schema: dict[str, object]
    text_fields: tuple[str, ...] = ()
    reference_fields: tuple[str, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)
    creates: bool = False


OPERATION_SPECS: dict[OperationType, OperationSpec] = {
    OperationType.CREATE_ISSUE: OperationSpec(
        type=OperationType.CREATE_ISSUE,
        schema=_object(
            {
                "title": _TITLE,
                "body": _BODY,
                "labels": _LABEL_LIST,
                "assignees": {
                    "type": "array",
                    "items": {"type": "string", "pattern": r"^[A-Za-z0-9-]{1,39}$"},
                    "maxItems": 10,
                },
                "temporary_id": _TEMPORARY_ID_FIELD,
            },
            ["title"],
        ),
        text_fields=("title", "body", "labels"),
        creates=True,
    ),
    OperationType.ADD_COMMENT: OperationSpec(
        type=OperationType.ADD_COMMENT,
        schema=_object({"body": {**_BODY, "minLength": 1}, "item_number": _REFERENCE_FIELD}, ["body", "item_number"]),
        text_fields=("body",),
        reference_fields=("item_number",),
        aliases={"issue_number": "item_number"},
    ),
    OperationType.ADD_LABELS: OperationSpec(
        type=OperationType.ADD_LABELS,
        schema=_object(
            {"labels": {**_LABEL_LIST, "minItems": 1}, "item_number": _REFERENCE_FIELD},
            ["labels", "item_number"],
        ),
        text_fields=("labels",),
        reference_fields=("item_number",),
        aliases={"issue_number": "item_number"},
    ),
    OperationType.UPDATE_ISSUE: OperationSpec(
        type=OperationType.UPDATE_ISSUE,
        schema=_object(
            {
                "issue_number": _REFERENCE_FIELD,
                "title": _TITLE,
                "body": _BODY,
                "state": {"type": "string", "enum": ["open", "closed"]},
            },
            ["issue_number"],
        ),
        text_fields=("title", "body"),
        reference_fields=("issue_number",),
    ),
    OperationType.CREATE_PULL_REQUEST: OperationSpec(
        type=OperationType.CREATE_PULL_REQUEST,
        schema=_object(
            {
                "title": _TITLE,
                "body": _BODY,
                "head": {"type": "string", "pattern": r"^[A-Za-z0-9._/-]{1,255}$"},
                "base": {"type": "string", "pattern": r"^[A-Za-z0-9._/-]{1,255}$"},
                "draft": {"type": "boolean"},
                "temporary_id": _TEMPORARY_ID_FIELD,
            },
            ["title", "head"],
        ),
        text_fields=("title", "body"),
        creates=True,
    ),
    OperationType.LINK_SUB_ISSUE: OperationSpec(
        type=OperationType.LINK_SUB_ISSUE,
        schema=_object(
            {"parent_issue_number": _REFERENCE_FIELD, "sub_issue_number": _REFERENCE_FIELD},
            ["parent_issue_number", "sub_issue_number"],
        ),
        reference_fields=("parent_issue_number", "sub_issue_number"),
        aliases={"parent_ref": "parent_issue_number", "child_ref": "sub_issue_number"},
    ),
    OperationType.ASSIGN_TO_AGENT: OperationSpec(
        type=OperationType.ASSIGN_TO_AGENT,
        schema=_object(
            {
                "issue_number": _REFERENCE_FIELD,
                "agent": {"type": "string", "pattern": r"^[A-Za-z0-9-]{1,39}$"},
            },
            ["issue_number"],
        ),
        reference_fields=("issue_number",),
    ),
    OperationType.DISPATCH_WORKFLOW: OperationSpec(
        type=OperationType.DISPATCH_WORKFLOW,
        schema=_object(
            {
                "workflow": {"type": "string", "pattern": r"^[A-Za-z0-9._-]{1,100}$"},
                "ref": {"type": "string", "pattern": r"^[A-Za-z0-9._/-]{1,255}$"},
                "inputs": {
                    "type": "object",
                    "additionalProperties": {"type": ["string", "number", "boolean"]},
                    "maxProperties": 25,
                },
            },
            ["workflow"],
        ),
        text_fields=("inputs",),
    ),
    OperationType.NOOP: OperationSpec(
        type=OperationType.NOOP,
        schema=_object({"message": {"type": "string", "minLength": 1, "maxLength": 65536}}, ["message"]),
        text_fields=("message",),
    ),
}


def get_operation_spec(kind: OperationType) -> OperationSpec:
    return OPERATION_SPECS[kind]


def compile_schema(spec: OperationSpec, type_config: TypeConfig) -> dict[str, object]:
    """Build the effective schema for a type.

    A configured schema replaces the built-in one. Allow-lists from the type
    configuration are written into the schema as enums so the validator
    enforces them.
    """
    schema = copy.deepcopy(type_config.json_schema or spec.schema)
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return schema

    if type_config.allowed_labels and isinstance(properties.get("labels"), dict):
        items = dict(properties["labels"].get("items") or {})
        items["enum"] = list(type_config.allowed_labels)
        properties["labels"] = {**properties["labels"], "items": items}
    if type_config.allowed_workflows and "workflow" in properties:
        properties["workflow"] = {"type": "string", "enum": list(type_config.allowed_workflows)}
    if type_config.allowed_agents and "agent" in properties:
        properties["agent"] = {"type": "string", "enum": list(type_config.allowed_agents)}
    return schema


def text_fields_for(spec: OperationSpec, type_config: TypeConfig) -> tuple[str, ...]:
    extra = tuple(name for name in type_config.text_fields if name not in spec.text_fields)
    return spec.text_fields + extra
