"""Safe-output configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from safe_output_gate.domain.operations import OperationType, normalize_type_tag

DEFAULT_FOOTER_TEMPLATE = "> AI generated by [{workflow_name}]({run_url})"


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, a single string to a one-item list."""
    if v is None:
        return []
    if isinstance(v, str):
        return [v]
    return v


def _snake_keys(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    return {
        (key.replace("-", "_") if isinstance(key, str) else key): value
        for key, value in data.items()
    }


class TypeConfig(BaseModel):
    """Per-operation-type settings.

    ``max`` of 0 disables the type. ``atomic`` defaults to ``max == 1``:
    when any operation of an atomic type fails validation, none of that type
    run.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    max: int = Field(default=1, ge=0)
    atomic: bool | None = Field(default=None)
    json_schema: dict[str, Any] | None = Field(default=None, alias="schema")
    text_fields: list[str] = Field(default_factory=list)
    allowed_repos: list[str] = Field(default_factory=list)
    target_repo: str | None = Field(default=None)
    footer: bool = Field(default=True)
    title_prefix: str | None = Field(default=None)
    labels: list[str] = Field(default_factory=list)
    allowed_labels: list[str] = Field(default_factory=list)
    allowed_workflows: list[str] = Field(default_factory=list)
    allowed_agents: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if data is None:
            return {}
        return _snake_keys(data)

    @field_validator(
        "text_fields",
        "allowed_repos",
        "labels",
        "allowed_labels",
        "allowed_workflows",
        "allowed_agents",
        mode="before",
    )
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @property
    def enabled(self) -> bool:
        return self.max > 0

    @property
    def is_atomic(self) -> bool:
        if self.atomic is not None:
            return self.atomic
        return self.max == 1


class FooterConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    template: str = Field(default=DEFAULT_FOOTER_TEMPLATE)
    workflow_name: str | None = Field(default=None)
    run_url: str | None = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, bool):
            return {"enabled": data}
        if isinstance(data, str):
            return {"template": data}
        return _snake_keys(data)


_GLOBAL_KEYS = frozenset(
    {
        "repository",
        "allowed_repos",
        "allowed_domains",
        "allowed_mentions",
        "max_total",
        "staged",
        "footer",
        "integrity",
        "types",
    }
)


class SafeOutputsConfig(BaseModel):
    """Configuration for one run, parsed once at batch start.

    Type sections may sit under ``types`` or directly at the top level
    (``create-issue: {max: 3}``); both kebab and snake case tags are accepted.
    Types that are not configured are disabled.
    """

    model_config = ConfigDict(extra="ignore")

    repository: str | None = Field(default=None)
    allowed_repos: list[str] = Field(default_factory=list)
    allowed_domains: list[str] = Field(default_factory=list)
    allowed_mentions: list[str] = Field(default_factory=list)
    max_total: int | None = Field(default=None, ge=0)
    staged: bool = Field(default=False)
    footer: FooterConfig = Field(default_factory=FooterConfig)
    integrity: str | None = Field(default=None)
    types: dict[str, TypeConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_types(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data
        normalized = _snake_keys(data)
        types: dict[str, Any] = {}
        for key, value in (normalized.get("types") or {}).items():
            types[normalize_type_tag(key)] = value
        for key, value in data.items():
            if not isinstance(key, str) or key.replace("-", "_") in _GLOBAL_KEYS:
                continue
            if OperationType.parse(key) is not None:
                types[normalize_type_tag(key)] = value
        normalized["types"] = types
        return normalized

    @field_validator("allowed_repos", "allowed_domains", "allowed_mentions", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    def type_config(self, tag: str) -> TypeConfig | None:
        return self.types.get(normalize_type_tag(tag))

    def is_enabled(self, tag: str) -> bool:
        config = self.type_config(tag)
        return config is not None and config.enabled

    @classmethod
    def from_mapping(cls, data: dict[str, object]) -> "SafeOutputsConfig":
        return cls.model_validate(data)
