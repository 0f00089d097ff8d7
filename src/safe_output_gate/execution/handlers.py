"""Per-type handlers that turn operations into platform API calls."""

from __future__ import annotations

from dataclasses import dataclass

from safe_output_gate.domain.operations import Operation, OperationType
from safe_output_gate.domain.references import Resolved, ResourceRef, Unresolved
from safe_output_gate.errors import PlatformApiError
from safe_output_gate.execution.github_client import GitHubClient
from safe_output_gate.policy.models import SafeOutputsConfig

AGENT_LOGINS = {"copilot": "copilot-swe-agent"}
DEFAULT_AGENT = "copilot"


@dataclass(frozen=True)
class ApiCall:
    method: str
    path: str
    payload: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"method": self.method, "path": self.path}
        if self.payload is not None:
            data["payload"] = self.payload
        return data


class _FormatValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class HandlerContext:
    """Run-level facts handlers need: configuration and provenance."""

    config: SafeOutputsConfig
    repository: str
    workflow_name: str | None = None
    run_url: str | None = None

    def footer_for(self, operation: Operation) -> str | None:
        type_config = self.config.type_config(operation.type)
        footer = self.config.footer
        if not footer.enabled or (type_config is not None and not type_config.footer):
            return None
        values = _FormatValues(
            workflow_name=footer.workflow_name or self.workflow_name or "workflow",
            run_url=footer.run_url or self.run_url or "",
            repository=self.repository,
        )
        return footer.template.format_map(values)

    def title_prefix_for(self, operation: Operation) -> str | None:
        type_config = self.config.type_config(operation.type)
        return type_config.title_prefix if type_config is not None else None

    def default_labels_for(self, operation: Operation) -> list[str]:
        type_config = self.config.type_config(operation.type)
        return list(type_config.labels) if type_config is not None else []


def _repo_path(repo: str) -> str:
    return f"/repos/{repo}"


def item_ref(operation: Operation, name: str) -> ResourceRef | None:
    ref = operation.references.get(name)
    return ref.ref if isinstance(ref, Resolved) else None


def _item_repo(operation: Operation, name: str) -> str:
    ref = item_ref(operation, name)
    return ref.repo if ref is not None else operation.target_repository or ""


def _item_number(operation: Operation, name: str) -> str:
    ref = operation.references.get(name)
    if isinstance(ref, Resolved) and ref.ref.number is not None:
        return str(ref.ref.number)
    if isinstance(ref, Unresolved):
        return "{" + ref.placeholder + "}"
    return "{" + name + "}"


def _with_footer(body: object, footer: str | None) -> str:
    text = body if isinstance(body, str) else ""
    if not footer:
        return text
    return f"{text}\n\n{footer}" if text else footer


def _with_prefix(title: str, prefix: str | None) -> str:
    if prefix and not title.startswith(prefix):
        return f"{prefix}{title}"
    return title


def _merge_labels(defaults: list[str], labels: object) -> list[str]:
    merged: list[str] = []
    for label in defaults + (list(labels) if isinstance(labels, list) else []):
        if isinstance(label, str) and label.strip() and label not in merged:
            merged.append(label.strip())
    return merged


class Handler:
    """Base handler: one API call whose response becomes the result reference."""

    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        raise NotImplementedError

    def result_ref(
        self, operation: Operation, call: ApiCall, response: object
    ) -> ResourceRef | None:
        return None

    async def execute(
        self, operation: Operation, client: GitHubClient, ctx: HandlerContext
    ) -> ResourceRef | None:
        calls = self.plan(operation, ctx)
        response: object = None
        for call in calls:
            response = await client.request(call.method, call.path, call.payload)
        return self.result_ref(operation, calls[-1], response) if calls else None

    def text(self, operation: Operation, name: str) -> object:
        return operation.rendered_text(name, operation.target_repository)


def _issue_ref(repo: str, response: object, kind: str = "issue") -> ResourceRef:
    if not isinstance(response, dict) or not isinstance(response.get("number"), int):
        raise PlatformApiError("Platform response did not include a resource number")
    return ResourceRef(
        repo=repo,
        number=response["number"],
        url=response.get("html_url") if isinstance(response.get("html_url"), str) else None,
        kind=kind,
        id=response.get("id") if isinstance(response.get("id"), int) else None,
    )


class CreateIssueHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        fields = operation.sanitized_fields
        payload: dict[str, object] = {
            "title": _with_prefix(str(self.text(operation, "title")), ctx.title_prefix_for(operation)),
            "body": _with_footer(self.text(operation, "body"), ctx.footer_for(operation)),
        }
        labels = _merge_labels(ctx.default_labels_for(operation), fields.get("labels"))
        if labels:
            payload["labels"] = labels
        if fields.get("assignees"):
            payload["assignees"] = list(fields["assignees"])
        return [ApiCall("POST", f"{_repo_path(operation.target_repository or '')}/issues", payload)]

    def result_ref(self, operation: Operation, call: ApiCall, response: object) -> ResourceRef:
        return _issue_ref(operation.target_repository or "", response)


class AddCommentHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        repo = _item_repo(operation, "item_number")
        number = _item_number(operation, "item_number")
        body = operation.rendered_text("body", repo)
        return [
            ApiCall(
                "POST",
                f"{_repo_path(repo)}/issues/{number}/comments",
                {"body": _with_footer(body, ctx.footer_for(operation))},
            )
        ]

    def result_ref(self, operation: Operation, call: ApiCall, response: object) -> ResourceRef:
        target = item_ref(operation, "item_number")
        url = response.get("html_url") if isinstance(response, dict) else None
        comment_id = response.get("id") if isinstance(response, dict) else None
        return ResourceRef(
            repo=_item_repo(operation, "item_number"),
            number=target.number if target else None,
            url=url if isinstance(url, str) else None,
            kind="comment",
            id=comment_id if isinstance(comment_id, int) else None,
        )


class AddLabelsHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        repo = _item_repo(operation, "item_number")
        number = _item_number(operation, "item_number")
        labels = _merge_labels([], operation.sanitized_fields.get("labels"))
        return [ApiCall("POST", f"{_repo_path(repo)}/issues/{number}/labels", {"labels": labels})]

    def result_ref(self, operation: Operation, call: ApiCall, response: object) -> ResourceRef | None:
        return item_ref(operation, "item_number")


class UpdateIssueHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        repo = _item_repo(operation, "issue_number")
        number = _item_number(operation, "issue_number")
        fields = operation.sanitized_fields
        payload: dict[str, object] = {}
        if "title" in fields:
            payload["title"] = _with_prefix(
                str(operation.rendered_text("title", repo)), ctx.title_prefix_for(operation)
            )
        if "body" in fields:
            payload["body"] = _with_footer(operation.rendered_text("body", repo), ctx.footer_for(operation))
        if "state" in fields:
            payload["state"] = fields["state"]
        return [ApiCall("PATCH", f"{_repo_path(repo)}/issues/{number}", payload)]

    def result_ref(self, operation: Operation, call: ApiCall, response: object) -> ResourceRef:
        return _issue_ref(_item_repo(operation, "issue_number"), response)


class CreatePullRequestHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        fields = operation.sanitized_fields
        payload: dict[str, object] = {
            "title": _with_prefix(str(self.text(operation, "title")), ctx.title_prefix_for(operation)),
            "body": _with_footer(self.text(operation, "body"), ctx.footer_for(operation)),
            "head": fields["head"],
            "base": fields.get("base") or "{default_branch}",
            "draft": bool(fields.get("draft", False)),
        }
        return [ApiCall("POST", f"{_repo_path(operation.target_repository or '')}/pulls", payload)]

    async def execute(
        self, operation: Operation, client: GitHubClient, ctx: HandlerContext
    ) -> ResourceRef | None:
        call = self.plan(operation, ctx)[0]
        payload = dict(call.payload or {})
        if not operation.sanitized_fields.get("base"):
            payload["base"] = await _default_branch(client, operation.target_repository or "")
        response = await client.request(call.method, call.path, payload)
        return _issue_ref(operation.target_repository or "", response, kind="pull_request")


class LinkSubIssueHandler(Handler):
    """Look up the sub-issue's id, then attach it to the parent."""

    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        parent_repo = _item_repo(operation, "parent_issue_number")
        sub_repo = _item_repo(operation, "sub_issue_number")
        parent = _item_number(operation, "parent_issue_number")
        sub = _item_number(operation, "sub_issue_number")
        return [
            ApiCall("GET", f"{_repo_path(sub_repo)}/issues/{sub}"),
            ApiCall(
                "POST",
                f"{_repo_path(parent_repo)}/issues/{parent}/sub_issues",
                {"sub_issue_id": "{id of " + sub_repo + "#" + sub + "}"},
            ),
        ]

    async def execute(
        self, operation: Operation, client: GitHubClient, ctx: HandlerContext
    ) -> ResourceRef | None:
        lookup, link = self.plan(operation, ctx)
        sub_ref = item_ref(operation, "sub_issue_number")
        sub_id = sub_ref.id if sub_ref is not None else None
        if sub_id is None:
            issue = await client.request(lookup.method, lookup.path)
            sub_id = issue.get("id") if isinstance(issue, dict) else None
            if not isinstance(sub_id, int):
                raise PlatformApiError(f"Could not determine the id of {lookup.path}")
        await client.request(link.method, link.path, {"sub_issue_id": sub_id})
        return item_ref(operation, "parent_issue_number")


class AssignToAgentHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        repo = _item_repo(operation, "issue_number")
        number = _item_number(operation, "issue_number")
        agent = str(operation.sanitized_fields.get("agent") or DEFAULT_AGENT)
        login = AGENT_LOGINS.get(agent.lower(), agent)
        return [ApiCall("POST", f"{_repo_path(repo)}/issues/{number}/assignees", {"assignees": [login]})]

    def result_ref(self, operation: Operation, call: ApiCall, response: object) -> ResourceRef | None:
        return item_ref(operation, "issue_number")


class DispatchWorkflowHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        fields = operation.sanitized_fields
        workflow = str(fields["workflow"])
        if not workflow.endswith((".yml", ".yaml")):
            workflow = f"{workflow}.yml"
        inputs = fields.get("inputs") or {}
        payload = {
            "ref": fields.get("ref") or "{default_branch}",
            "inputs": {str(k): _input_value(v) for k, v in inputs.items()},
        }
        return [
            ApiCall(
                "POST",
                f"{_repo_path(operation.target_repository or '')}/actions/workflows/{workflow}/dispatches",
                payload,
            )
        ]

    async def execute(
        self, operation: Operation, client: GitHubClient, ctx: HandlerContext
    ) -> ResourceRef | None:
        call = self.plan(operation, ctx)[0]
        payload = dict(call.payload or {})
        if not operation.sanitized_fields.get("ref"):
            payload["ref"] = await _default_branch(client, operation.target_repository or "")
        await client.request(call.method, call.path, payload)
        return ResourceRef(repo=operation.target_repository or "", kind="workflow_dispatch")


class NoopHandler(Handler):
    def plan(self, operation: Operation, ctx: HandlerContext) -> list[ApiCall]:
        return []


def _input_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _default_branch(client: GitHubClient, repo: str) -> str:
    data = await client.request("GET", _repo_path(repo))
    branch = data.get("default_branch") if isinstance(data, dict) else None
    if not isinstance(branch, str) or not branch:
        raise PlatformApiError(f"Could not determine the default branch of {repo}")
    return branch


HANDLERS: dict[OperationType, Handler] = {
    OperationType.CREATE_ISSUE: CreateIssueHandler(),
    OperationType.ADD_COMMENT: AddCommentHandler(),
    OperationType.ADD_LABELS: AddLabelsHandler(),
    OperationType.UPDATE_ISSUE: UpdateIssueHandler(),
    OperationType.CREATE_PULL_REQUEST: CreatePullRequestHandler(),
    OperationType.LINK_SUB_ISSUE: LinkSubIssueHandler(),
    OperationType.ASSIGN_TO_AGENT: AssignToAgentHandler(),
    OperationType.DISPATCH_WORKFLOW: DispatchWorkflowHandler(),
    OperationType.NOOP: NoopHandler(),
}


def get_handler(kind: OperationType) -> Handler:
    return HANDLERS[kind]
