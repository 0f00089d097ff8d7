from __future__ import annotations

import asyncio
import contextlib
import json
import re

import httpx
import pytest

from safe_output_gate import config, logging_utils
from safe_output_gate.diagnostics import MemorySink
from safe_output_gate.policy.models import SafeOutputsConfig

REPO = "octo/widgets"

_ISSUE_PATH = re.compile(r"^/repos/(?P<repo>[^/]+/[^/]+)/issues/(?P<number>\d+)(?P<rest>/.*)?$")


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in [*config.ENV_KEYS.values(), "GH_AW_GITHUB_TOKEN", "GITHUB_TOKEN"]:
        monkeypatch.delenv(key, raising=False)
    # Keep pytest's log capture handlers in place.
    monkeypatch.setattr(logging_utils, "_logging_configured", True)
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


class FakePlatform:
    """In-memory stand-in for the platform REST API."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, object]] = []
        self.next_number = 100
        self.runs: list[dict[str, object]] = []
        self._failures: dict[tuple[str, str], list[httpx.Response]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, path: str, *responses: httpx.Response) -> None:
        """Queue responses returned (in order) before the route's normal behavior."""
        self._failures.setdefault((method, path), []).extend(responses)

    def calls(self, method: str | None = None) -> list[tuple[str, str, object]]:
        return [r for r in self.requests if method is None or r[0] == method]

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        payload = json.loads(request.content) if request.content else None
        self.requests.append((method, path, payload))

        queued = self._failures.get((method, path))
        if queued:
            return queued.pop(0)

        match = _ISSUE_PATH.match(path)
        if match:
            repo, number, rest = match.group("repo"), int(match.group("number")), match.group("rest")
            if rest is None and method == "GET":
                return httpx.Response(200, json={"number": number, "id": number * 1000})
            if rest is None and method == "PATCH":
                return httpx.Response(
                    200,
                    json={"number": number, "html_url": f"https://github.com/{repo}/issues/{number}"},
                )
            if rest == "/comments" and method == "POST":
                return httpx.Response(
                    201,
                    json={"id": 9000 + len(self.requests), "html_url": f"https://github.com/{repo}/issues/{number}#c"},
                )
            if rest == "/labels" and method == "POST":
                return httpx.Response(200, json=[{"name": name} for name in payload["labels"]])
            if rest == "/sub_issues" and method == "POST":
                return httpx.Response(201, json={"number": number})
            if rest == "/assignees" and method == "POST":
                return httpx.Response(201, json={"number": number})

        parts = path.strip("/").split("/")
        if len(parts) == 3 and parts[0] == "repos" and method == "GET":
            return httpx.Response(200, json={"default_branch": "main"})
        if len(parts) == 4 and parts[3] in {"issues", "pulls"} and method == "POST":
            self.next_number += 1
            number = self.next_number
            repo = f"{parts[1]}/{parts[2]}"
            kind = "pull" if parts[3] == "pulls" else "issues"
            return httpx.Response(
                201,
                json={
                    "number": number,
                    "id": number * 1000,
                    "html_url": f"https://github.com/{repo}/{kind}/{number}",
                },
            )
        if path.endswith("/dispatches") and method == "POST":
            return httpx.Response(204)
        if path.endswith("/runs") and method == "GET":
            page = int(request.url.params.get("page", "1"))
            return httpx.Response(200, json={"workflow_runs": self.runs if page == 1 else []})
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


def make_config(**types: object) -> SafeOutputsConfig:
    """Build a configuration from keyword type sections (snake case tags)."""
    return SafeOutputsConfig.from_mapping({key: value for key, value in types.items()})
