from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from conftest import REPO
from safe_output_gate.execution.github_client import GitHubClient
from safe_output_gate.gatekeeper.rate_limit import check_rate_limit, workflow_runs_fetcher

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _run(
    run_id: int,
    minutes_ago: int,
    *,
    actor: str = "alice",
    event: str = "issues",
    status: str = "in_progress",
    conclusion: str | None = None,
    duration_seconds: int | None = None,
) -> dict[str, object]:
    created = NOW - timedelta(minutes=minutes_ago)
    run: dict[str, object] = {
        "id": run_id,
        "created_at": created.isoformat().replace("+00:00", "Z"),
        "actor": {"login": actor},
        "event": event,
        "status": status,
        "conclusion": conclusion,
    }
    if duration_seconds is not None:
        run["updated_at"] = (created + timedelta(seconds=duration_seconds)).isoformat()
    return run


def _pages(*pages: list[dict[str, object]]):
    calls: list[int] = []

    async def fetch(page: int) -> list[dict[str, object]]:
        calls.append(page)
        return pages[page - 1] if page <= len(pages) else []

    fetch.calls = calls
    return fetch


@pytest.mark.asyncio
async def test_no_recent_runs_is_allowed() -> None:
    decision = await check_rate_limit("alice", _pages(), now=NOW)

    assert decision.allowed is True
    assert decision.recent_runs == 0


@pytest.mark.asyncio
async def test_below_limit_is_allowed() -> None:
    fetch = _pages([_run(1, 5), _run(2, 10)])

    decision = await check_rate_limit("alice", fetch, max_runs=3, now=NOW)

    assert decision.allowed is True
    assert decision.recent_runs == 2
    assert decision.breakdown == {"issues": 2}


@pytest.mark.asyncio
async def test_limit_reached_is_denied_and_stops_early() -> None:
    fetch = _pages([_run(1, 1), _run(2, 2), _run(3, 3)], [_run(4, 4)])

    decision = await check_rate_limit("alice", fetch, max_runs=3, now=NOW)

    assert decision.allowed is False
    assert decision.recent_runs == 3
    assert fetch.calls == [1]


@pytest.mark.asyncio
async def test_only_the_actors_runs_count() -> None:
    fetch = _pages([_run(1, 1, actor="bob"), _run(2, 2, actor="bob"), _run(3, 3)])

    decision = await check_rate_limit("alice", fetch, max_runs=2, now=NOW)

    assert decision.allowed is True
    assert decision.recent_runs == 1


@pytest.mark.asyncio
async def test_runs_outside_window_stop_paging() -> None:
    fetch = _pages([_run(1, 10), _run(2, 90)], [_run(3, 5)])

    decision = await check_rate_limit("alice", fetch, max_runs=2, window=timedelta(minutes=60), now=NOW)

    assert decision.recent_runs == 1
    assert fetch.calls == [1]


@pytest.mark.asyncio
async def test_current_run_and_cancelled_runs_are_skipped() -> None:
    fetch = _pages(
        [
            _run(7, 1),
            _run(8, 2, status="completed", conclusion="cancelled", duration_seconds=120),
            _run(9, 3, status="cancelled"),
            _run(10, 4),
        ]
    )

    decision = await check_rate_limit("alice", fetch, max_runs=2, current_run_id=7, now=NOW)

    assert decision.allowed is True
    assert decision.recent_runs == 1


@pytest.mark.asyncio
async def test_trivially_short_completed_runs_are_skipped() -> None:
    fetch = _pages(
        [
            _run(1, 1, status="completed", conclusion="skipped", duration_seconds=3),
            _run(2, 2, status="completed", conclusion="success", duration_seconds=300),
        ]
    )

    decision = await check_rate_limit("alice", fetch, max_runs=5, now=NOW)

    assert decision.recent_runs == 1


@pytest.mark.asyncio
async def test_event_filter_counts_only_listed_events() -> None:
    fetch = _pages([_run(1, 1, event="issues"), _run(2, 2, event="push"), _run(3, 3, event="issue_comment")])

    decision = await check_rate_limit(
        "alice", fetch, max_runs=5, event_name="issues", events=["issues", "issue_comment"], now=NOW
    )

    assert decision.recent_runs == 2
    assert decision.breakdown == {"issue_comment": 1, "issues": 1}


@pytest.mark.asyncio
async def test_unlisted_event_is_not_checked() -> None:
    fetch = _pages([_run(1, 1)])

    decision = await check_rate_limit("alice", fetch, event_name="push", events=["issues"], now=NOW)

    assert decision.allowed is True
    assert fetch.calls == []


@pytest.mark.asyncio
async def test_lookup_failure_fails_open(caplog: pytest.LogCaptureFixture) -> None:
    async def fetch(page: int) -> list[dict[str, object]]:
        raise RuntimeError("history unavailable")

    with caplog.at_level(logging.WARNING, logger="safe_output_gate.gatekeeper.rate_limit"):
        decision = await check_rate_limit("alice", fetch, now=NOW)

    assert decision.allowed is True
    assert "history unavailable" in decision.reason
    assert "Allowing workflow to proceed" in caplog.text


@pytest.mark.asyncio
async def test_fetcher_reads_workflow_runs(platform) -> None:
    platform.runs = [_run(1, 1), _run(2, 2, actor="bob")]

    async with GitHubClient("t", transport=platform.transport) as client:
        fetch = workflow_runs_fetcher(client, REPO, "triage.lock.yml", "alice")
        decision = await check_rate_limit("alice", fetch, max_runs=5, now=NOW)

    assert decision.recent_runs == 1
    assert [p for _, p, _ in platform.requests] == [
        "/repos/octo/widgets/actions/workflows/triage.lock.yml/runs",
        "/repos/octo/widgets/actions/workflows/triage.lock.yml/runs",
    ]
