"""Per-actor sliding-window limit on how often a workflow may be triggered.

Runs before the safe-output pipeline. History lookups that fail never block
a run: the check fails open and logs the error.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from safe_output_gate.execution.github_client import GitHubClient

logger = logging.getLogger(__name__)

RunFetcher = Callable[[int], Awaitable[list[Mapping[str, object]]]]

DEFAULT_MAX_RUNS = 5
DEFAULT_WINDOW = timedelta(minutes=60)
DEFAULT_MIN_DURATION = timedelta(seconds=10)
MAX_PAGES = 10


@dataclass
class RateLimitDecision:
    allowed: bool
    recent_runs: int
    reason: str
    breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "recent_runs": self.recent_runs,
            "reason": self.reason,
            "breakdown": dict(self.breakdown),
        }


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _actor_login(run: Mapping[str, object]) -> str | None:
    actor = run.get("actor")
    if isinstance(actor, Mapping):
        login = actor.get("login")
        return login if isinstance(login, str) else None
    return None


def _is_trivially_short(run: Mapping[str, object], min_duration: timedelta) -> bool:
    if run.get("status") != "completed":
        return False
    started = _parse_timestamp(run.get("run_started_at") or run.get("created_at"))
    finished = _parse_timestamp(run.get("updated_at"))
    if started is None or finished is None:
        return False
    return finished - started < min_duration


async def check_rate_limit(
    actor: str,
    fetch_runs: RunFetcher,
    *,
    max_runs: int = DEFAULT_MAX_RUNS,
    window: timedelta = DEFAULT_WINDOW,
    current_run_id: int | None = None,
    event_name: str | None = None,
    events: Iterable[str] | None = None,
    min_duration: timedelta = DEFAULT_MIN_DURATION,
    now: datetime | None = None,
) -> RateLimitDecision:
    """Decide whether ``actor`` may start another run.

    ``fetch_runs(page)`` returns one page (1-based) of recent workflow runs,
    newest first, in the platform's run shape. Counting stops as soon as the
    limit is reached or a page reaches past the window.
    """
    event_filter = {e.strip() for e in events or () if e.strip()}
    if event_filter and event_name not in event_filter:
        logger.info("Event '%s' is not subject to rate limiting", event_name)
        return RateLimitDecision(True, 0, f"event '{event_name}' is not rate limited")

    logger.info(
        "Checking rate limit for '%s': max=%d runs per %d minutes",
        actor,
        max_runs,
        int(window.total_seconds() // 60),
    )
    cutoff = (now or datetime.now(timezone.utc)) - window
    breakdown: Counter[str] = Counter()
    count = 0

    try:
        for page in range(1, MAX_PAGES + 1):
            runs = await fetch_runs(page)
            if not runs:
                break
            reached_cutoff = False
            for run in runs:
                created = _parse_timestamp(run.get("created_at"))
                if created is None or created < cutoff:
                    reached_cutoff = True
                    continue
                run_id = run.get("id")
                if current_run_id is not None and run_id == current_run_id:
                    continue
                if _actor_login(run) != actor:
                    continue
                event = str(run.get("event") or "unknown")
                if event_filter and event not in event_filter:
                    continue
                if run.get("conclusion") == "cancelled" or run.get("status") == "cancelled":
                    logger.info("Skipping run %s - cancelled", run_id)
                    continue
                if _is_trivially_short(run, min_duration):
                    logger.info("Skipping run %s - finished in under %s", run_id, min_duration)
                    continue
                count += 1
                breakdown[event] += 1
                if count >= max_runs:
                    break
            if count >= max_runs or reached_cutoff:
                break
    except Exception as exc:
        logger.error("Rate limit check failed: %s", exc)
        logger.warning("Allowing workflow to proceed")
        return RateLimitDecision(True, count, f"history lookup failed: {exc}")

    logger.info(
        "Total recent runs in last %d minutes: %d", int(window.total_seconds() // 60), count
    )
    if breakdown:
        logger.info(
            "Breakdown by event type: %s",
            ", ".join(f"{event}={n}" for event, n in sorted(breakdown.items())),
        )
    if count >= max_runs:
        return RateLimitDecision(
            False,
            count,
            f"'{actor}' started {count} run(s) within the window (max {max_runs})",
            dict(breakdown),
        )
    return RateLimitDecision(True, count, "Rate limit check passed", dict(breakdown))


def workflow_runs_fetcher(
    client: GitHubClient,
    repository: str,
    workflow: str,
    actor: str,
    per_page: int = 100,
) -> RunFetcher:
    """Build a ``fetch_runs`` callable backed by the workflow-runs listing endpoint."""

    async def fetch(page: int) -> list[Mapping[str, object]]:
        path = (
            f"/repos/{repository}/actions/workflows/{quote(workflow, safe='')}/runs"
            f"?actor={quote(actor, safe='')}&per_page={per_page}&page={page}"
        )
        data = await client.request("GET", path)
        if not isinstance(data, Mapping):
            return []
        runs = data.get("workflow_runs")
        return list(runs) if isinstance(runs, list) else []

    return fetch
