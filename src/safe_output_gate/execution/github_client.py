"""Async REST client for the platform API."""

from __future__ import annotations

import logging
import time
from email.utils import parsedate_to_datetime

import httpx

from safe_output_gate import __version__
from safe_output_gate.errors import PlatformApiError
from safe_output_gate.utils.masking import mask_secrets

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"
_MAX_ERROR_MESSAGE = 500


class GitHubClient:
    """Thin wrapper over ``httpx.AsyncClient`` that classifies failures.

    Every failure surfaces as ``PlatformApiError``; ``transient`` is set for
    timeouts, transport errors, 5xx responses and rate limiting.
    """

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": _API_VERSION,
            "User-Agent": f"safe-output-gate/{__version__}",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        payload: dict[str, object] | None = None,
    ) -> object:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise PlatformApiError(
                f"{method} {path} timed out: {type(exc).__name__}", transient=True
            ) from exc
        except httpx.TransportError as exc:
            raise PlatformApiError(
                self._mask(f"{method} {path} failed: {exc}"), transient=True
            ) from exc

        if response.status_code >= 400:
            raise self._classify(method, path, response)

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PlatformApiError(
                f"{method} {path} returned a non-JSON response", status=response.status_code
            ) from exc

    def _classify(self, method: str, path: str, response: httpx.Response) -> PlatformApiError:
        status = response.status_code
        detail = _error_detail(response)
        message = self._mask(f"{method} {path} failed with HTTP {status}: {detail}")

        retry_after = _retry_after_seconds(response)
        rate_limited = status == 429 or (
            status == 403
            and (
                response.headers.get("x-ratelimit-remaining") == "0"
                or "secondary rate limit" in detail.lower()
            )
        )
        transient = status >= 500 or rate_limited
        return PlatformApiError(
            message,
            status=status,
            transient=transient,
            retry_after=retry_after if transient else None,
        )

    def _mask(self, text: str) -> str:
        return mask_secrets(text, extra=(self._token,) if self._token else ())


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:_MAX_ERROR_MESSAGE] or response.reason_phrase
    if isinstance(body, dict):
        message = str(body.get("message") or response.reason_phrase)
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            details = [
                str(e.get("message") or e.get("code")) if isinstance(e, dict) else str(e)
                for e in errors[:3]
            ]
            message = f"{message} ({'; '.join(details)})"
        return message[:_MAX_ERROR_MESSAGE]
    return response.reason_phrase


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value:
        try:
            return max(float(value), 0.0)
        except ValueError:
            try:
                return max(parsedate_to_datetime(value).timestamp() - time.time(), 0.0)
            except (TypeError, ValueError):
                return None
    reset = response.headers.get("x-ratelimit-reset")
    if reset and response.headers.get("x-ratelimit-remaining") == "0":
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            return None
    return None
