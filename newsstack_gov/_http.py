"""Shared HTTP helpers for the live agency adapter.

Centralises client construction, URL/exception sanitisation and the
retrying GET so that query tokens never reach the logs and every request
is bounded by the configured timeout.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

from .errors import RetryPolicy

logger = logging.getLogger(__name__)

# Regex to strip keys/tokens/session ids from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|api_key|token|key|jsessionid)=[^&\s;]+", re.IGNORECASE)

# Status codes eligible for automatic retry with backoff.
RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.8,en-US;q=0.5,en;q=0.3",
}


class RetryableStatusError(httpx.HTTPStatusError):
    """429/5xx response; raised so ``RetryPolicy`` can back off and try again."""


def sanitize_url(url: str) -> str:
    """Remove token-like query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """Strip tokens from exception text for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", str(exc))


def make_client(timeout_s: float, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    return httpx.Client(
        timeout=timeout_s,
        follow_redirects=True,
        headers=DEFAULT_HEADERS,
        transport=transport,
    )


_RETRY_ON = (RetryableStatusError, httpx.ConnectError, httpx.ReadTimeout)


def _log_retry(attempt: int, exc: Exception) -> None:
    logger.warning("HTTP attempt %d failed (%s), retrying", attempt, sanitize_exc(exc))


def get_with_retry(
    client: httpx.Client,
    url: str,
    params: dict[str, Any] | None = None,
    attempts: int = 3,
    base_delay: float = 1.0,
    deadline: float | None = None,
) -> httpx.Response:
    """GET *url*, retrying 429/5xx and transient network errors.

    Non-retryable HTTP errors (4xx) raise ``httpx.HTTPStatusError``
    immediately with a sanitised message.  With a monotonic *deadline*,
    each request's timeout is capped at the time left and nothing is
    sent once it has passed (``httpx.TimeoutException``).
    """

    def _get() -> httpx.Response:
        if deadline is None:
            r = client.get(url, params=params)
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise httpx.TimeoutException(f"fetch deadline passed before GET {sanitize_url(url)}")
            cap = client.timeout.read
            r = client.get(url, params=params, timeout=min(remaining, cap) if cap else remaining)
        if r.status_code in RETRYABLE_STATUS:
            raise RetryableStatusError(
                f"HTTP {r.status_code} from {sanitize_url(str(r.url))}",
                request=r.request,
                response=r,
            )
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise httpx.HTTPStatusError(
                f"HTTP {r.status_code} from {sanitize_url(str(r.url))}",
                request=exc.request,
                response=exc.response,
            ) from None
        return r

    policy = RetryPolicy(attempts=max(1, attempts), base_delay=base_delay)
    return policy.call(_get, retry_on=_RETRY_ON, on_retry=_log_retry, deadline=deadline)
