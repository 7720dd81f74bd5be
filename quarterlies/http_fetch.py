import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from .errors import NetworkFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    timeout: int = 30

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)


def call_with_retry(
    fn: Callable[[], T],
    source: str,
    policy: RetryPolicy,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> T:
    """Run ``fn`` up to ``policy.max_attempts`` times, retrying only retryable NetworkFailures."""
    sleep = sleep_fn or time.sleep
    last_err: Optional[NetworkFailure] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except NetworkFailure as exc:
            if not exc.retryable:
                raise
            last_err = exc
        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                "[%s] attempt %d/%d failed (%s), retrying in %.1fs",
                source, attempt, policy.max_attempts, last_err, delay,
            )
            sleep(delay)
    raise NetworkFailure(
        f"All {policy.max_attempts} attempts failed: {last_err.message if last_err else 'unknown error'}",
        source=source,
    )


def get_once(
    url: str,
    source: str,
    timeout: int,
    get_fn: Optional[Callable[..., Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    get = get_fn or requests.get
    try:
        resp = get(url, headers=headers or BROWSER_HEADERS, params=params, timeout=timeout)
        resp.raise_for_status()
        return resp
    except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
        raise NetworkFailure(f"{type(exc).__name__} for {url}: {exc}", source=source)
    except requests.exceptions.HTTPError as exc:
        status = getattr(exc.response, "status_code", None)
        err = NetworkFailure(f"HTTP {status} for {url}", source=source)
        err.retryable = status in RETRYABLE_STATUS
        raise err
    except requests.exceptions.RequestException as exc:
        err = NetworkFailure(f"Request to {url} failed: {exc}", source=source)
        err.retryable = False
        raise err


def get_with_retry(
    url: str,
    source: str,
    policy: Optional[RetryPolicy] = None,
    get_fn: Optional[Callable[..., Any]] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    policy = policy or RetryPolicy()
    return call_with_retry(
        lambda: get_once(url, source, policy.timeout, get_fn=get_fn, headers=headers, params=params),
        source,
        policy,
        sleep_fn=sleep_fn,
    )
