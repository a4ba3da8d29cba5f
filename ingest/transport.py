"""
HTTP GET helper with bounded retries on rate-limit responses and Link-header pagination.
"""

import os
import time
import random
import email.utils
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import requests

from .errors import RemoteSourceError

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
# - PRCHAMP_MAX_RETRIES: int, total attempts per request
# - PRCHAMP_BACKOFF_BASE: float (seconds)
# - PRCHAMP_MAX_BACKOFF: float (seconds)
DEFAULT_MAX_RETRIES = int(os.getenv("PRCHAMP_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("PRCHAMP_BACKOFF_BASE", "0.5"))
DEFAULT_MAX_BACKOFF = float(os.getenv("PRCHAMP_MAX_BACKOFF", "60.0"))
DEFAULT_TIMEOUT = 30

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None


def configure_retry(max_retries: Optional[int] = None, backoff_base: Optional[float] = None):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base
    if max_retries is not None:
        _runtime_max_retries = max(1, int(max_retries))
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)


def _effective_settings():
    attempts = _runtime_max_retries if _runtime_max_retries is not None else max(1, DEFAULT_MAX_RETRIES)
    base = _runtime_backoff_base if _runtime_backoff_base is not None else DEFAULT_BACKOFF_BASE
    return attempts, base


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw_ra)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _rate_limit_exhausted(headers) -> bool:
    remaining = headers.get('X-RateLimit-Remaining')
    try:
        return remaining is not None and int(remaining) <= 0
    except ValueError:
        return False


def _should_retry(resp) -> bool:
    headers = getattr(resp, 'headers', None) or {}
    if resp.status_code in (429, 503):
        return True
    if resp.status_code == 403 and (headers.get('Retry-After') or _rate_limit_exhausted(headers)):
        return True
    return False


def _wait_seconds(resp, backoff: float) -> float:
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    if ra is not None:
        return min(ra, DEFAULT_MAX_BACKOFF)
    reset = headers.get('X-RateLimit-Reset')
    if reset and _rate_limit_exhausted(headers):
        try:
            return min(max(0.0, float(reset) - time.time()), DEFAULT_MAX_BACKOFF)
        except ValueError:
            pass
    return min(backoff + random.uniform(0, backoff), DEFAULT_MAX_BACKOFF)


def get(url: str, headers: Dict[str, str] = None, params: Dict[str, Any] = None) -> requests.Response:
    """GET a URL and return the 200 response.

    Rate-limited responses (429/503, or 403 with an exhausted quota) are retried up to the
    configured number of attempts. Anything else raises RemoteSourceError.
    """
    attempts, backoff = _effective_settings()
    last_error: Optional[RemoteSourceError] = None
    for attempt in range(attempts):
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as ex:
            raise RemoteSourceError(f"request to {url} failed: {ex}", url=url) from ex

        if resp.status_code == 200:
            return resp

        last_error = RemoteSourceError(f"GET {url} returned {resp.status_code}", status_code=resp.status_code, url=url)
        if not _should_retry(resp) or attempt == attempts - 1:
            break
        wait = _wait_seconds(resp, backoff)
        logger.warning("rate limited on %s (status %s); retrying in %.1fs", url, resp.status_code, wait)
        time.sleep(wait)
        backoff = min(backoff * 2, DEFAULT_MAX_BACKOFF)
    raise last_error


def get_json(url: str, headers: Dict[str, str] = None, params: Dict[str, Any] = None) -> Any:
    resp = get(url, headers=headers, params=params)
    try:
        return resp.json()
    except ValueError as ex:
        raise RemoteSourceError(f"invalid JSON from {url}", status_code=resp.status_code, url=url) from ex


def get_paginated(url: str, headers: Dict[str, str] = None, params: Dict[str, Any] = None) -> List[Any]:
    """Follow rel="next" Link headers and return all list items."""
    items: List[Any] = []
    next_url: Optional[str] = url
    next_params = params
    while next_url:
        resp = get(next_url, headers=headers, params=next_params)
        try:
            page = resp.json()
        except ValueError as ex:
            raise RemoteSourceError(f"invalid JSON from {next_url}", status_code=resp.status_code, url=next_url) from ex
        if not isinstance(page, list):
            raise RemoteSourceError(f"expected a list from {next_url}", status_code=resp.status_code, url=next_url)
        items.extend(page)
        next_url = ((getattr(resp, 'links', None) or {}).get('next') or {}).get('url')
        # the next link already carries the query string
        next_params = None
    return items


__all__ = ["configure_retry", "get", "get_json", "get_paginated"]
