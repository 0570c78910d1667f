"""
Usage refresher.

Fetches fresh 5-hour / 7-day utilization from the accounting service when
the cache is stale and writes it back. Fail-open: any failure leaves the
existing cache untouched.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from ..config.loader import GateSettings
from ..storage.cache import UsageCacheStore
from ..storage.models import UsageSnapshot
from .credentials import resolve_token
from .errors import CacheUnavailable, RemoteFetchFailed

logger = logging.getLogger(__name__)

USAGE_ENDPOINT = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA_HEADER = "oauth-2025-04-20"
FETCH_TIMEOUT = 5.0


def fetch_usage(
    token: str,
    client: Optional[httpx.Client] = None,
    now: Optional[float] = None,
) -> UsageSnapshot:
    """Query the usage endpoint and build a fresh snapshot.

    Args:
        token: OAuth bearer token
        client: Optional HTTP client (a short-lived one is created otherwise)
        now: Fetch timestamp override

    Returns:
        UsageSnapshot stamped with the fetch time

    Raises:
        RemoteFetchFailed: On transport errors, timeouts, non-2xx status,
            or a body with neither window
    """
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "anthropic-beta": OAUTH_BETA_HEADER,
    }

    try:
        if client is not None:
            response = client.get(USAGE_ENDPOINT, headers=headers, timeout=FETCH_TIMEOUT)
        else:
            with httpx.Client(timeout=FETCH_TIMEOUT) as new_client:
                response = new_client.get(USAGE_ENDPOINT, headers=headers)
        response.raise_for_status()
        data: Any = response.json()
    except httpx.TimeoutException as e:
        raise RemoteFetchFailed(f"usage request timed out: {e}")
    except httpx.HTTPStatusError as e:
        raise RemoteFetchFailed(f"HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        raise RemoteFetchFailed(f"usage request failed: {type(e).__name__}: {e}")
    except (ValueError, RecursionError) as e:
        raise RemoteFetchFailed(f"usage response is not JSON: {type(e).__name__}: {e}")

    if not isinstance(data, dict):
        raise RemoteFetchFailed("usage response is not an object")
    if data.get("five_hour") is None and data.get("seven_day") is None:
        raise RemoteFetchFailed("usage response has neither five_hour nor seven_day")

    fetched_at = int(time.time() if now is None else now)
    document: Dict[str, Any] = {
        "five_hour": data.get("five_hour"),
        "seven_day": data.get("seven_day"),
        "cached_at": fetched_at,
    }
    try:
        return UsageSnapshot.from_dict(document)
    except CacheUnavailable as e:
        raise RemoteFetchFailed(f"malformed usage window: {e}")


def refresh_if_stale(
    settings: GateSettings,
    store: Optional[UsageCacheStore] = None,
    token_resolver: Callable[[], Optional[str]] = resolve_token,
    client: Optional[httpx.Client] = None,
    now: Optional[float] = None,
    force: bool = False,
) -> Optional[UsageSnapshot]:
    """Return a usable snapshot, refreshing it first if it is stale.

    At most one remote request is issued per TTL window per machine: a fresh
    cache short-circuits before any credential lookup or network call.

    Args:
        settings: Gate settings (cache location and TTL)
        store: Cache store override
        token_resolver: Credential lookup, called only when a fetch is needed
        client: Optional HTTP client for the usage query
        now: Current time override
        force: Refresh even if the cache is fresh

    Returns:
        The fresh snapshot, or the existing (possibly stale) one, or None
    """
    store = store or UsageCacheStore(settings.cache_file)
    current_time = time.time() if now is None else now
    existing = store.read()

    if not force and existing is not None and not existing.is_stale(settings.cache_ttl, now=current_time):
        return existing

    token = token_resolver()
    if not token:
        logger.debug("No access token, keeping existing usage cache")
        return existing

    try:
        snapshot = fetch_usage(token, client=client, now=current_time)
    except RemoteFetchFailed as e:
        logger.warning("Usage refresh failed, keeping existing cache: %s", e)
        return existing

    store.write(snapshot)
    return snapshot
