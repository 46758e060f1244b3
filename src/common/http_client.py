"""Shared HTTP helpers used by the package index client.

Encapsulates common request/timeout/retry handling so callers avoid
duplicating try/except blocks. Transport failures surface as
``IndexUnavailable``; HTTP status handling is left to the caller.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from errors import IndexUnavailable
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

_session: Optional[requests.Session] = None


def get_session() -> requests.Session:
    """Return the process-wide session (connection pooling across calls)."""
    global _session  # pylint: disable=global-statement
    if _session is None:
        _session = requests.Session()
        _session.headers.update({"User-Agent": Constants.USER_AGENT})
    return _session


def safe_get(url: str, *, context: str, timeout: Optional[float] = None, **kwargs: Any) -> requests.Response:
    """Perform a single GET request with consistent error handling and DEBUG traces."""
    safe_target = safe_url(url)
    effective_timeout = timeout if timeout is not None else Constants.REQUEST_TIMEOUT
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action="GET",
                    target=safe_target,
                    context=context
                )
            )
        try:
            res = get_session().get(url, timeout=effective_timeout, **kwargs)
        except requests.Timeout as exc:
            logger.warning(
                "%s request timed out after %s seconds",
                context,
                effective_timeout,
            )
            raise IndexUnavailable(f"{context}: timed out fetching {safe_target}") from exc
        except requests.RequestException as exc:  # includes ConnectionError
            logger.warning("%s connection error: %s", context, exc)
            raise IndexUnavailable(f"{context}: {exc}") from exc
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response ok",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    outcome="success",
                    status_code=res.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                    context=context
                )
            )
        return res


def robust_get(
    url: str,
    *,
    context: str = "index",
    headers: Optional[Dict[str, str]] = None,
    retries: Optional[int] = None,
    timeout: Optional[float] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], str]:
    """Perform GET with retries and exponential backoff.

    Server errors (5xx) and transport failures are retried; anything else is
    returned to the caller as ``(status_code, headers, text)``.

    Raises:
        IndexUnavailable: When every attempt failed.
    """
    attempts = retries if retries is not None else Constants.HTTP_RETRY_MAX
    safe_target = safe_url(url)
    last_error: Optional[str] = None

    for attempt in range(attempts):
        if attempt:
            time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 1)))
        try:
            response = safe_get(url, context=context, headers=headers, timeout=timeout, **kwargs)
        except IndexUnavailable as exc:
            last_error = str(exc)
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request exception",
                    extra=extra_context(
                        event="http_exception",
                        component="http_client",
                        action="GET",
                        outcome="request_exception",
                        attempt=attempt + 1,
                        target=safe_target
                    )
                )
            continue

        if response.status_code >= 500:
            last_error = f"HTTP {response.status_code}"
            logger.debug(
                "Server error, retrying",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    outcome="server_error",
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    target=safe_target
                )
            )
            continue

        return response.status_code, dict(response.headers), response.text

    raise IndexUnavailable(f"Request to {safe_target} failed after {attempts} attempts: {last_error}")


def get_json(
    url: str,
    *,
    context: str = "index",
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """Perform GET request and parse JSON response with DEBUG traces.

    Args:
        url: Target URL
        context: Source tag for logs
        headers: Optional request headers
        **kwargs: Additional ``robust_get`` parameters

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none)
    """
    request_headers = {"Accept": "application/json"}
    if headers:
        request_headers.update(headers)
    status_code, response_headers, text = robust_get(url, context=context, headers=request_headers, **kwargs)

    if status_code == 200 and text:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            if is_debug_enabled(logger):
                logger.debug(
                    "JSON decode error",
                    extra=extra_context(
                        event="parse",
                        component="http_client",
                        action="get_json",
                        outcome="json_decode_error",
                        status_code=status_code,
                        target=safe_url(url)
                    )
                )
            return status_code, response_headers, None
        return status_code, response_headers, parsed

    return status_code, response_headers, None
