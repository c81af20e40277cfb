"""Welcome line resolution.

The welcome line can come from a URL. The fetch is a single GET bounded by
a timeout; every failure falls back to the configured default text.
"""
from __future__ import annotations

import logging
from typing import Callable

import requests

from .errors import FetchFailed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.0
DEFAULT_WELCOME = "Welcome!"

Fetcher = Callable[[str, float], str]


def http_fetch(url: str, timeout: float) -> str:
    """GET ``url`` once and return the trimmed body.

    Raises:
        FetchFailed: On timeout, connection error, non-2xx status or an
            empty body
    """
    try:
        response = requests.get(url, timeout=timeout, headers={"Accept": "text/plain"})
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchFailed(f"GET {url} failed: {exc}") from exc
    body = response.text.strip()
    if not body:
        raise FetchFailed(f"GET {url} returned an empty body")
    return body


def resolve_welcome_text(
    url: str | None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    default: str = DEFAULT_WELCOME,
    fetch: Fetcher = http_fetch,
) -> str:
    """Return the remote welcome text, or ``default`` on any failure."""
    if not url:
        return default
    try:
        text = fetch(url, timeout).strip()
    except FetchFailed as exc:
        logger.debug("Using default welcome text: %s", exc)
        return default
    if not text:
        logger.debug("Using default welcome text: %s returned nothing", url)
        return default
    return text
