"""
fetcher — Throttled HTML page fetcher shared by crawlers and resolvers.
"""
from __future__ import annotations
import requests
import structlog

from .config import DEFAULT_USER_AGENT
from .errors import FetchError
from .ratelimit import RequestThrottle

log = structlog.get_logger()


class PageFetcher:
    """GET pages with a browser User-Agent and a fixed delay between requests."""

    def __init__(
        self,
        delay: float = 0.8,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: int = 30,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.throttle = RequestThrottle(delay=delay)
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        })

    def _get(self, url: str, **kwargs) -> requests.Response:
        self.throttle.wait()
        try:
            r = self.session.get(url, timeout=self.timeout, allow_redirects=True, **kwargs)
        except requests.RequestException as e:
            log.warning("fetch_failed", url=url, error=str(e))
            raise FetchError(url, reason=type(e).__name__) from e
        if not r.ok:
            log.warning("fetch_http_error", url=url, status=r.status_code)
            raise FetchError(url, status=r.status_code)
        return r

    def fetch_page(self, url: str) -> str:
        """Return the page body as text, raising FetchError on failure."""
        r = self._get(url)
        # Respect declared encoding; fallback to apparent_encoding -> utf-8
        if not r.encoding:
            r.encoding = r.apparent_encoding or "utf-8"
        log.debug("page_fetched", url=url, size=len(r.text))
        return r.text

    def close(self):
        self.session.close()
