"""Exception hierarchy for tvarchiver."""

from __future__ import annotations


class TvArchiverError(Exception):
    """Base exception for all tvarchiver errors."""


# ── Configuration ──────────────────────────────────────────────────────
class ConfigError(TvArchiverError):
    """Raised when the config file or an env override is invalid."""


# ── Network / Scraping ─────────────────────────────────────────────────
class NetworkError(TvArchiverError):
    """Raised on HTTP/DNS failures."""


class FetchError(NetworkError):
    """A single page fetch failed (non-2xx or connection error)."""

    def __init__(self, url: str, status: int | None = None, reason: str = ""):
        self.url = url
        self.status = status
        if status is not None:
            msg = f"HTTP {status} for {url}"
        else:
            msg = f"{reason or 'request failed'} for {url}"
        super().__init__(msg)


class ExtractionError(TvArchiverError):
    """Raised when HTML parsing finds nothing usable."""


class VideoNotFoundError(ExtractionError):
    """Raised when no playable video URL can be found on a page."""


# ── Download ───────────────────────────────────────────────────────────
class TransferError(TvArchiverError):
    """Raised when the byte transfer step fails."""


# ── Queue documents ────────────────────────────────────────────────────
class QueueError(TvArchiverError):
    """Base for queue document problems."""


class QueueFormatError(QueueError):
    """Raised when a queue document cannot be parsed."""


class ShowNotFoundError(QueueError):
    """Raised when no queue document exists for a show name."""


class QueueLockedError(QueueError):
    """Raised when another run holds the queue document lock."""
