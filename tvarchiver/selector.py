"""
selector — Pick one video among several search hits or captured streams.

Quality and size filters are best-effort narrowings: each step keeps the
previous set when it would leave nothing, so a non-empty input always
yields an answer.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence


class Quality(str, Enum):
    HIGHEST = "highest"
    LOWEST = "lowest"
    HD_ONLY = "hd-only"
    SD_ONLY = "sd-only"


@dataclass(frozen=True)
class QualityPolicy:
    quality: Quality = Quality.HIGHEST
    max_size_mb: float = 0

    @classmethod
    def from_options(cls, quality: str = "highest", max_size_mb: float = 0) -> "QualityPolicy":
        return cls(quality=Quality(quality), max_size_mb=max_size_mb or 0)


def format_size_mb(size_mb: float) -> str:
    if size_mb >= 1024:
        return f"{size_mb / 1024:.2f} GB"
    return f"{size_mb:.1f} MB"


@dataclass
class SearchResult:
    """A catalog hit; never persisted as-is."""
    url: str
    id: str
    title: str
    slug: str = ""
    is_hd: bool = False
    size_mb: float = 0
    duration: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def size_formatted(self) -> str:
        return format_size_mb(self.size_mb)


def select_best(candidates: Sequence[SearchResult], policy: QualityPolicy | None = None) -> SearchResult | None:
    policy = policy or QualityPolicy()
    if not candidates:
        return None

    # 1. unknown size (0 MB) usually means a broken upload
    working = [c for c in candidates if c.size_mb > 0] or list(candidates)

    # 2. size cap; nothing under the cap -> keep all and sort smallest first below
    capped = policy.max_size_mb > 0
    if capped:
        working = [c for c in working if 0 < c.size_mb <= policy.max_size_mb] or working

    # 3. HD/SD preference
    if policy.quality == Quality.HD_ONLY:
        working = [c for c in working if c.is_hd] or working
    elif policy.quality == Quality.SD_ONLY:
        working = [c for c in working if not c.is_hd] or working

    # 4. ordering (sorted() is stable, so catalog rank breaks ties)
    if policy.quality == Quality.LOWEST or capped:
        working = sorted(working, key=lambda c: (c.size_mb <= 0, c.size_mb))
    else:
        working = sorted(working, key=lambda c: (not c.is_hd, -c.size_mb))

    return working[0]


def pick_captured_stream(streams: Sequence[tuple[str, int]], quality: str = "highest") -> str | None:
    """
    Choose among (url, content_length) pairs sniffed from a player page.
    highest -> largest, lowest -> smallest known size, otherwise first seen.
    """
    if not streams:
        return None
    if quality == Quality.HIGHEST.value:
        return max(streams, key=lambda s: s[1])[0]
    if quality == Quality.LOWEST.value:
        known = [s for s in streams if s[1] > 0]
        return min(known, key=lambda s: s[1])[0] if known else streams[0][0]
    return streams[0][0]
