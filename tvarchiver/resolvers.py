"""
resolvers — Map an episode to candidate video pages on the hosting sites.

Two strategies, one contract (``resolve(query) -> list[SearchResult]``):

- DirectResolver: listing-site episode page -> nahnoji.cz embed id -> nahnoji
  video page, confirmed by a probe. Zero or one result.
- SearchResolver: free-text search on prehrajto.cz; every hit carries size,
  HD flag and duration parsed from the markup that follows its link.

A network failure raises out of ``resolve`` for that one query; callers
decide whether to keep going.
"""
from __future__ import annotations
import asyncio
import html as htmllib
import re
from dataclasses import dataclass
from urllib.parse import quote

from bs4 import BeautifulSoup
import structlog

from .errors import FetchError
from .extractor import EpisodeStub, extract_embed_id
from .selector import QualityPolicy, SearchResult, select_best

log = structlog.get_logger()

PREHRAJTO_BASE = "https://prehrajto.cz"
NAHNOJI_BASE = "http://nahnoji.cz"

# href="/video-slug/hexid"
_PREHRAJTO_LINK_RE = re.compile(r'href="(/([a-z0-9-]+)/([a-f0-9]{10,}))"')
# Each hit is followed by ~20 preview thumbnails before its tag block
METADATA_WINDOW = 6000
_SIZE_RE = re.compile(r"video__tag--size[^>]*>[\s\S]*?([\d.]+)\s*(MB|GB)", re.IGNORECASE)
_DURATION_RE = re.compile(r"video__tag--time[^>]*>([\d:]+)<")
_TITLE_ATTR_RE = re.compile(r'title="([^"]+)"')
_WORD_START_RE = re.compile(r"\b\w")

_SEASON_EP_PATTERNS = (
    re.compile(r"(\d+)\s*x\s*(\d+)", re.IGNORECASE),
    re.compile(r"s(\d+)\s*e(\d+)", re.IGNORECASE),
)


def _title_from_slug(slug: str) -> str:
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), slug.replace("-", " "))


def _parse_size_mb(window: str) -> float:
    m = _SIZE_RE.search(window)
    if not m:
        return 0
    try:
        size = float(m.group(1))
    except ValueError:
        return 0
    if m.group(2).upper() == "GB":
        size *= 1024
    return size


def parse_search_results(html: str, base_url: str = PREHRAJTO_BASE) -> list[SearchResult]:
    """Parse a prehrajto.cz search page into hits, first occurrence of each id."""
    results: list[SearchResult] = []
    seen_ids: set[str] = set()
    for m in _PREHRAJTO_LINK_RE.finditer(html or ""):
        full_path, slug, vid = m.groups()
        if vid in seen_ids:
            continue
        seen_ids.add(vid)

        window = html[m.start():m.start() + METADATA_WINDOW]
        is_hd = ('format__text">HD<' in window or ">HD<" in window
                 or "1080" in slug or "720p" in slug)
        dm = _DURATION_RE.search(window)
        tm = _TITLE_ATTR_RE.search(window)
        title = htmllib.unescape(tm.group(1)) if tm else _title_from_slug(slug)

        results.append(SearchResult(
            url=f"{base_url}{full_path}",
            id=vid,
            slug=slug,
            title=title,
            is_hd=is_hd,
            size_mb=_parse_size_mb(window),
            duration=dm.group(1) if dm else "",
        ))
    return results


class SearchResolver:
    """prehrajto.cz catalog search."""

    def __init__(self, fetcher, base_url: str = PREHRAJTO_BASE):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")

    def search_url(self, query: str) -> str:
        return f"{self.base_url}/hledej/{quote(query, safe='')}"

    def resolve(self, query: str) -> list[SearchResult]:
        html = self.fetcher.fetch_page(self.search_url(query))
        results = parse_search_results(html, self.base_url)
        log.info("search_done", query=query, results=len(results))
        return results

    def search_best(self, query: str, policy: QualityPolicy | None = None) -> SearchResult | None:
        return select_best(self.resolve(query), policy)


@dataclass
class DirectQuery:
    base_url: str
    stub: EpisodeStub

    @property
    def episode_page(self) -> str:
        return f"{self.base_url.rstrip('/')}/index.php?video={self.stub.source_ref}"


def nahnoji_video_url(video_id: str, base_url: str = NAHNOJI_BASE) -> str:
    return f"{base_url}/video?id={video_id}"


def _page_heading(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    h1 = soup.find("h1")
    return h1.get_text(" ", strip=True) if h1 else ""


def parse_season_episode(title: str) -> tuple[int, int]:
    """(season, episode) from 'NxM' or 'SxxEyy' in a title; (0, 0) if absent."""
    for rx in _SEASON_EP_PATTERNS:
        m = rx.search(title or "")
        if m:
            return int(m.group(1)), int(m.group(2))
    return 0, 0


class DirectResolver:
    """Listing-site episode -> nahnoji.cz video page."""

    def __init__(self, fetcher, probe: bool = True, nahnoji_base: str = NAHNOJI_BASE):
        self.fetcher = fetcher
        self.probe = probe
        self.nahnoji_base = nahnoji_base.rstrip("/")

    def probe_video(self, video_id: str) -> str | None:
        """Heading of the nahnoji video page, '' if it has none, None if it is gone."""
        url = nahnoji_video_url(video_id, self.nahnoji_base)
        try:
            html = self.fetcher.fetch_page(url)
        except FetchError as e:
            if e.status is not None:
                log.info("video_probe_missing", video_id=video_id, status=e.status)
                return None
            raise
        if "<video" not in html.lower() and "<h1" not in html.lower():
            log.info("video_probe_empty", video_id=video_id)
            return None
        return _page_heading(html)

    def resolve(self, query: DirectQuery) -> list[SearchResult]:
        html = self.fetcher.fetch_page(query.episode_page)
        video_id = extract_embed_id(html)
        if not video_id:
            log.info("embed_not_found", page=query.episode_page)
            return []

        title = query.stub.title
        if self.probe:
            heading = self.probe_video(video_id)
            if heading is None:
                return []
            title = title or heading

        return [SearchResult(
            url=nahnoji_video_url(video_id, self.nahnoji_base),
            id=video_id,
            title=title,
            extra={"originalUrl": query.episode_page},
        )]

    async def scan_id_range(self, start: int, end: int, title_filter: str,
                            batch_size: int = 10) -> list[SearchResult]:
        """
        Probe nahnoji ids start..end (inclusive) in concurrent batches and keep
        pages whose heading contains ``title_filter`` (case-insensitive).
        Missing ids and fetch errors are skipped.
        """
        needle = title_filter.lower()
        found: list[SearchResult] = []

        async def _one(video_id: int) -> SearchResult | None:
            try:
                heading = await asyncio.to_thread(self.probe_video, str(video_id))
            except FetchError as e:
                log.debug("scan_id_error", video_id=video_id, error=str(e))
                return None
            if not heading or needle not in heading.lower():
                return None
            season, episode = parse_season_episode(heading)
            return SearchResult(
                url=nahnoji_video_url(str(video_id), self.nahnoji_base),
                id=str(video_id),
                title=heading,
                extra={"season": season, "episode": episode},
            )

        for batch_start in range(start, end + 1, batch_size):
            batch = range(batch_start, min(batch_start + batch_size, end + 1))
            for hit in await asyncio.gather(*(_one(i) for i in batch)):
                if hit:
                    found.append(hit)
                    log.info("scan_id_match", video_id=hit.id, title=hit.title)
        log.info("scan_ids_done", start=start, end=end, found=len(found))
        return found
