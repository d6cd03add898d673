"""
crawler — Build queue documents from listing sites (nikee/alyss/sifee/enkii).

Three ways in:
- scan_show: listing site -> nahnoji.cz embed ids (direct strategy)
- crawl_with_search: listing site -> prehrajto.cz search per episode
- queue_from_id_scan: nahnoji ids found by DirectResolver.scan_id_range

Per-page and per-episode failures are logged and recorded on the result;
they never stop the loop.
"""
from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
import re

import structlog

from .errors import NetworkError
from .extractor import (
    EpisodeExtractor, EpisodeStub, discover_seasons, extract_episodes, show_slug_from_url,
)
from .queue_store import EpisodeRecord, EpisodeStatus, SeasonRecord, ShowQueue
from .resolvers import DirectQuery, DirectResolver, SearchResolver
from .selector import QualityPolicy, SearchResult
from .library import episode_code

log = structlog.get_logger()


@dataclass
class ResolvedEpisode:
    stub: EpisodeStub
    result: SearchResult


@dataclass
class CrawlResult:
    show_slug: str
    base_url: str
    stubs: list[EpisodeStub] = field(default_factory=list)
    resolved: list[ResolvedEpisode] = field(default_factory=list)
    missing: list[EpisodeStub] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    queue: ShowQueue | None = None

    @property
    def found(self) -> int:
        return len(self.resolved)

    @property
    def hd_count(self) -> int:
        return sum(1 for r in self.resolved if r.result.is_hd)


def normalize_base_url(raw: str) -> str:
    url = raw.strip()
    if not url.startswith("http"):
        url = f"http://{url}"
    return url.rstrip("/")


def episodes_page(base_url: str) -> str:
    return f"{base_url}/index.php?stranka=epizody"


def season_page(base_url: str, season: int) -> str:
    return f"{base_url}/index.php?stranka=serie&cislo={season}"


def collect_stubs(fetcher, base_url: str, result: CrawlResult,
                  extractor: EpisodeExtractor | None = None) -> list[EpisodeStub]:
    """
    All episode stubs of a show. Shows without season links are read straight
    from the episodes page as season 1. A failing season page is skipped.
    """
    overview = fetcher.fetch_page(episodes_page(base_url))
    seasons = discover_seasons(overview)
    log.info("seasons_discovered", base_url=base_url, seasons=seasons)

    if not seasons:
        stubs = extract_episodes(overview, 1, extractor)
        result.stubs.extend(stubs)
        return stubs

    stubs: list[EpisodeStub] = []
    for season in seasons:
        url = season_page(base_url, season)
        try:
            html = fetcher.fetch_page(url)
        except NetworkError as e:
            log.error("season_page_failed", url=url, error=str(e))
            result.errors.append(str(e))
            continue
        found = extract_episodes(html, season, extractor)
        log.info("season_episodes", season=season, count=len(found))
        stubs.extend(found)
    result.stubs.extend(stubs)
    return stubs


def _display_name(text: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in text.replace("-", " ").split())


def build_queue_document(
    show_name: str,
    resolved: list[ResolvedEpisode],
    *,
    source: str,
    original_source: str = "",
    description: str = "",
    target_folder: str = "",
    show_name_cz: str = "",
    year: str = "",
    with_quality: bool = False,
) -> ShowQueue:
    """Group resolved episodes by season (ascending); every episode starts pending."""
    by_season: dict[int, list[ResolvedEpisode]] = defaultdict(list)
    for r in resolved:
        by_season[r.stub.season].append(r)

    queue = ShowQueue(
        show_name=show_name,
        show_name_cz=show_name_cz or show_name,
        year=year,
        description=description,
        target_folder=target_folder or show_name.replace(" ", "_"),
        source=source,
        original_source=original_source,
    )
    for season in sorted(by_season):
        records = []
        taken: dict[int, str] = {}
        for r in by_season[season]:
            # one entry per number; two would share a file on disk
            if r.stub.episode in taken:
                log.warning("duplicate_episode_number", show=show_name, season=season,
                            episode=r.stub.episode, kept=taken[r.stub.episode], dropped=r.result.url)
                continue
            taken[r.stub.episode] = r.result.url
            extra: dict = {}
            if r.result.extra.get("originalUrl"):
                extra["originalUrl"] = r.result.extra["originalUrl"]
            if with_quality:
                extra.update({
                    "isHD": r.result.is_hd,
                    "sizeMB": r.result.size_mb,
                    "sizeFormatted": r.result.size_formatted if r.result.size_mb else "",
                    "duration": r.result.duration,
                })
            extra["filename"] = f"{episode_code(season, r.stub.episode)}.mp4"
            records.append(EpisodeRecord(
                episode=r.stub.episode,
                title=r.stub.title,
                url=r.result.url,
                video_id=r.result.id,
                extra=extra,
            ))
        queue.seasons.append(SeasonRecord(season=season, title=f"Season {season}", episodes=records))
    return queue


def scan_show(fetcher, base_url: str, resolver: DirectResolver | None = None,
              extractor: EpisodeExtractor | None = None) -> CrawlResult:
    """Listing site -> nahnoji.cz ids. Episodes without an id are left out."""
    base_url = normalize_base_url(base_url)
    slug = show_slug_from_url(base_url)
    resolver = resolver or DirectResolver(fetcher)
    result = CrawlResult(show_slug=slug, base_url=base_url)
    log.info("scan_start", base_url=base_url, show=slug)

    for stub in collect_stubs(fetcher, base_url, result, extractor):
        try:
            hits = resolver.resolve(DirectQuery(base_url=base_url, stub=stub))
        except NetworkError as e:
            log.error("resolve_failed", ref=stub.source_ref, error=str(e))
            result.errors.append(str(e))
            result.missing.append(stub)
            continue
        if hits:
            result.resolved.append(ResolvedEpisode(stub, hits[0]))
        else:
            result.missing.append(stub)

    if result.resolved:
        name = slug[:1].upper() + slug[1:]
        result.queue = build_queue_document(
            name, result.resolved,
            source="nahnoji.cz",
            original_source=base_url,
            description=f"Scraped from {base_url}",
            target_folder=slug.replace("-", "_"),
        )
    log.info("scan_done", show=slug, stubs=len(result.stubs), found=result.found)
    return result


def crawl_with_search(fetcher, base_url: str, search_term: str | None = None,
                      policy: QualityPolicy | None = None,
                      resolver: SearchResolver | None = None,
                      extractor: EpisodeExtractor | None = None) -> CrawlResult:
    """Listing site episode list, videos looked up on prehrajto.cz."""
    base_url = normalize_base_url(base_url)
    slug = show_slug_from_url(base_url)
    search_term = search_term or slug.replace("-", " ")
    resolver = resolver or SearchResolver(fetcher)
    result = CrawlResult(show_slug=slug, base_url=base_url)
    log.info("crawl_start", base_url=base_url, search=search_term,
             quality=(policy or QualityPolicy()).quality.value)

    for stub in collect_stubs(fetcher, base_url, result, extractor):
        query = f"{search_term} {stub.season}x{stub.episode:02d}"
        try:
            best = resolver.search_best(query, policy)
        except NetworkError as e:
            log.error("search_failed", query=query, error=str(e))
            result.errors.append(str(e))
            result.missing.append(stub)
            continue
        if best is None:
            log.info("search_not_found", query=query)
            result.missing.append(stub)
            continue
        best.extra.setdefault("originalUrl", f"{base_url}/index.php?video={stub.source_ref}")
        result.resolved.append(ResolvedEpisode(stub, best))

    if result.resolved:
        result.queue = build_queue_document(
            _display_name(search_term), result.resolved,
            source="prehrajto.cz",
            original_source=base_url,
            description=f"Scraped from {base_url}, videos from prehrajto.cz",
            target_folder=slug.replace("-", "_"),
            with_quality=True,
        )
    log.info("crawl_done", show=slug, stubs=len(result.stubs),
             found=result.found, hd=result.hd_count)
    return result


def queue_from_id_scan(hits: list[SearchResult], show_name: str,
                       title_filter: str = "") -> ShowQueue | None:
    """Queue document from nahnoji id-scan hits; hits without a season are dropped."""
    resolved = []
    prefix_re = re.compile(rf"{re.escape(title_filter)}\s*-?\s*", re.IGNORECASE) if title_filter else None
    for hit in hits:
        season = int(hit.extra.get("season") or 0)
        episode = int(hit.extra.get("episode") or 0)
        if season <= 0:
            continue
        title = hit.title
        if prefix_re:
            title = prefix_re.sub("", title, count=1)
        title = re.sub(r"\d+\s*x\s*\d+\s*-?\s*", "", title, count=1, flags=re.IGNORECASE).strip()
        stub = EpisodeStub(season=season, episode=episode, title=title, source_ref=hit.id)
        resolved.append(ResolvedEpisode(stub, hit))
    if not resolved:
        return None
    resolved.sort(key=lambda r: (r.stub.season, r.stub.episode))
    return build_queue_document(show_name, resolved, source="nahnoji.cz")


def merge_progress(new: ShowQueue, old: ShowQueue) -> int:
    """
    Carry download state from a previous document into a fresh crawl, matching
    on (season, episode, url). Returns how many episodes kept their state.
    """
    previous = {(s, e.episode, e.url): e for s, e in old.iter_episodes()}
    kept = 0
    for season, ep in new.iter_episodes():
        prev = previous.get((season, ep.episode, ep.url))
        if prev is None or prev.status == EpisodeStatus.PENDING:
            continue
        ep.status = prev.status
        ep.downloaded_at = prev.downloaded_at
        ep.file_size = prev.file_size
        ep.error = prev.error
        ep.error_kind = prev.error_kind
        ep.attempts = prev.attempts
        kept += 1
    return kept
