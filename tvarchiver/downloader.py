"""
downloader — Drive pending queue episodes to disk.

Episodes go out in fixed batches of ``concurrency``: the whole batch runs
concurrently, the run waits for all of it, saves the document, then starts
the next batch. A crash therefore loses at most one batch of status updates.

Per-episode problems (no video found, curl failure, anything raised by the
transfer) become a ``failed`` status on that episode; the batch goes on.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

import structlog

from .browser import is_media_url, resolve_video_url
from .config import DEFAULT_USER_AGENT
from .errors import ExtractionError, QueueError, TransferError
from .library import MAX_TITLE_LEN, episode_code, jellyfin_path
from .queue_store import EpisodeRecord, EpisodeStatus, QueueStore, ShowQueue
from .transfer import TransferResult, download_bytes

log = structlog.get_logger()

Transfer = Callable[[str, Path], Awaitable[TransferResult]]
SaveFn = Callable[[ShowQueue], None]


@dataclass
class RunOptions:
    dry_run: bool = False
    limit: int = 0
    concurrency: int = 3
    retries: int = 0
    retry_backoff: float = 5.0
    min_complete_bytes: int = 1_000_000
    title_max_len: int = MAX_TITLE_LEN
    ascii_filenames: bool = False


@dataclass
class EpisodeOutcome:
    season: int
    episode: int
    path: Path
    status: str  # downloaded | failed | skipped | planned
    size: int = 0
    error: str | None = None
    attempts: int = 0

    @property
    def code(self) -> str:
        return episode_code(self.season, self.episode)


@dataclass
class RunResult:
    show: str
    downloaded: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: bool = False
    pending_total: int = 0
    planned: list[Path] = field(default_factory=list)
    outcomes: list[EpisodeOutcome] = field(default_factory=list)
    error: str | None = None

    def count(self, outcome: EpisodeOutcome):
        self.outcomes.append(outcome)
        if outcome.status == "downloaded":
            self.downloaded += 1
        elif outcome.status == "failed":
            self.failed += 1
        elif outcome.status == "skipped":
            self.skipped += 1


class EpisodeTransfer:
    """
    Default transfer: player pages (nahnoji/prehrajto) are opened in a
    browser to find the media URL, which is then fetched with the page as
    referer. URLs that already point at an .mp4 are fetched as they are.
    """

    def __init__(self, quality: str = "highest", headless: bool = True,
                 timeout_ms: int = 120000, user_agent: str = DEFAULT_USER_AGENT,
                 resolver=resolve_video_url, fetch=download_bytes):
        self.quality = quality
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self._resolve = resolver
        self._fetch = fetch

    async def __call__(self, url: str, dest: Path) -> TransferResult:
        if is_media_url(url):
            return await self._fetch(url, dest, "", self.user_agent)
        media_url = await self._resolve(
            url, self.quality,
            headless=self.headless, timeout_ms=self.timeout_ms, user_agent=self.user_agent,
        )
        return await self._fetch(media_url, dest, url, self.user_agent)


def pending_episodes(queue: ShowQueue, limit: int = 0) -> list[tuple[int, EpisodeRecord]]:
    """Everything not yet downloaded (failed included), in document order."""
    pending = [(s, ep) for s, ep in queue.iter_episodes() if ep.status != EpisodeStatus.DOWNLOADED]
    return pending[:limit] if limit > 0 else pending


def target_path(queue: ShowQueue, season: int, ep: EpisodeRecord,
                output_root: str | Path, options: RunOptions) -> Path:
    return jellyfin_path(output_root, queue.show_name, season, ep.episode, ep.title,
                         title_max_len=options.title_max_len,
                         ascii_only=options.ascii_filenames)


def _is_complete(path: Path, min_bytes: int) -> bool:
    try:
        return path.is_file() and path.stat().st_size > min_bytes
    except OSError:
        return False


async def _transfer_with_retries(url: str, path: Path, transfer: Transfer, options: RunOptions,
                                 sleep) -> tuple[TransferResult | None, int, Exception | None]:
    """(result, attempts, last error). result is None when every attempt failed."""
    last_error: Exception | None = None
    attempts = 0
    for attempt in range(1, max(options.retries, 0) + 2):
        attempts = attempt
        try:
            result = await transfer(url, path)
        except Exception as e:
            last_error = e
        else:
            if result.success:
                return result, attempts, None
            last_error = TransferError(result.error or "transfer failed")
        if attempt <= options.retries:
            delay = options.retry_backoff * 2 ** (attempt - 1)
            log.info("episode_retry", url=url, attempt=attempt, delay=delay, error=str(last_error))
            await sleep(delay)
    return None, attempts, last_error


async def _process_episode(queue: ShowQueue, season: int, ep: EpisodeRecord, output_root,
                           options: RunOptions, transfer: Transfer, sleep) -> EpisodeOutcome:
    path = target_path(queue, season, ep, output_root, options)
    code = episode_code(season, ep.episode)

    if _is_complete(path, options.min_complete_bytes):
        # status stays as it is: a file on disk is not proof of a finished download
        log.info("episode_skipped", show=queue.show_name, episode=code, path=str(path))
        return EpisodeOutcome(season, ep.episode, path, "skipped")

    if not ep.url:
        err: Exception | None = ExtractionError("Episode has no URL")
        result, attempts = None, 0
    else:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            result, attempts, err = None, 0, e
        else:
            log.info("episode_start", show=queue.show_name, episode=code, title=ep.title)
            result, attempts, err = await _transfer_with_retries(ep.url, path, transfer, options, sleep)

    if result is not None:
        ep.mark_downloaded(result.size)
        log.info("episode_downloaded", show=queue.show_name, episode=code, size=result.size)
        return EpisodeOutcome(season, ep.episode, path, "downloaded", size=result.size, attempts=attempts)

    message = str(err) or type(err).__name__
    ep.mark_failed(message, type(err).__name__, attempts or None)
    log.error("episode_failed", show=queue.show_name, episode=code, error=message,
              kind=type(err).__name__, attempts=attempts)
    return EpisodeOutcome(season, ep.episode, path, "failed", error=message, attempts=attempts)


async def run_show(
    queue: ShowQueue,
    output_root: str | Path,
    options: RunOptions | None = None,
    *,
    transfer: Transfer | None = None,
    save: SaveFn | None = None,
    sleep=asyncio.sleep,
) -> RunResult:
    """
    Download the pending episodes of one show. ``save`` is called with the
    queue after every batch; a dry run only plans paths and never saves.
    """
    options = options or RunOptions()
    transfer = transfer or EpisodeTransfer()
    batch_size = max(options.concurrency, 1)
    result = RunResult(show=queue.show_name, dry_run=options.dry_run)

    all_pending = pending_episodes(queue)
    work = all_pending[:options.limit] if options.limit > 0 else all_pending
    result.pending_total = len(all_pending)
    log.info("run_start", show=queue.show_name, pending=len(all_pending), selected=len(work),
             dry_run=options.dry_run)

    if options.dry_run:
        for season, ep in work:
            path = target_path(queue, season, ep, output_root, options)
            result.planned.append(path)
            result.outcomes.append(EpisodeOutcome(season, ep.episode, path, "planned"))
        return result

    for start in range(0, len(work), batch_size):
        batch = work[start:start + batch_size]
        outcomes = await asyncio.gather(*(
            _process_episode(queue, season, ep, output_root, options, transfer, sleep)
            for season, ep in batch
        ))
        for outcome in outcomes:
            result.count(outcome)
        if save is not None:
            save(queue)
        log.info("batch_saved", show=queue.show_name, batch=start // batch_size + 1,
                 **queue.stats.to_dict())

    log.info("run_done", show=queue.show_name, downloaded=result.downloaded,
             failed=result.failed, skipped=result.skipped)
    return result


async def download_show(store: QueueStore, name: str, output_root: str | Path,
                        options: RunOptions | None = None, *,
                        transfer: Transfer | None = None, sleep=asyncio.sleep) -> RunResult:
    """Load, run and persist one show file while holding its lock. A dry run only reads."""
    if options is not None and options.dry_run:
        return await run_show(store.load(name), output_root, options, transfer=transfer, sleep=sleep)
    with store.locked(name):
        queue = store.load(name)
        return await run_show(queue, output_root, options, transfer=transfer,
                              save=lambda q: store.save(name, q), sleep=sleep)


async def run_all(store: QueueStore, output_root: str | Path, options: RunOptions | None = None,
                  *, transfer: Transfer | None = None, sleep=asyncio.sleep) -> list[RunResult]:
    """Every show file in turn. A show that cannot be opened is reported and skipped."""
    results = []
    for name in store.names():
        try:
            results.append(await download_show(store, name, output_root, options,
                                               transfer=transfer, sleep=sleep))
        except QueueError as e:
            log.error("show_skipped", show=name, error=str(e))
            results.append(RunResult(show=name, error=str(e)))
    return results
