from __future__ import annotations
import asyncio
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from .config import Config, load_config
from .crawler import crawl_with_search, merge_progress, queue_from_id_scan, scan_show
from .downloader import EpisodeTransfer, RunOptions, download_show, run_all
from .errors import ConfigError, NetworkError, QueueError, QueueFormatError
from .fetcher import PageFetcher
from .library import file_stem
from .logging_setup import setup_logging
from .paths import get_dirs
from .queue_store import QueueLock, QueueStore, ShowQueue, load_show, reset_queue, save_show
from .report import (
    render_crawl, render_run, render_search, render_show_table, render_status, render_totals,
)
from .resolvers import DirectResolver, SearchResolver
from .selector import QualityPolicy, select_best

log = structlog.get_logger()
console = Console()

app = typer.Typer(no_args_is_help=True, help="Czech TV episode scraper and Jellyfin downloader.")


def _fail(msg: str):
    console.print(f"[red]{msg}[/red]")
    raise typer.Exit(1)


def _setup() -> Config:
    try:
        cfg = load_config()
    except ConfigError as e:
        _fail(f"Config error: {e}")
    setup_logging(cfg.log_level)
    return cfg


def _store(cfg: Config) -> QueueStore:
    return QueueStore(cfg.shows_path(), lock_ttl_seconds=cfg.lock_ttl_hours * 3600)


def _policy(quality: str, max_size: float) -> QualityPolicy:
    try:
        return QualityPolicy.from_options(quality, max_size)
    except ValueError:
        _fail(f"Unknown quality {quality!r} (highest, lowest, hd-only, sd-only)")


def _save_crawled(path: Path, queue: ShowQueue, cfg: Config) -> Path:
    """Write a freshly crawled show, keeping download state from an existing file."""
    with QueueLock(path, ttl_seconds=cfg.lock_ttl_hours * 3600):
        if path.exists():
            try:
                kept = merge_progress(queue, load_show(path))
                log.info("progress_merged", file=str(path), kept=kept)
            except QueueFormatError as e:
                log.warning("previous_queue_unreadable", file=str(path), error=str(e))
        save_show(path, queue)
    return path


@app.command("paths")
def show_paths():
    """Show where tvarchiver keeps show files, logs, cache, config."""
    _setup()
    t = Table(title="tvarchiver paths")
    t.add_column("Kind"); t.add_column("Location")
    for k, p in get_dirs().items():
        t.add_row(k, str(p))
    console.print(t)


@app.command("list")
def list_shows():
    """List all show files with their progress."""
    cfg = _setup()
    render_show_table(console, _store(cfg).list_shows())


@app.command()
def status():
    """Download progress for every show."""
    cfg = _setup()
    render_status(console, _store(cfg).list_shows())


@app.command()
def download(
    show: str = typer.Option(None, "--show", help="Show file name (without .json)"),
    all_shows: bool = typer.Option(False, "--all", help="Download every show"),
    output: Path = typer.Option(None, "--output", help="Output directory (default from config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would be downloaded"),
    limit: int = typer.Option(0, "--limit", help="Max episodes per show (0 = all)"),
    retries: int = typer.Option(None, "--retries", help="Extra attempts per episode"),
    concurrency: int = typer.Option(None, "--parallel", help="Episodes per batch"),
):
    """Download pending episodes into a Jellyfin folder layout."""
    cfg = _setup()
    if not show and not all_shows:
        _fail("Use --show NAME or --all")
    store = _store(cfg)
    output_root = output or cfg.output_path()
    options = RunOptions(
        dry_run=dry_run,
        limit=max(limit, 0),
        concurrency=concurrency or cfg.parallel_downloads,
        retries=cfg.retries if retries is None else max(retries, 0),
        retry_backoff=cfg.retry_backoff_seconds,
        min_complete_bytes=cfg.min_complete_bytes,
        title_max_len=cfg.title_max_len,
        ascii_filenames=cfg.ascii_filenames,
    )
    transfer = EpisodeTransfer(quality=cfg.quality, headless=cfg.browser_headless,
                               timeout_ms=cfg.browser_timeout_ms, user_agent=cfg.user_agent)

    console.print(f"[bold magenta]Jellyfin TV downloader[/bold magenta]  output: {output_root}")
    if dry_run:
        console.print("[yellow]Mode: DRY RUN[/yellow]")

    if show:
        if not store.exists(show):
            _fail(f"Show not found: {store.path_for(show).name} (see 'tvarchiver list')")
        try:
            result = asyncio.run(download_show(store, show, output_root, options, transfer=transfer))
        except QueueError as e:
            _fail(str(e))
        render_run(console, result)
        return

    results = asyncio.run(run_all(store, output_root, options, transfer=transfer))
    for r in results:
        render_run(console, r)
    render_totals(console, results)


@app.command()
def reset(show: str = typer.Option(None, "--show", help="Only this show (default: all)")):
    """Put every episode back to pending so it downloads again."""
    cfg = _setup()
    store = _store(cfg)
    names = [show] if show else store.names()
    if show and not store.exists(show):
        _fail(f"Show not found: {store.path_for(show).name}")
    total = 0
    for name in names:
        try:
            with store.locked(name):
                q = store.load(name)
                changed = reset_queue(q)
                store.save(name, q)
        except QueueError as e:
            if show:
                _fail(str(e))
            console.print(f"[red]{name}: {e}[/red]")
            continue
        total += changed
        console.print(f"[green]Reset[/green] {q.show_name}: {changed} episode(s), "
                      f"{q.stats.pending} pending")
    console.print(f"[bold]{total} episode(s) reset in {len(names)} show(s)[/bold]")


@app.command()
def search(
    query: str = typer.Argument(..., help='e.g. "rick a morty 1x01"'),
    quality: str = typer.Option(None, "--quality", help="highest, lowest, hd-only, sd-only"),
    max_size: float = typer.Option(None, "--max-size", help="Max size in MB"),
):
    """Search prehrajto.cz and show which hit would be picked."""
    cfg = _setup()
    policy = _policy(quality or cfg.quality, cfg.max_size_mb if max_size is None else max_size)
    fetcher = PageFetcher(delay=cfg.search_delay_seconds, user_agent=cfg.user_agent,
                          timeout=cfg.request_timeout)
    try:
        results = SearchResolver(fetcher).resolve(query)
    except NetworkError as e:
        _fail(f"Search failed: {e}")
    finally:
        fetcher.close()
    render_search(console, query, results, select_best(results, policy))


@app.command()
def crawl(
    base_url: str = typer.Argument(..., help="Listing site, e.g. http://rick-a-morty.nikee.net"),
    search_term: str = typer.Option(None, "--search-term", help="Search prefix (default from the URL)"),
    quality: str = typer.Option(None, "--quality", help="highest, lowest, hd-only, sd-only"),
    max_size: float = typer.Option(None, "--max-size", help="Max size in MB"),
    output: Path = typer.Option(None, "--output", help="Show file to write (default: shows dir)"),
):
    """Build a show file from a listing site, with videos searched on prehrajto.cz."""
    cfg = _setup()
    policy = _policy(quality or cfg.quality, cfg.max_size_mb if max_size is None else max_size)
    fetcher = PageFetcher(delay=cfg.search_delay_seconds, user_agent=cfg.user_agent,
                          timeout=cfg.request_timeout)
    try:
        result = crawl_with_search(fetcher, base_url, search_term, policy)
    except NetworkError as e:
        _fail(f"Crawl failed: {e}")
    finally:
        fetcher.close()

    saved = None
    if result.queue is not None:
        path = output or _store(cfg).path_for(result.show_slug)
        try:
            saved = _save_crawled(path, result.queue, cfg)
        except QueueError as e:
            _fail(str(e))
    render_crawl(console, result, saved)


@app.command()
def scan(base_urls: list[str] = typer.Argument(..., help="One or more listing sites")):
    """Build show files from listing sites, with videos taken from nahnoji.cz embeds."""
    cfg = _setup()
    store = _store(cfg)
    fetcher = PageFetcher(delay=cfg.listing_delay_seconds, user_agent=cfg.user_agent,
                          timeout=cfg.request_timeout)
    resolver = DirectResolver(fetcher)
    try:
        for url in base_urls:
            try:
                result = scan_show(fetcher, url, resolver)
            except NetworkError as e:
                console.print(f"[red]{url}: {e}[/red]")
                continue
            saved = None
            if result.queue is not None:
                try:
                    saved = _save_crawled(store.path_for(result.show_slug), result.queue, cfg)
                except QueueError as e:
                    console.print(f"[red]{result.show_slug}: {e}[/red]")
            render_crawl(console, result, saved)
    finally:
        fetcher.close()


@app.command("scan-ids")
def scan_ids(
    start: int = typer.Argument(..., help="First nahnoji video id"),
    end: int = typer.Argument(..., help="Last nahnoji video id (inclusive)"),
    title_filter: str = typer.Option(..., "--filter", help="Text the video heading must contain"),
    name: str = typer.Option(None, "--name", help="Show name (default: the filter)"),
):
    """Probe a range of nahnoji.cz ids and build a show file from the matches."""
    cfg = _setup()
    if end < start:
        _fail("END must not be lower than START")
    fetcher = PageFetcher(delay=0, user_agent=cfg.user_agent, timeout=cfg.request_timeout)
    try:
        hits = asyncio.run(DirectResolver(fetcher).scan_id_range(start, end, title_filter))
    finally:
        fetcher.close()

    show_name = name or title_filter.title()
    console.print(f"Matches: [green]{len(hits)}[/green]")
    queue = queue_from_id_scan(hits, show_name, title_filter)
    if queue is None:
        console.print("[yellow]No episode with a season number found, nothing written.[/yellow]")
        return
    path = _store(cfg).path_for(file_stem(show_name))
    try:
        _save_crawled(path, queue, cfg)
    except QueueError as e:
        _fail(str(e))
    console.print(f"[green]Saved[/green] {path} ({queue.stats.total_episodes} episodes)")


def main():
    app()


if __name__ == "__main__":
    main()
