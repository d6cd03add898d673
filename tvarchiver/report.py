"""
report — rich rendering of show tables, progress bars and run/crawl results.
Presentation only; nothing here touches the queue documents.
"""
from __future__ import annotations
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .crawler import CrawlResult
from .downloader import RunResult
from .queue_store import ShowQueue
from .selector import SearchResult, format_size_mb

DRY_RUN_PREVIEW = 10


def format_bytes(n: int) -> str:
    return format_size_mb((n or 0) / (1024 * 1024))


def percent(done: int, total: int) -> int:
    return round(done / total * 100) if total else 0


def progress_bar(pct: int, width: int = 20) -> str:
    filled = min(width, pct * width // 100)
    return "█" * filled + "░" * (width - filled)


def _pct_style(pct: int) -> str:
    return "green" if pct == 100 else "yellow" if pct > 0 else "bright_black"


def render_show_table(console: Console, shows: list[tuple[str, ShowQueue]]):
    t = Table(title="Available shows")
    t.add_column("File"); t.add_column("Show"); t.add_column("Episodes", justify="right")
    t.add_column("Done", justify="right"); t.add_column("Source")
    for name, q in sorted(shows, key=lambda s: s[1].show_name.lower()):
        st = q.stats
        pct = percent(st.downloaded, st.total_episodes)
        t.add_row(name, q.show_name, f"{st.downloaded}/{st.total_episodes}",
                  f"[{_pct_style(pct)}]{pct}%[/]", q.source or "unknown")
    console.print(t)
    if not shows:
        console.print("[yellow]No show files found.[/yellow]")


def render_status(console: Console, shows: list[tuple[str, ShowQueue]]):
    total = downloaded = size = 0
    for _, q in shows:
        st = q.stats
        pct = percent(st.downloaded, st.total_episodes)
        console.print(f"{q.show_name[:25]:<25} [{_pct_style(pct)}]{progress_bar(pct)}[/] "
                      f"{pct}% ({st.downloaded}/{st.total_episodes})"
                      + (f" [red]{st.failed} failed[/red]" if st.failed else ""))
        total += st.total_episodes
        downloaded += st.downloaded
        size += q.downloaded_bytes()
    console.print("[bright_black]" + "─" * 60 + "[/]")
    console.print(f"[bold]Total: {downloaded}/{total} episodes ({format_bytes(size)})[/bold]")


def render_run(console: Console, result: RunResult):
    console.rule(f"[bold cyan]{result.show}[/bold cyan]")
    if result.error:
        console.print(f"[red]Skipped: {escape(result.error)}[/red]")
        return
    if result.pending_total == 0:
        console.print("[green]All episodes already downloaded.[/green]")
        return
    if result.dry_run:
        console.print(f"[magenta]DRY RUN - would download {len(result.planned)} "
                      f"of {result.pending_total} pending:[/magenta]")
        for o in result.outcomes[:DRY_RUN_PREVIEW]:
            console.print(f"  {o.code} → {o.path.name}", style="bright_black", markup=False)
        if len(result.outcomes) > DRY_RUN_PREVIEW:
            console.print(f"  ... and {len(result.outcomes) - DRY_RUN_PREVIEW} more", style="bright_black")
        return
    for o in result.outcomes:
        if o.status == "downloaded":
            console.print(f"  [green]✓[/green] {o.code} {format_bytes(o.size)}")
        elif o.status == "skipped":
            console.print(f"  [yellow]↷[/yellow] {o.code} already on disk")
        else:
            console.print(f"  [red]✗[/red] {o.code} {escape(o.error or 'failed')}", highlight=False)
    console.print(f"[bold]Summary:[/bold] {result.downloaded} downloaded, "
                  f"{result.skipped} skipped, {result.failed} failed")


def render_totals(console: Console, results: list[RunResult]):
    downloaded = sum(r.downloaded for r in results)
    failed = sum(r.failed for r in results)
    skipped = sum(r.skipped for r in results)
    console.rule()
    console.print(f"[bold]All done! Downloaded: {downloaded}, Skipped: {skipped}, Failed: {failed}[/bold]")


def render_search(console: Console, query: str, results: list[SearchResult], best: SearchResult | None):
    t = Table(title=f"prehrajto.cz: {query}")
    t.add_column("#", justify="right"); t.add_column("Title"); t.add_column("HD")
    t.add_column("Size", justify="right"); t.add_column("Duration"); t.add_column("URL")
    for i, r in enumerate(results, 1):
        mark = "[green]★[/green] " if best is not None and r.id == best.id else ""
        t.add_row(str(i), mark + escape(r.title), "HD" if r.is_hd else "",
                  r.size_formatted if r.size_mb else "?", r.duration, r.url)
    console.print(t)
    if not results:
        console.print("[yellow]No results.[/yellow]")


def render_crawl(console: Console, result: CrawlResult, saved_to=None):
    console.rule(f"[bold cyan]{result.show_slug}[/bold cyan]")
    console.print(f"Episodes listed: {len(result.stubs)}")
    console.print(f"Videos found:    [green]{result.found}[/green]"
                  + (f" ({result.hd_count} HD)" if result.hd_count else ""))
    if result.missing:
        console.print(f"Missing:         [yellow]{len(result.missing)}[/yellow]")
        for stub in result.missing[:DRY_RUN_PREVIEW]:
            console.print(f"  {stub.season}x{stub.episode:02d} {stub.title}", style="bright_black", markup=False)
    if result.errors:
        console.print(f"Errors:          [red]{len(result.errors)}[/red]")
    if saved_to:
        console.print(f"[green]Saved[/green] {saved_to}")
    elif result.queue is None:
        console.print("[yellow]Nothing found, no show file written.[/yellow]")
