from __future__ import annotations
from pathlib import Path

import pytest

from tvarchiver.errors import FetchError
from tvarchiver.queue_store import EpisodeRecord, EpisodeStatus, SeasonRecord, ShowQueue
from tvarchiver.transfer import TransferResult


class FakeFetcher:
    """Serves canned pages; unknown URLs answer 404, ``errors`` URLs fail at the network level."""

    def __init__(self, pages: dict[str, str] | None = None, errors: set[str] | None = None):
        self.pages = dict(pages or {})
        self.errors = set(errors or ())
        self.calls: list[str] = []

    def fetch_page(self, url: str) -> str:
        self.calls.append(url)
        if url in self.errors:
            raise FetchError(url, reason="ConnectionError")
        if url not in self.pages:
            raise FetchError(url, status=404)
        return self.pages[url]

    def close(self):
        pass


class FakeTransfer:
    """Writes ``size`` bytes to the destination unless the URL is listed as failing."""

    def __init__(self, size: int = 2_000_000, fail: dict[str, int] | None = None):
        self.size = size
        # url -> how many times it fails before succeeding (large = always)
        self.fail = dict(fail or {})
        self.calls: list[tuple[str, Path]] = []

    async def __call__(self, url: str, dest: Path) -> TransferResult:
        self.calls.append((url, dest))
        if self.fail.get(url, 0) > 0:
            self.fail[url] -= 1
            return TransferResult(False, error="curl exited with code 22")
        dest.write_bytes(b"\0" * 16)
        return TransferResult(True, size=self.size)


async def no_sleep(_delay):
    return None


def make_queue(n: int = 5, season: int = 1, show: str = "Rick a Morty") -> ShowQueue:
    episodes = [
        EpisodeRecord(episode=i, title=f"Episode {i}", url=f"http://nahnoji.cz/video?id={100 + i}",
                      video_id=str(100 + i))
        for i in range(1, n + 1)
    ]
    return ShowQueue(show_name=show, source="nahnoji.cz", target_folder="Rick_a_Morty",
                     seasons=[SeasonRecord(season=season, title=f"Season {season}", episodes=episodes)])


@pytest.fixture
def queue5():
    return make_queue(5)


@pytest.fixture
def downloaded_queue():
    q = make_queue(3)
    q.seasons[0].episodes[0].mark_downloaded(123, when="2025-01-01T00:00:00Z")
    q.seasons[0].episodes[1].mark_failed("curl exited with code 22", "TransferError", 1)
    assert q.seasons[0].episodes[2].status == EpisodeStatus.PENDING
    return q


def result_block(slug, vid, *, hd=False, size="350.5 MB", duration="21:37", title=None):
    """One hit as it appears on a prehrajto.cz search page."""
    title_attr = f' title="{title}"' if title else ""
    hd_tag = '<span class="format__text">HD</span>' if hd else ""
    return (
        f'<div class="video--link"><a href="/{slug}/{vid}"{title_attr}>'
        f'<img src="thumb.jpg"></a>{hd_tag}'
        f'<span class="video__tag video__tag--size">\n  {size}\n</span>'
        f'<span class="video__tag video__tag--time">{duration}</span></div>'
    )
