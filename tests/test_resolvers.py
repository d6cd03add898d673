import asyncio

import pytest

from tvarchiver.errors import FetchError
from tvarchiver.extractor import EpisodeStub
from tvarchiver.resolvers import (
    METADATA_WINDOW, DirectQuery, DirectResolver, SearchResolver, parse_search_results,
    parse_season_episode,
)
from tvarchiver.selector import Quality, QualityPolicy

from conftest import FakeFetcher, result_block

SEARCH_HTML = (
    "<html><body>"
    + result_block("rick-a-morty-1x01-pilot", "abcdef012345", hd=True, size="1.2 GB",
                   title="Rick a Morty 1x01 &amp; Pilot")
    + result_block("rick-a-morty-1x01", "0123456789ab", size="300 MB", duration="20:01")
    + '<a href="/rick-a-morty-1x01-pilot/abcdef012345">again</a>'
    + '<a href="/short/abc">too short id</a>'
    + "</body></html>"
)


def test_parse_search_results():
    results = parse_search_results(SEARCH_HTML)
    assert [r.id for r in results] == ["abcdef012345", "0123456789ab"]

    first, second = results
    assert first.url == "https://prehrajto.cz/rick-a-morty-1x01-pilot/abcdef012345"
    assert first.title == "Rick a Morty 1x01 & Pilot"
    assert first.is_hd
    assert first.size_mb == pytest.approx(1.2 * 1024)
    assert first.duration == "21:37"

    assert not second.is_hd
    assert second.size_mb == 300
    assert second.duration == "20:01"
    assert second.title == "Rick A Morty 1x01"


def test_hd_detected_from_slug():
    html = result_block("simpsonovi-1080p", "fedcba987654")
    assert parse_search_results(html)[0].is_hd


def test_metadata_outside_window_is_ignored():
    html = ('<a href="/lonely/aaaaaaaaaaaa"></a>' + " " * METADATA_WINDOW
            + '<span class="video__tag video__tag--size">999 MB</span>')
    hit = parse_search_results(html)[0]
    assert hit.size_mb == 0
    assert hit.duration == ""


def test_search_resolver_builds_url_and_picks_best():
    resolver = SearchResolver(FakeFetcher())
    url = resolver.search_url("rick a morty 1x01")
    assert url == "https://prehrajto.cz/hledej/rick%20a%20morty%201x01"

    resolver.fetcher.pages[url] = SEARCH_HTML
    assert resolver.search_best("rick a morty 1x01").id == "abcdef012345"
    lowest = resolver.search_best("rick a morty 1x01", QualityPolicy(Quality.LOWEST))
    assert lowest.id == "0123456789ab"


def test_search_network_failure_raises():
    resolver = SearchResolver(FakeFetcher())
    with pytest.raises(FetchError):
        resolver.resolve("anything")


def test_parse_season_episode():
    assert parse_season_episode("Rick a Morty 2x05 - Total Rickall") == (2, 5)
    assert parse_season_episode("Simpsonovi S10E03") == (10, 3)
    assert parse_season_episode("Trailer") == (0, 0)


BASE = "http://rick-a-morty.nikee.net"
STUB = EpisodeStub(season=1, episode=1, title="Pilot", source_ref="501")
EPISODE_PAGE = f"{BASE}/index.php?video=501"
EMBED_HTML = '<iframe src="http://nahnoji.cz/embed?id=48213"></iframe>'
VIDEO_HTML = "<html><h1>Rick a Morty 1x01 - Pilot</h1><video src='x'></video></html>"


def test_direct_resolver_finds_video():
    fetcher = FakeFetcher({EPISODE_PAGE: EMBED_HTML,
                           "http://nahnoji.cz/video?id=48213": VIDEO_HTML})
    [hit] = DirectResolver(fetcher).resolve(DirectQuery(BASE, STUB))
    assert hit.url == "http://nahnoji.cz/video?id=48213"
    assert hit.id == "48213"
    assert hit.title == "Pilot"
    assert hit.extra["originalUrl"] == EPISODE_PAGE


def test_direct_resolver_without_embed_returns_nothing():
    fetcher = FakeFetcher({EPISODE_PAGE: "<p>no player</p>"})
    assert DirectResolver(fetcher).resolve(DirectQuery(BASE, STUB)) == []


def test_direct_resolver_probe_rejects_missing_video():
    fetcher = FakeFetcher({EPISODE_PAGE: EMBED_HTML})
    assert DirectResolver(fetcher).resolve(DirectQuery(BASE, STUB)) == []
    fetcher.pages["http://nahnoji.cz/video?id=48213"] = "<p>deleted</p>"
    assert DirectResolver(fetcher).resolve(DirectQuery(BASE, STUB)) == []


def test_direct_resolver_without_probe():
    fetcher = FakeFetcher({EPISODE_PAGE: EMBED_HTML})
    [hit] = DirectResolver(fetcher, probe=False).resolve(DirectQuery(BASE, STUB))
    assert hit.id == "48213"
    assert fetcher.calls == [EPISODE_PAGE]


def test_probe_network_error_propagates():
    fetcher = FakeFetcher({EPISODE_PAGE: EMBED_HTML}, errors={"http://nahnoji.cz/video?id=48213"})
    with pytest.raises(FetchError):
        DirectResolver(fetcher).resolve(DirectQuery(BASE, STUB))


def test_scan_id_range_filters_by_heading():
    fetcher = FakeFetcher({
        "http://nahnoji.cz/video?id=10": "<h1>Rick a Morty 1x02 - Lawnmower Dog</h1>",
        "http://nahnoji.cz/video?id=11": "<h1>Simpsonovi 3x01</h1>",
        "http://nahnoji.cz/video?id=13": "<h1>RICK A MORTY S02E01</h1>",
    }, errors={"http://nahnoji.cz/video?id=12"})
    hits = asyncio.run(DirectResolver(fetcher).scan_id_range(10, 14, "rick a morty", batch_size=2))
    assert [h.id for h in hits] == ["10", "13"]
    assert hits[0].extra == {"season": 1, "episode": 2}
    assert hits[1].extra == {"season": 2, "episode": 1}
    assert len(fetcher.calls) == 5
