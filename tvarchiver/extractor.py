"""
extractor — Turn listing-site HTML (nikee.net / alyss.cz / sifee.biz / enkii.cz)
into ordered episode stubs.

The listing sites link every episode as ``index.php?video=N`` with the label
somewhere inside the anchor, often wrapped in <b>/<font> noise. Labels usually
look like ``01x03 - Title`` but plenty of pages only carry a bare title, in
which case the episode number is synthesized from page order.

Two parsers share the numbering logic:
- RegexEpisodeExtractor: tolerant regex over the raw markup (default)
- SoupEpisodeExtractor: BeautifulSoup walk, for pages the regex chokes on
"""
from __future__ import annotations
import html as htmllib
import re
from dataclasses import dataclass
from typing import Iterable, Iterator

from bs4 import BeautifulSoup
import structlog

log = structlog.get_logger()

_LINK_RE = re.compile(
    r"""<a[^>]*href=["']?index\.php\?video=(\d+)["']?[^>]*>([\s\S]*?)</a>""",
    re.IGNORECASE,
)
_HREF_RE = re.compile(r"index\.php\?video=(\d+)", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
# "01x03 - Title", "1x3 Title", "2 x 10 – Title"
_SEASON_EP_RE = re.compile(r"(\d+)\s*x\s*(\d+)\s*[-–]?\s*(.*)", re.IGNORECASE)
_SEASON_LINK_RE = re.compile(r"stranka=serie&(?:amp;)?cislo=(\d+)", re.IGNORECASE)
_EMBED_RE = re.compile(r"nahnoji\.cz/embed\?id=(\d+)", re.IGNORECASE)
_SHOW_HOST_RE = re.compile(r"https?://([^.]+)\.(nikee\.net|alyss\.cz|sifee\.biz|enkii\.cz)", re.IGNORECASE)

PLACEHOLDER = 0


@dataclass
class EpisodeStub:
    """One episode as seen on a listing page, before queue assembly."""
    season: int
    episode: int
    title: str
    source_ref: str


def _clean_label(raw: str) -> str:
    label = htmllib.unescape(_TAG_RE.sub("", raw))
    return _WS_RE.sub(" ", label).strip()


def _ref_key(ref: str) -> tuple:
    # numeric ids compare as numbers, anything else after them as text
    return (0, int(ref), "") if ref.isdigit() else (1, 0, ref)


def parse_label(label: str, default_season: int) -> tuple[int, int, str]:
    """Return (season, episode, title); episode is PLACEHOLDER when unparsed."""
    m = _SEASON_EP_RE.search(label)
    if m:
        title = m.group(3).strip() or label
        return int(m.group(1)), int(m.group(2)), title
    return default_season, PLACEHOLDER, label


def number_episodes(stubs: Iterable[EpisodeStub]) -> list[EpisodeStub]:
    """
    Dedupe by source_ref (first wins), sort by (episode, source_ref) and give
    every placeholder the next expected number.
    """
    seen: set[str] = set()
    unique: list[EpisodeStub] = []
    for stub in stubs:
        if stub.source_ref in seen:
            continue
        seen.add(stub.source_ref)
        unique.append(stub)

    unique.sort(key=lambda s: (s.episode, _ref_key(s.source_ref)))

    next_expected = 1
    for stub in unique:
        if stub.episode == PLACEHOLDER:
            stub.episode = next_expected
        next_expected = max(stub.episode, next_expected) + 1
    return unique


class EpisodeExtractor:
    """Base class: subclasses only decide how (ref, label) pairs are found."""

    def iter_links(self, html: str) -> Iterator[tuple[str, str]]:
        raise NotImplementedError

    def extract(self, html: str, default_season: int = 1) -> list[EpisodeStub]:
        stubs: list[EpisodeStub] = []
        for ref, label in self.iter_links(html):
            if not label.strip():
                continue
            season, episode, title = parse_label(label, default_season)
            stubs.append(EpisodeStub(season=season, episode=episode, title=title, source_ref=ref))
        result = number_episodes(stubs)
        log.debug("episodes_extracted", found=len(stubs), unique=len(result), season=default_season)
        return result


class RegexEpisodeExtractor(EpisodeExtractor):
    def iter_links(self, html: str) -> Iterator[tuple[str, str]]:
        for m in _LINK_RE.finditer(html or ""):
            yield m.group(1), _clean_label(m.group(2))


class SoupEpisodeExtractor(EpisodeExtractor):
    def iter_links(self, html: str) -> Iterator[tuple[str, str]]:
        soup = BeautifulSoup(html or "", "html.parser")
        for a in soup.find_all("a", href=True):
            m = _HREF_RE.search(a["href"])
            if not m or not a["href"].lower().lstrip("./").startswith("index.php"):
                continue
            yield m.group(1), _WS_RE.sub(" ", a.get_text()).strip()


_default_extractor = RegexEpisodeExtractor()


def extract_episodes(html: str, default_season: int = 1,
                     extractor: EpisodeExtractor | None = None) -> list[EpisodeStub]:
    return (extractor or _default_extractor).extract(html, default_season)


def discover_seasons(html: str) -> list[int]:
    """Season numbers linked from an episodes overview page, ascending."""
    return sorted({int(n) for n in _SEASON_LINK_RE.findall(html or "")})


def extract_embed_id(html: str) -> str | None:
    """nahnoji.cz embed id from an episode page iframe."""
    m = _EMBED_RE.search(html or "")
    return m.group(1) if m else None


def show_slug_from_url(base_url: str) -> str:
    """'http://griffinovi.nikee.net' -> 'griffinovi'."""
    m = _SHOW_HOST_RE.match(base_url.strip())
    return m.group(1).lower() if m else "unknown-show"
