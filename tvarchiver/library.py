from __future__ import annotations
from pathlib import Path
import re
from unidecode import unidecode

MAX_TITLE_LEN = 50  # episode title part of the filename

_ILLEGAL_RE = re.compile(r'[<>:"/\\|?*]')


def _slug(s: str, max_len: int = 0, ascii_only: bool = False) -> str:
    """Drop characters illegal in file/folder names (optionally transliterate)."""
    if ascii_only:
        s = unidecode(s)
    s = _ILLEGAL_RE.sub("", s)
    s = re.sub(r"\s+", " ", s).strip()
    if max_len and len(s) > max_len:
        s = s[:max_len].rstrip()
    return s


def episode_code(season: int, episode: int) -> str:
    return f"S{season:02d}E{episode:02d}"


def jellyfin_path(
    output_root: str | Path,
    show_name: str,
    season: int,
    episode: int,
    title: str = "",
    *,
    title_max_len: int = MAX_TITLE_LEN,
    ascii_only: bool = False,
) -> Path:
    """
    Target layout:
        {output}/{Show}/Season {NN}/{Show} - S{NN}E{NN} - {Title}.mp4

    The title part is dropped when empty after sanitizing.
    Show/season/episode alone determine the path prefix, so two episodes never
    share a file.
    """
    show = _slug(show_name or "", ascii_only=ascii_only) or "Unknown Show"
    season_folder = f"Season {season:02d}"

    stem = f"{show} - {episode_code(season, episode)}"
    title_s = _slug(title or "", max_len=title_max_len, ascii_only=ascii_only)
    if title_s:
        stem += f" - {title_s}"

    return Path(output_root) / show / season_folder / f"{stem}.mp4"


def file_stem(name: str) -> str:
    """Show name -> queue file stem: 'Rick a Morty' -> 'rick-a-morty'."""
    stem = re.sub(r"[^a-z0-9]+", "-", unidecode(name or "").lower()).strip("-")
    return stem or "unknown-show"
