"""
queue_store — Per-show JSON queue documents.

One file per show (``<shows_dir>/<name>.json``) holding show metadata, seasons,
episodes with their download status, and a ``stats`` block. ``stats`` is
always recomputed from the episodes on save; the value on disk is never
trusted.

Keys this module does not know about (``originalUrl``, ``isHD``, ``sizeMB``,
``filename``, ...) are carried through untouched.
"""
from __future__ import annotations
import json
import os
import socket
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import structlog

from .errors import QueueFormatError, QueueLockedError, ShowNotFoundError

log = structlog.get_logger()


class EpisodeStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


_EPISODE_KEYS = {"episode", "title", "url", "videoId", "status", "downloadedAt",
                 "fileSize", "error", "errorKind", "attempts"}
_SEASON_KEYS = {"season", "title", "episodes"}
_SHOW_KEYS = {"showName", "showNameCz", "year", "description", "targetFolder",
              "source", "originalSource", "seasons", "stats"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class EpisodeRecord:
    episode: int
    title: str = ""
    url: str = ""
    video_id: str = ""
    status: EpisodeStatus = EpisodeStatus.PENDING
    downloaded_at: str | None = None
    file_size: int | None = None
    error: str | None = None
    error_kind: str | None = None
    attempts: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def mark_downloaded(self, size: int, when: str | None = None):
        self.status = EpisodeStatus.DOWNLOADED
        self.downloaded_at = when or utc_now_iso()
        self.file_size = size
        self.error = self.error_kind = None
        self.attempts = None

    def mark_failed(self, error: str, kind: str | None = None, attempts: int | None = None):
        self.status = EpisodeStatus.FAILED
        self.error = error
        self.error_kind = kind
        self.attempts = attempts

    def reset(self) -> bool:
        """Back to pending; True if anything changed."""
        changed = self.status != EpisodeStatus.PENDING
        self.status = EpisodeStatus.PENDING
        for attr in ("downloaded_at", "file_size", "error", "error_kind", "attempts"):
            if getattr(self, attr) is not None:
                setattr(self, attr, None)
                changed = True
        return changed

    @classmethod
    def from_dict(cls, d: dict) -> "EpisodeRecord":
        try:
            number = int(d["episode"])
        except (KeyError, TypeError, ValueError):
            raise QueueFormatError(f"Episode without a valid number: {d!r}") from None
        raw_status = d.get("status") or EpisodeStatus.PENDING.value
        try:
            status = EpisodeStatus(raw_status)
        except ValueError:
            log.warning("unknown_episode_status", status=raw_status, episode=number)
            status = EpisodeStatus.PENDING
        return cls(
            episode=number,
            title=d.get("title") or "",
            url=d.get("url") or "",
            video_id=str(d.get("videoId") or ""),
            status=status,
            downloaded_at=d.get("downloadedAt"),
            file_size=d.get("fileSize"),
            error=d.get("error"),
            error_kind=d.get("errorKind"),
            attempts=d.get("attempts"),
            extra={k: v for k, v in d.items() if k not in _EPISODE_KEYS},
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "episode": self.episode,
            "title": self.title,
            "url": self.url,
            "videoId": self.video_id,
        }
        d.update(self.extra)
        d["status"] = self.status.value
        if self.downloaded_at is not None:
            d["downloadedAt"] = self.downloaded_at
        if self.file_size is not None:
            d["fileSize"] = self.file_size
        if self.error is not None:
            d["error"] = self.error
        if self.error_kind is not None:
            d["errorKind"] = self.error_kind
        if self.attempts is not None:
            d["attempts"] = self.attempts
        return d


@dataclass
class SeasonRecord:
    season: int
    title: str = ""
    episodes: list[EpisodeRecord] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "SeasonRecord":
        try:
            number = int(d["season"])
        except (KeyError, TypeError, ValueError):
            raise QueueFormatError(f"Season without a valid number: {d.get('season')!r}") from None
        return cls(
            season=number,
            title=d.get("title") or f"Season {number}",
            episodes=[EpisodeRecord.from_dict(e) for e in d.get("episodes") or []],
            extra={k: v for k, v in d.items() if k not in _SEASON_KEYS},
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"season": self.season, "title": self.title}
        d.update(self.extra)
        d["episodes"] = [e.to_dict() for e in self.episodes]
        return d


@dataclass
class QueueStats:
    total_episodes: int = 0
    downloaded: int = 0
    failed: int = 0
    pending: int = 0

    def to_dict(self) -> dict:
        return {
            "totalEpisodes": self.total_episodes,
            "downloaded": self.downloaded,
            "failed": self.failed,
            "pending": self.pending,
        }


@dataclass
class ShowQueue:
    show_name: str
    show_name_cz: str = ""
    year: str = ""
    description: str = ""
    target_folder: str = ""
    source: str = ""
    original_source: str = ""
    seasons: list[SeasonRecord] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def iter_episodes(self) -> Iterator[tuple[int, EpisodeRecord]]:
        """(season number, episode) in document order."""
        for s in self.seasons:
            for e in s.episodes:
                yield s.season, e

    @property
    def stats(self) -> QueueStats:
        st = QueueStats()
        for _, ep in self.iter_episodes():
            st.total_episodes += 1
            if ep.status == EpisodeStatus.DOWNLOADED:
                st.downloaded += 1
            elif ep.status == EpisodeStatus.FAILED:
                st.failed += 1
            else:
                st.pending += 1
        return st

    def downloaded_bytes(self) -> int:
        return sum(ep.file_size or 0 for _, ep in self.iter_episodes()
                   if ep.status == EpisodeStatus.DOWNLOADED)

    @classmethod
    def from_dict(cls, d: dict) -> "ShowQueue":
        if not isinstance(d, dict) or not d.get("showName"):
            raise QueueFormatError("Queue document has no showName")
        return cls(
            show_name=d["showName"],
            show_name_cz=d.get("showNameCz") or "",
            year=str(d.get("year") or ""),
            description=d.get("description") or "",
            target_folder=d.get("targetFolder") or "",
            source=d.get("source") or "",
            original_source=d.get("originalSource") or "",
            seasons=[SeasonRecord.from_dict(s) for s in d.get("seasons") or []],
            extra={k: v for k, v in d.items() if k not in _SHOW_KEYS},
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "showName": self.show_name,
            "showNameCz": self.show_name_cz,
            "year": self.year,
            "description": self.description,
            "targetFolder": self.target_folder,
            "source": self.source,
            "originalSource": self.original_source,
        }
        d.update(self.extra)
        d["seasons"] = [s.to_dict() for s in self.seasons]
        d["stats"] = self.stats.to_dict()
        return d


def reset_queue(queue: ShowQueue) -> int:
    """Return every episode to pending; returns how many changed."""
    return sum(1 for _, ep in queue.iter_episodes() if ep.reset())


# ── Persistence ───────────────────────────────────────────────────────

def load_show(path: str | Path) -> ShowQueue:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ShowNotFoundError(f"Show not found: {path.name}") from None
    except json.JSONDecodeError as e:
        raise QueueFormatError(f"{path.name}: invalid JSON ({e})") from e
    return ShowQueue.from_dict(data)


def save_show(path: str | Path, queue: ShowQueue):
    """Write atomically: temp file in the same directory, then os.replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(queue.to_dict(), indent=2, ensure_ascii=False)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    log.debug("queue_saved", file=str(path), **queue.stats.to_dict())


# ── Single-writer lock ────────────────────────────────────────────────

def _pid_alive(pid: int) -> bool:
    if os.name != "posix":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class QueueLock:
    """
    Lease file next to a queue document (``<doc>.lock``).

    Created with O_EXCL so two runs cannot both hold it. A lease older than
    ``ttl_seconds``, or one left by a dead process on this host, is stale and
    gets broken.
    """

    def __init__(self, doc_path: str | Path, ttl_seconds: float = 6 * 3600):
        self.doc_path = Path(doc_path)
        self.path = self.doc_path.with_name(self.doc_path.name + ".lock")
        self.ttl_seconds = ttl_seconds
        self._held = False

    def _is_stale(self) -> bool:
        try:
            info = json.loads(self.path.read_text(encoding="utf-8"))
            acquired = float(info["acquiredAt"])
        except FileNotFoundError:
            return True
        except (ValueError, KeyError, TypeError):
            # half-written or foreign file: fall back to mtime
            try:
                acquired = self.path.stat().st_mtime
            except FileNotFoundError:
                return True
            info = {}
        if time.time() - acquired > self.ttl_seconds:
            return True
        pid = info.get("pid")
        if info.get("host") == socket.gethostname() and isinstance(pid, int):
            return not _pid_alive(pid)
        return False

    def acquire(self):
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._is_stale():
                    log.warning("stale_lock_broken", lock=str(self.path))
                    self.path.unlink(missing_ok=True)
                    continue
                raise QueueLockedError(
                    f"{self.doc_path.name} is in use by another run (lock: {self.path})"
                ) from None
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"pid": os.getpid(), "host": socket.gethostname(),
                           "acquiredAt": time.time()}, f)
            self._held = True
            return self
        raise QueueLockedError(f"Could not acquire {self.path}")

    def release(self):
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class QueueStore:
    """Directory of queue documents addressed by show file name."""

    def __init__(self, root: str | Path, lock_ttl_seconds: float = 6 * 3600):
        self.root = Path(root)
        self.lock_ttl_seconds = lock_ttl_seconds

    def path_for(self, name: str) -> Path:
        filename = name if name.endswith(".json") else f"{name}.json"
        return self.root / filename

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))

    def load(self, name: str) -> ShowQueue:
        path = self.path_for(name)
        if not path.is_file():
            raise ShowNotFoundError(f"Show not found: {path.name}")
        return load_show(path)

    def save(self, name: str, queue: ShowQueue):
        save_show(self.path_for(name), queue)

    def list_shows(self) -> list[tuple[str, ShowQueue]]:
        shows = []
        for name in self.names():
            try:
                shows.append((name, self.load(name)))
            except QueueFormatError as e:
                log.error("queue_unreadable", show=name, error=str(e))
        return shows

    @contextmanager
    def locked(self, name: str):
        with QueueLock(self.path_for(name), ttl_seconds=self.lock_ttl_seconds):
            yield
