import json
import os
import time

import pytest

from tvarchiver.errors import QueueFormatError, QueueLockedError, ShowNotFoundError
from tvarchiver.queue_store import (
    EpisodeStatus, QueueLock, QueueStore, ShowQueue, load_show, reset_queue, save_show,
)

DOC = {
    "showName": "Rick a Morty",
    "showNameCz": "Rick a Morty",
    "year": "2013",
    "description": "Scraped from http://rick-a-morty.nikee.net",
    "targetFolder": "Rick_a_Morty",
    "source": "prehrajto.cz",
    "originalSource": "http://rick-a-morty.nikee.net",
    "expectedEpisodes": 71,
    "seasons": [
        {
            "season": 1,
            "title": "Season 1",
            "foundEpisodes": 2,
            "episodes": [
                {"episode": 1, "title": "Pilot", "url": "https://prehrajto.cz/pilot/abcdef0123",
                 "videoId": "abcdef0123", "isHD": True, "sizeMB": 350.5, "status": "downloaded",
                 "downloadedAt": "2025-01-01T10:00:00Z", "fileSize": 367525000},
                {"episode": 2, "title": "Lawnmower Dog", "url": "https://prehrajto.cz/dog/abcdef0124",
                 "videoId": "abcdef0124", "status": "failed", "error": "curl exited with code 22"},
            ],
        },
        {"season": 2, "title": "Season 2", "episodes": [
            {"episode": 1, "title": "A Rickle in Time", "url": "https://prehrajto.cz/r/abcdef0125",
             "videoId": "abcdef0125", "status": "pending"},
        ]},
    ],
    "stats": {"totalEpisodes": 99, "downloaded": 99, "failed": 0, "pending": 0},
}


def write_doc(path, doc=DOC):
    path.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")


def test_stats_are_recomputed_not_trusted(tmp_path):
    path = tmp_path / "rick-a-morty.json"
    write_doc(path)
    q = load_show(path)
    assert q.stats.to_dict() == {"totalEpisodes": 3, "downloaded": 1, "failed": 1, "pending": 1}
    save_show(path, q)
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["stats"] == {"totalEpisodes": 3, "downloaded": 1, "failed": 1, "pending": 1}


def test_unknown_keys_survive_round_trip(tmp_path):
    path = tmp_path / "rick-a-morty.json"
    write_doc(path)
    save_show(path, load_show(path))
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["expectedEpisodes"] == 71
    assert saved["seasons"][0]["foundEpisodes"] == 2
    ep = saved["seasons"][0]["episodes"][0]
    assert ep["isHD"] is True
    assert ep["sizeMB"] == 350.5
    assert ep["fileSize"] == 367525000


def test_save_is_pretty_utf8_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "show.json"
    q = ShowQueue.from_dict(DOC)
    q.show_name = "Simpsonovi – Čeština"
    save_show(path, q)
    text = path.read_text(encoding="utf-8")
    assert "Čeština" in text
    assert '\n  "showName"' in text
    assert [p.name for p in tmp_path.iterdir()] == ["show.json"]


def test_reset_clears_terminal_fields():
    q = ShowQueue.from_dict(DOC)
    changed = reset_queue(q)
    assert changed == 2
    for _, ep in q.iter_episodes():
        d = ep.to_dict()
        assert d["status"] == "pending"
        for key in ("downloadedAt", "fileSize", "error", "errorKind", "attempts"):
            assert key not in d
    assert q.stats.pending == q.stats.total_episodes == 3


def test_unknown_status_reads_as_pending():
    doc = json.loads(json.dumps(DOC))
    doc["seasons"][1]["episodes"][0]["status"] = "queued"
    q = ShowQueue.from_dict(doc)
    assert q.seasons[1].episodes[0].status == EpisodeStatus.PENDING


def test_mark_downloaded_clears_previous_error():
    q = ShowQueue.from_dict(DOC)
    ep = q.seasons[0].episodes[1]
    ep.mark_downloaded(1234, when="2025-02-02T00:00:00Z")
    d = ep.to_dict()
    assert d["status"] == "downloaded"
    assert d["fileSize"] == 1234
    assert "error" not in d


def test_load_errors(tmp_path):
    with pytest.raises(ShowNotFoundError):
        load_show(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(QueueFormatError):
        load_show(bad)
    nameless = tmp_path / "nameless.json"
    nameless.write_text("{}", encoding="utf-8")
    with pytest.raises(QueueFormatError):
        load_show(nameless)


def test_store_lists_and_skips_unreadable(tmp_path):
    write_doc(tmp_path / "rick-a-morty.json")
    (tmp_path / "broken.json").write_text("[", encoding="utf-8")
    store = QueueStore(tmp_path)
    assert store.names() == ["broken", "rick-a-morty"]
    assert [name for name, _ in store.list_shows()] == ["rick-a-morty"]
    assert store.exists("rick-a-morty") and store.exists("rick-a-morty.json")
    with pytest.raises(ShowNotFoundError):
        store.load("nope")


def test_lock_is_exclusive_and_released(tmp_path):
    doc = tmp_path / "show.json"
    with QueueLock(doc):
        assert (tmp_path / "show.json.lock").exists()
        with pytest.raises(QueueLockedError):
            QueueLock(doc).acquire()
    assert not (tmp_path / "show.json.lock").exists()


def test_lock_released_on_error(tmp_path):
    store = QueueStore(tmp_path)
    with pytest.raises(RuntimeError):
        with store.locked("show"):
            raise RuntimeError("boom")
    assert not (tmp_path / "show.json.lock").exists()


def test_expired_lock_is_broken(tmp_path):
    doc = tmp_path / "show.json"
    lock_file = tmp_path / "show.json.lock"
    lock_file.write_text(json.dumps({"pid": 1, "host": "elsewhere", "acquiredAt": time.time() - 7 * 3600}))
    with QueueLock(doc, ttl_seconds=6 * 3600):
        info = json.loads(lock_file.read_text())
        assert info["pid"] == os.getpid()


def test_fresh_foreign_lock_blocks(tmp_path):
    doc = tmp_path / "show.json"
    (tmp_path / "show.json.lock").write_text(
        json.dumps({"pid": 1, "host": "elsewhere", "acquiredAt": time.time()}))
    with pytest.raises(QueueLockedError):
        QueueLock(doc).acquire()
