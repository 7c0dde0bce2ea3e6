import json
import threading

from stdf_integrity.sessions import SessionStore


def test_record_and_reload(tmp_path):
    path = tmp_path / "sessions.json"
    store = SessionStore(path)
    store.record("decode", ["a.stdf"], "ok", {"parts": 4})
    store.record("check", ["LOT001.01"], "pass")

    reloaded = SessionStore(path)
    recent = reloaded.recent()
    assert [s["command"] for s in recent] == ["check", "decode"]
    assert recent[1]["summary"] == {"parts": 4}
    assert json.loads(path.read_text())["sessions"][0]["status"] == "pass"


def test_max_entries(tmp_path):
    store = SessionStore(tmp_path / "sessions.json", max_entries=3)
    for index in range(5):
        store.record("decode", [f"{index}.stdf"], "ok")
    assert [s["sources"] for s in store.recent()] == [["4.stdf"], ["3.stdf"], ["2.stdf"]]


def test_concurrent_records(tmp_path):
    store = SessionStore(tmp_path / "sessions.json", max_entries=100)

    def worker(n):
        for index in range(10):
            store.record("decode", [f"{n}-{index}.stdf"], "ok")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.recent(100)) == 40
    assert len(SessionStore(tmp_path / "sessions.json").recent(100)) == 40


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{not json")
    assert SessionStore(path).recent() == []


def test_clear(tmp_path):
    store = SessionStore(tmp_path / "sessions.json")
    store.record("decode", [], "error")
    store.clear()
    assert store.recent() == []
    assert SessionStore(tmp_path / "sessions.json").recent() == []
