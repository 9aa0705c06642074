import threading
import time

import database
from realtime import hub


def test_subscribe_delivers_current_snapshot_then_changes():
    database.create_document("requests", {"title": "a", "status": "pending"})
    snapshots = []

    unsubscribe = hub.subscribe("requests", {"status": "pending"}, snapshots.append)
    try:
        assert [[d["title"] for d in s] for s in snapshots] == [["a"]]

        database.create_document("requests", {"title": "b", "status": "pending"})
        assert [d["title"] for d in snapshots[-1]] == ["a", "b"]
    finally:
        unsubscribe()


def test_unchanged_result_set_is_not_redelivered():
    snapshots = []
    unsubscribe = hub.subscribe("requests", {"status": "pending"}, snapshots.append)
    try:
        database.create_document("requests", {"title": "done", "status": "resolved"})
        assert len(snapshots) == 1
    finally:
        unsubscribe()


def test_unsubscribe_stops_delivery():
    snapshots = []
    before = hub.subscription_count("requests")
    unsubscribe = hub.subscribe("requests", None, snapshots.append)
    assert hub.subscription_count("requests") == before + 1

    unsubscribe()
    unsubscribe()
    database.create_document("requests", {"title": "late"})

    assert snapshots == [[]]
    assert hub.subscription_count("requests") == before


def test_failing_callback_does_not_fail_the_write():
    def broken(snapshot):
        if snapshot:
            raise RuntimeError("boom")

    unsubscribe = hub.subscribe("requests", None, broken)
    try:
        assert database.create_document("requests", {"title": "still saved"})
        assert len(database.get_documents("requests")) == 1
    finally:
        unsubscribe()


def test_overlapping_publishes_deliver_newest_snapshot_last(store, monkeypatch):
    snapshots = []
    unsubscribe = hub.subscribe("requests", None, snapshots.append)

    read_done = threading.Event()
    release = threading.Event()
    real_get_documents = database.get_documents

    def get_documents(*args, **kwargs):
        result = real_get_documents(*args, **kwargs)
        if threading.current_thread().name == "slow":
            read_done.set()
            release.wait(5)
        return result

    monkeypatch.setattr(database, "get_documents", get_documents)
    try:
        store["requests"].insert_one({"title": "first"})
        slow = threading.Thread(target=hub.publish, args=("requests",), name="slow")
        slow.start()
        assert read_done.wait(5)

        store["requests"].insert_one({"title": "second"})
        fast = threading.Thread(target=hub.publish, args=("requests",), name="fast")
        fast.start()
        time.sleep(0.05)
        release.set()
        slow.join(5)
        fast.join(5)
    finally:
        unsubscribe()

    assert [len(s) for s in snapshots] == [0, 1, 2]
