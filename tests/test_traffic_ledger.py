import json
import threading

import pytest

from metered_socks_proxy.core.exceptions import PersistenceError
from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger


def test_record_accumulates(ledger):
    ledger.record("test", 10)
    ledger.record("test", 5)
    ledger.record("alice", 1)

    assert ledger.usage("test") == 15
    assert ledger.usage("alice") == 1
    assert ledger.usage("nobody") == 0


def test_negative_delta_rejected(ledger):
    ledger.record("test", 3)
    with pytest.raises(ValueError):
        ledger.record("test", -1)
    assert ledger.usage("test") == 3


def test_snapshot_is_a_copy(ledger):
    ledger.record("test", 1)
    snapshot = ledger.snapshot()
    snapshot["test"] = 999
    assert ledger.usage("test") == 1


def test_concurrent_records_are_not_lost(ledger):
    threads = [
        threading.Thread(target=lambda: [ledger.record("test", 3) for _ in range(2000)])
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ledger.usage("test") == 8 * 2000 * 3


def test_persist_and_load(ledger, traffic_file):
    ledger.record("test", 42)
    ledger.record("alice", 7)
    ledger.persist()

    assert json.loads(traffic_file.read_text()) == {"alice": 7, "test": 42}

    reloaded = TrafficLedger(traffic_file)
    reloaded.load()
    assert reloaded.snapshot() == {"alice": 7, "test": 42}


def test_persist_leaves_no_temporary_files(ledger, traffic_file):
    ledger.record("test", 1)
    ledger.persist()
    ledger.persist()

    assert [p.name for p in traffic_file.parent.iterdir()] == [traffic_file.name]


def test_missing_file_loads_empty(ledger):
    ledger.load()
    assert ledger.snapshot() == {}


def test_counts_continue_from_loaded_values(traffic_file):
    traffic_file.write_text('{"test": 100}')
    ledger = TrafficLedger(traffic_file)
    ledger.load()
    ledger.record("test", 1)
    assert ledger.usage("test") == 101


@pytest.mark.parametrize(
    "content",
    [
        "",
        "{broken",
        "[1, 2]",
        '{"test": -1}',
        '{"test": "12"}',
        '{"test": 1.5}',
        '{"test": true}',
    ],
)
def test_malformed_file_is_fatal(traffic_file, content):
    traffic_file.write_text(content)
    ledger = TrafficLedger(traffic_file)
    with pytest.raises(PersistenceError):
        ledger.load()


def test_persist_failure_raises(tmp_path):
    ledger = TrafficLedger(tmp_path / "missing" / "traffic.json")
    ledger.record("test", 1)
    with pytest.raises(PersistenceError):
        ledger.persist()
    assert ledger.usage("test") == 1


def test_concurrent_persists_write_complete_documents(ledger, traffic_file):
    for i in range(50):
        ledger.record(f"user{i}", i)

    errors = []

    def persist_many():
        try:
            for _ in range(20):
                ledger.persist()
        except PersistenceError as e:
            errors.append(e)

    threads = [threading.Thread(target=persist_many) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert len(json.loads(traffic_file.read_text())) == 50
