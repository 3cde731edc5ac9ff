"""
Unit tests for SyncEngine.

Stations are simulated in one process: each has its own StateStore and
SyncEngine, all attached to the same MemoryRowStore or to one SQLite file.
"""

import json
import os
import tempfile
import time
from unittest.mock import Mock

import pytest

from jamsync.database import Database
from jamsync.models import Band, InstrumentType, User
from jamsync.queue import BandQueueManager
from jamsync.state import BANDS, USERS, StateStore, encode_collection
from jamsync.store import MemoryRowStore, SqliteRowStore, StoreError
from jamsync.sync import SyncEngine, fingerprint
from jamsync.user import UserManager


def make_user(user_id):
    return User(
        id=user_id,
        first_name="Luca",
        last_name="Verdi",
        username=user_id,
        instruments=[InstrumentType.DRUMS],
    )


def make_station(row_store, loop):
    state_store = StateStore()
    engine = SyncEngine(state_store, row_store, loop)
    return state_store, engine


@pytest.fixture
def seeded_rows():
    users = [make_user("a"), make_user("b")]
    bands = [Band(id="b1", name="BandA"), Band(id="b2", name="BandB")]
    return {
        USERS: encode_collection(USERS, users),
        BANDS: encode_collection(BANDS, bands),
    }


def test_fingerprint_ignores_key_order():
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint([1, 2]) != fingerprint([2, 1])


def test_bootstrap_loads_rows_without_writing(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)

    assert engine.bootstrap()
    assert [u.id for u in state_store.users] == ["a", "b"]
    assert [b.name for b in state_store.bands] == ["BandA", "BandB"]
    assert row_store.writes == []
    assert not engine.bootstrapping


def test_bootstrap_seeds_demo_roster_without_pushing(manual_loop):
    row_store = MemoryRowStore()
    state_store, engine = make_station(row_store, manual_loop)

    assert engine.bootstrap()
    assert len(state_store.users) > 0
    assert row_store.writes == []

    # The demo roster goes upstream with the next roster change
    UserManager(state_store).register("Nuovo", "Utente", "nuovo", [InstrumentType.KEYS])
    assert [key for key, _ in row_store.writes] == [USERS]
    assert len(row_store.writes[0][1]) == len(state_store.users)


def test_bootstrap_failure_enters_degraded_mode(manual_loop):
    row_store = Mock()
    row_store.fetch_all.side_effect = StoreError("offline")
    state_store, engine = make_station(row_store, manual_loop)

    assert not engine.bootstrap()
    assert engine.degraded
    assert len(state_store.users) > 0
    row_store.subscribe.assert_not_called()

    BandQueueManager(state_store).create_manual_band()
    row_store.write.assert_not_called()


def test_bootstrap_skips_malformed_rows(manual_loop, seeded_rows):
    seeded_rows[BANDS] = {"not": "a list"}
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)

    assert engine.bootstrap()
    assert len(state_store.users) == 2
    assert state_store.bands == ()


def test_local_change_is_written_once(manual_loop, seeded_rows):
    """Our own change comes back through the push channel and is dropped."""
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    listener = Mock()
    state_store.add_listener(listener)

    BandQueueManager(state_store).rename("b1", "Nuovo Nome")

    assert [key for key, _ in row_store.writes] == [BANDS]
    # One local change, no remote re-application of the echo
    assert listener.call_count == 1
    assert listener.call_args[0][3] == "local"


def test_rename_reaches_other_station(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_a, engine_a = make_station(row_store, manual_loop)
    state_b, engine_b = make_station(row_store, manual_loop)
    engine_a.bootstrap()
    engine_b.bootstrap()

    BandQueueManager(state_a).rename("b1", "Funk Station")

    assert state_b.bands[0].name == "Funk Station"
    assert state_b.bands[1].name == "BandB"
    # Station B adopted the value without writing it back
    assert len(row_store.writes) == 1


def test_redelivered_push_is_dropped(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()

    value = encode_collection(BANDS, [Band(id="b9", name="Remote")])
    assert engine.apply_remote(BANDS, value)
    before = state_store.state
    assert not engine.apply_remote(BANDS, value)
    assert state_store.state is before


def test_push_equal_to_local_state_is_dropped(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()

    assert not engine.apply_remote(USERS, seeded_rows[USERS])


def test_malformed_push_is_ignored(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    before = state_store.state

    assert not engine.apply_remote(USERS, "garbage")
    assert not engine.apply_remote(USERS, [{"id": "x"}])
    assert not engine.apply_remote("songs", [])
    assert state_store.state is before


def test_write_failure_is_logged_and_retried_on_next_change(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    queue = BandQueueManager(state_store)

    original_write = row_store.write
    row_store.write = Mock(side_effect=StoreError("disk full"))
    queue.rename("b1", "Primo")
    assert state_store.bands[0].name == "Primo"

    # The failed content is not considered delivered
    row_store.write = original_write
    assert engine.push(BANDS)
    assert row_store.fetch_all()[BANDS][0]["name"] == "Primo"


def test_close_stops_both_directions(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    engine.close()

    BandQueueManager(state_store).rename("b1", "Offline")
    assert row_store.writes == []

    row_store.write(BANDS, [])
    assert state_store.bands[0].name == "Offline"


def test_late_echo_of_earlier_write_is_dropped(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    queue = BandQueueManager(state_store)

    queue.rename("b1", "Prima")
    first_value = row_store.fetch_all()[BANDS]
    queue.rename("b1", "Seconda")

    assert not engine.apply_remote(BANDS, first_value)
    assert state_store.bands[0].name == "Seconda"


def test_old_value_from_another_station_after_adoption_is_applied(manual_loop, seeded_rows):
    row_store = MemoryRowStore(seeded_rows)
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()

    BandQueueManager(state_store).rename("b1", "Prima")
    first_value = row_store.fetch_all()[BANDS]
    assert engine.apply_remote(BANDS, encode_collection(BANDS, [Band(id="b9", name="Remote")]))

    # Someone else writes our old value back: that is a real change now
    assert engine.apply_remote(BANDS, first_value)
    assert state_store.bands[0].name == "Prima"


# SQLite change feed


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def shared_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    db.close()
    os.unlink(path)


@pytest.fixture
def sqlite_rows(shared_db):
    stores = []

    def open_station():
        store = SqliteRowStore(shared_db, poll_interval=0.05)
        stores.append(store)
        return store

    yield open_station
    for store in stores:
        store.close()


def test_sqlite_bootstrap_keeps_valid_rows_next_to_corrupt_one(
    manual_loop, shared_db, sqlite_rows, seeded_rows
):
    writer = sqlite_rows()
    writer.write(USERS, seeded_rows[USERS])
    writer.write(BANDS, seeded_rows[BANDS])
    conn = shared_db.get_connection()
    try:
        conn.execute("INSERT INTO app_storage (key, value) VALUES ('history', '{not json')")
        conn.commit()
    finally:
        conn.close()

    state_store, engine = make_station(sqlite_rows(), manual_loop)

    assert engine.bootstrap()
    assert not engine.degraded
    assert [b.name for b in state_store.bands] == ["BandA", "BandB"]
    assert [u.id for u in state_store.users] == ["a", "b"]
    engine.close()


def test_sqlite_write_between_bootstrap_and_subscribe_is_delivered(
    manual_loop, sqlite_rows, seeded_rows
):
    other_station = sqlite_rows()
    other_station.write(USERS, seeded_rows[USERS])
    other_station.write(BANDS, encode_collection(BANDS, [Band(id="b1", name="Old")]))

    row_store = sqlite_rows()
    fetch_all = row_store.fetch_all

    def fetch_then_remote_write():
        rows = fetch_all()
        other_station.write(BANDS, encode_collection(BANDS, [Band(id="b1", name="New")]))
        return rows

    row_store.fetch_all = fetch_then_remote_write
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()

    assert wait_for(lambda: state_store.bands[0].name == "New")
    engine.close()


def test_sqlite_stale_self_echo_does_not_undo_newer_write(
    manual_loop, sqlite_rows, seeded_rows
):
    row_store = sqlite_rows()
    row_store.write(USERS, seeded_rows[USERS])
    row_store.write(BANDS, seeded_rows[BANDS])
    state_store, engine = make_station(row_store, manual_loop)
    engine.bootstrap()
    queue = BandQueueManager(state_store)

    queue.rename("b1", "Prima")
    captured = row_store.repository.get(BANDS)["value"]
    queue.rename("b1", "Seconda")

    # The feed read the row between the two writes
    assert not engine.apply_remote(BANDS, json.loads(captured))
    assert state_store.bands[0].name == "Seconda"
    assert wait_for(lambda: row_store.fetch_all()[BANDS][0]["name"] == "Seconda")
    time.sleep(0.2)
    assert state_store.bands[0].name == "Seconda"
    engine.close()
