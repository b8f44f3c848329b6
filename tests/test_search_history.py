"""Tests for the search history."""
import time
from datetime import datetime, timedelta
from placefinder.core.search_history import months_between


def get_record(store, search):
    return store.conn.execute(
        "SELECT extended, hits, matches, ip FROM gazetteer_searches WHERE search_string = ?", [search]
    ).fetchone()


def test_months_between():
    """Only whole calendar months count."""
    assert months_between(datetime(2024, 1, 15), datetime(2024, 3, 15)) == 2
    assert months_between(datetime(2024, 1, 15), datetime(2024, 3, 14)) == 1
    assert months_between(datetime(2023, 6, 1), datetime(2024, 6, 1)) == 12


def test_unknown_search_not_done(history):
    assert not history.has_been_done_recently("SPRINGFIELD, IL", False)


def test_recorded_search_is_recent(history):
    """A normal search covers later normal searches but not extended ones."""
    history.record("SPRINGFIELD, IL", False, 1)

    assert history.has_been_done_recently("SPRINGFIELD, IL", False)
    assert not history.has_been_done_recently("SPRINGFIELD, IL", True)


def test_extended_search_covers_both(history):
    history.record("SPRINGFIELD, IL", True, 1)

    assert history.has_been_done_recently("SPRINGFIELD, IL", False)
    assert history.has_been_done_recently("SPRINGFIELD, IL", True)


def test_stale_search_not_recent(history, populated_db):
    """Records older than the refresh window no longer count."""
    history.record("SPRINGFIELD, IL", True, 1)
    populated_db.conn.execute(
        "UPDATE gazetteer_searches SET time_stamp = ? WHERE search_string = ?",
        [datetime.now() - timedelta(days=400), "SPRINGFIELD, IL"]
    )

    assert not history.has_been_done_recently("SPRINGFIELD, IL", False)


def test_repeated_search_updates_record(history, populated_db):
    """Hits accumulate, extended sticks and the best match count is kept."""
    history.record("ROME", True, 4)
    history.record("ROME", False, 2)

    extended, hits, matches, _ = get_record(populated_db, "ROME")
    assert extended
    assert hits == 2
    assert matches == 4


def test_debounced_by_ip(history, populated_db):
    """Rapid searches from one client produce a single record, the latest one."""
    history.debounce_seconds = 10
    history.record("SPR", False, 10, ip="10.0.0.1")
    history.record("SPRINGFIELD", False, 3, ip="10.0.0.1")
    history.record("ROME", False, 2, ip="10.0.0.2")

    assert history.pending_count() == 2

    history.flush()

    assert history.pending_count() == 0
    assert get_record(populated_db, "SPR") is None
    assert get_record(populated_db, "SPRINGFIELD")[3] == "10.0.0.1"
    assert get_record(populated_db, "ROME") is not None


def test_debounced_write_fires(history, populated_db):
    """A pending write happens on its own once the delay passes."""
    history.record("PARIS", False, 1, ip="10.0.0.3")

    deadline = time.monotonic() + 5
    while history.pending_count() and time.monotonic() < deadline:
        time.sleep(0.05)
    # The timer removes the entry just before writing
    time.sleep(0.2)

    assert get_record(populated_db, "PARIS") is not None
