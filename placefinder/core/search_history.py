"""Record of past searches, used to decide when remote sources are worth consulting again."""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

import duckdb

from placefinder.core.config import MAX_MONTHS_BEFORE_REDOING_EXTENDED_SEARCH, SEARCH_LOG_DEBOUNCE_SECONDS
from placefinder.core.duckdb_store import DuckDBStore
from placefinder.core.errors import CorpusError
from placefinder.utils.logging import log_error


def months_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar months from earlier to later."""
    months = (later.year - earlier.year) * 12 + later.month - earlier.month

    if (later.day, later.time()) < (earlier.day, earlier.time()):
        months -= 1

    return months


@dataclass
class _PendingWrite:
    timer: threading.Timer
    args: Tuple


class SearchHistory:
    """
    Best-effort cache of which normalized searches were run, and how.

    Concurrent identical searches may both decide to consult the remote
    sources; the history only guarantees that a search is eventually recorded.
    Writes for a client IP are debounced so that a burst of as-you-type
    searches from one client produces a single record.
    """

    def __init__(self, store: DuckDBStore, debounce_seconds: float = SEARCH_LOG_DEBOUNCE_SECONDS):
        self.store = store
        self.debounce_seconds = debounce_seconds
        self._pending: Dict[str, _PendingWrite] = {}
        self._lock = threading.Lock()

    def _lookup(self, cursor, search: str) -> Optional[Tuple[bool, int, int, datetime]]:
        return cursor.execute(
            "SELECT extended, hits, matches, time_stamp FROM gazetteer_searches WHERE search_string = ?",
            [search]
        ).fetchone()

    @staticmethod
    def _is_fresh(record, extended: bool) -> bool:
        was_extended, _, _, time_stamp = record
        age = months_between(time_stamp, datetime.now())

        return age < MAX_MONTHS_BEFORE_REDOING_EXTENDED_SEARCH and (was_extended or not extended)

    def has_been_done_recently(self, search: str, extended: bool) -> bool:
        """
        Check whether remote sources were consulted for this search recently enough.

        Args:
            search: Normalized search string
            extended: Whether the new request is an extended search

        Returns:
            True if a record younger than the refresh window exists and it was
            extended or the new request is not
        """
        cursor = self.store.cursor()

        try:
            record = self._lookup(cursor, search)
        except duckdb.Error as e:
            raise CorpusError(f"Search history lookup failed: {e}") from e
        finally:
            cursor.close()

        return record is not None and self._is_fresh(record, extended)

    def record(self, search: str, extended: bool, match_count: int, ip: Optional[str] = None,
               lang: Optional[str] = None):
        """
        Record a completed search.

        With an ip, the write is delayed; a newer search from the same ip
        within the delay replaces the pending one.
        """
        args = (search, extended, match_count, ip, lang)

        if not ip:
            self._write(*args)
            return

        with self._lock:
            pending = self._pending.get(ip)

            if pending:
                pending.timer.cancel()

            timer = threading.Timer(self.debounce_seconds, self._fire, args=(ip,))
            timer.daemon = True
            self._pending[ip] = _PendingWrite(timer, args)
            timer.start()

    def _fire(self, ip: str):
        with self._lock:
            pending = self._pending.pop(ip, None)

        if pending is None:
            return

        try:
            self._write(*pending.args)
        except CorpusError as e:
            log_error(e, {"module": "search_history", "ip": ip})

    def flush(self):
        """Perform all pending debounced writes now."""
        with self._lock:
            pending_writes = list(self._pending.values())
            self._pending.clear()

        for pending in pending_writes:
            pending.timer.cancel()
            self._write(*pending.args)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _write(self, search: str, extended: bool, match_count: int, ip: Optional[str], lang: Optional[str]):
        cursor = self.store.cursor()
        now = datetime.now()

        try:
            record = self._lookup(cursor, search)

            if record is None:
                cursor.execute(
                    """
                    INSERT INTO gazetteer_searches (search_string, extended, hits, matches, ip, lang, time_stamp)
                    VALUES (?, ?, 1, ?, ?, ?, ?)
                    """,
                    [search, extended, match_count, ip or "", lang or "", now]
                )
                return

            was_extended, hits, matches, time_stamp = record
            # A stale record means the remote sources were just consulted again
            if not self._is_fresh(record, extended):
                time_stamp = now

            cursor.execute(
                """
                UPDATE gazetteer_searches
                SET hits = ?, extended = ?, matches = ?, ip = ?, lang = ?, time_stamp = ?
                WHERE search_string = ?
                """,
                [hits + 1, extended or was_extended, max(match_count, matches or 0), ip or "", lang or "",
                 time_stamp, search]
            )
        except duckdb.Error as e:
            raise CorpusError(f"Search history update failed: {e}") from e
        finally:
            cursor.close()
