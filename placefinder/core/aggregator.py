"""Concurrent fan-out to the remote geocoding sources."""
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import List, Optional, Tuple

from placefinder.core.errors import SourceTimeoutError
from placefinder.core.models import LocationMap, ParsedQuery, RemoteSearchResults, SourceMetrics
from placefinder.gazetteers.base import RemoteSource
from placefinder.utils.logging import log_error, log_structured


class RemoteAggregator:
    """
    Runs the two remote sources side by side, each under its own timeout.

    Lookups are blocking HTTP clients, so they run on a private thread pool.
    A failure or timeout in one source never affects the other: each outcome
    is recorded in its own slot of the returned RemoteSearchResults.
    """

    def __init__(self, source_a: Optional[RemoteSource], source_b: Optional[RemoteSource], max_workers: int = 4):
        self.source_a = source_a
        self.source_b = source_b
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="remote-source")

    async def _lookup(self, source: RemoteSource, parsed: ParsedQuery) -> Tuple[LocationMap, SourceMetrics]:
        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()
        call = partial(
            source.lookup,
            parsed.target_city,
            parsed.target_state,
            parsed.postal_code,
            cancel_event=cancel_event
        )

        try:
            return await asyncio.wait_for(loop.run_in_executor(self._executor, call), timeout=source.timeout)
        except asyncio.TimeoutError:
            # The worker thread stops at its next cancellation check
            cancel_event.set()
            raise SourceTimeoutError(source.name, f"{source.name} search timed out")

    async def search(self, parsed: ParsedQuery, use_a: bool = True, use_b: bool = True) -> RemoteSearchResults:
        """
        Query the enabled sources concurrently.

        Args:
            parsed: Parsed query
            use_a: Query source A
            use_b: Query source B; always skipped for postal code searches

        Returns:
            RemoteSearchResults with matches and metrics for each source that
            succeeded and an error message for each that failed
        """
        results = RemoteSearchResults()
        launched: List[RemoteSource] = []

        if use_a and self.source_a is not None:
            launched.append(self.source_a)

        if use_b and self.source_b is not None and not parsed.postal_code:
            launched.append(self.source_b)

        if not launched:
            return results

        outcomes = await asyncio.gather(
            *(self._lookup(source, parsed) for source in launched),
            return_exceptions=True
        )

        for source, outcome in zip(launched, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            elif isinstance(outcome, Exception):
                results.errors[source.name] = str(outcome) or type(outcome).__name__
                log_error(outcome, {"module": "aggregator", "source": source.name})
            else:
                matches, metrics = outcome
                results.matches[source.name] = matches
                results.metrics[source.name] = metrics

        log_structured(
            "debug",
            "Remote search complete",
            search=parsed.normalized_search,
            match_count=results.match_count,
            errors=results.errors
        )

        return results

    def close(self):
        self._executor.shutdown(wait=False)
