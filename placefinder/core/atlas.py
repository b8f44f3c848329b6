"""Place search coordinator: parse, match, consult remote sources, merge."""
import asyncio
from typing import List, Optional

from placefinder.core.aggregator import RemoteAggregator
from placefinder.core.config import DEFAULT_MATCH_LIMIT, MAX_MATCH_LIMIT
from placefinder.core.duckdb_store import DuckDBStore
from placefinder.core.errors import CorpusError
from placefinder.core.lookups import NameTables
from placefinder.core.matcher import CorpusMatcher
from placefinder.core.merge import merge_location_maps
from placefinder.core.models import (
    LocationMap,
    ParsedQuery,
    RemoteSearchResults,
    SearchResult,
    format_variable_precision,
)
from placefinder.core.parser import parse_search_string
from placefinder.core.search_history import SearchHistory
from placefinder.utils.logging import log_error, log_structured
from placefinder.utils.timing import Timer

REMOTE_MODES = ("skip", "normal", "extend", "forced", "only", "geonames", "nominatim")
WITHOUT_CORPUS_MODES = ("only", "geonames", "nominatim")
EXTENDED_MODES = ("extend", "only", "forced")
ALWAYS_REMOTE_MODES = ("forced", "only", "geonames", "nominatim")

SUPPLEMENTARY_UNAVAILABLE = "Supplementary data temporarily unavailable."
SOME_SUPPLEMENTARY_UNAVAILABLE = "Some supplementary data temporarily unavailable."


def create_compact_log_summary(
    result: SearchResult,
    remote_results: Optional[RemoteSearchResults],
    source_names: List[str],
    corpus_match_count: int,
    corpus_error: Optional[str],
    elapsed: float,
    client: str = "",
    version: int = 9
) -> str:
    """
    One-line summary of a search, e.g. "Paris: 12+(10;3;-)[-;-;Nominatim search timed out][1.2s;v9]".

    Counts in parentheses are corpus;source A;source B, with "-" for a source
    that returned nothing. The first bracket lists errors the same way and is
    omitted when there were none.
    """
    log = [f"{result.original_search}: {result.count}"]

    if result.limit_reached:
        log.append("+")

    if remote_results:
        counts = [str(corpus_match_count)]
        counts += [str(len(remote_results.matches[name])) if name in remote_results.matches else "-"
                   for name in source_names]
        log.append("(" + ";".join(counts) + ")")
    else:
        log.append("(db)")

    if corpus_error or (remote_results and not remote_results.no_errors):
        if not remote_results:
            errors = [corpus_error]
        else:
            errors = [corpus_error or "-"] + [remote_results.errors.get(name, "-") for name in source_names]

        log.append("[" + ";".join(errors) + "]")

    tail = [format_variable_precision(elapsed) + "s"]

    if client == "sa":
        tail.append("sa")
    if version >= 3:
        tail.append(f"v{version}")

    log.append("[" + ";".join(tail) + "]")

    return "".join(log)


class Atlas:
    """Answers place search requests against the corpus and the remote sources."""

    def __init__(
        self,
        store: Optional[DuckDBStore],
        tables: NameTables,
        aggregator: Optional[RemoteAggregator] = None,
        history: Optional[SearchHistory] = None
    ):
        """
        Initialize the coordinator.

        Args:
            store: Corpus store; None limits searches to the remote sources
            tables: Name tables shared by parsing and matching
            aggregator: Remote sources; None disables remote lookups
            history: Search history; None consults remote sources whenever the
                remote mode allows it
        """
        self.store = store
        self.tables = tables
        self.aggregator = aggregator
        self.history = history

    def _source_names(self) -> List[str]:
        if self.aggregator is None:
            return []

        return [source.name for source in (self.aggregator.source_a, self.aggregator.source_b) if source]

    def _should_consult_remote(self, remote_mode: str, parsed: ParsedQuery, extend: bool) -> bool:
        if self.aggregator is None:
            return False
        elif remote_mode in ALWAYS_REMOTE_MODES:
            return True
        elif remote_mode == "skip":
            return False
        elif self.history is None:
            return True

        try:
            return not self.history.has_been_done_recently(parsed.normalized_search, extend)
        except CorpusError as e:
            log_error(e, {"module": "atlas", "function": "_should_consult_remote"})
            return True

    def _search_corpus(self, parsed: ParsedQuery, extend: bool, max_matches: int,
                       lang: Optional[str]) -> LocationMap:
        if self.store is None:
            raise CorpusError("No corpus available")

        with self.store.session() as corpus:
            return CorpusMatcher(corpus, self.tables).search(parsed, extend, max_matches, True, lang)

    def search(self, q: str, **kwargs) -> SearchResult:
        """Blocking form of search_async."""
        return asyncio.run(self.search_async(q, **kwargs))

    async def search_async(
        self,
        q: str,
        *,
        version: int = 9,
        lang: str = "",
        remote_mode: str = "skip",
        limit: int = DEFAULT_MATCH_LIMIT,
        client: str = "",
        no_trace: bool = False,
        ip: Optional[str] = None
    ) -> SearchResult:
        """
        Search for places matching a free-form query.

        Args:
            q: Query such as "Springfield, IL", "Rome Italy" or "90210"
            version: Client protocol version; versions before 3 parse loosely
            lang: Two-letter language code for localized names
            remote_mode: skip, normal, extend, forced, only, geonames or nominatim
            limit: Maximum number of matches, capped at MAX_MATCH_LIMIT
            client: Client identifier, used in the log summary
            no_trace: Do not record the search in the search history
            ip: Client address, used to debounce search history writes

        Returns:
            SearchResult
        """
        with Timer("atlas_search", log=False) as timer:
            q = (q or "").strip()
            remote_mode = (remote_mode or "skip").lower()
            remote_mode = remote_mode if remote_mode in REMOTE_MODES else "skip"
            without_corpus = remote_mode in WITHOUT_CORPUS_MODES
            extend = remote_mode in EXTENDED_MODES
            limit = min(limit or DEFAULT_MATCH_LIMIT, MAX_MATCH_LIMIT)
            lang = (lang or "").strip().lower()[:2] or None
            no_trace = no_trace or remote_mode == "only"

            parsed = parse_search_string(q, "loose" if version < 3 else "strict", self.tables)
            result = SearchResult(original_search=q, normalized_search=parsed.normalized_search)
            history_key = parsed.normalized_search
            corpus_matches: Optional[LocationMap] = None
            remote_results: Optional[RemoteSearchResults] = None
            corpus_error: Optional[str] = None
            corpus_matched_only_by_sound = False

            for attempt in range(2):
                consult_remote = self._should_consult_remote(remote_mode, parsed, extend)

                if not without_corpus:
                    try:
                        corpus_matches = self._search_corpus(parsed, extend, limit + 1, lang)
                        corpus_matched_only_by_sound = all(
                            location.matched_by_sound for location in corpus_matches.values()
                        )
                        corpus_error = None
                    except CorpusError as e:
                        corpus_error = str(e)
                        log_error(e, {"module": "atlas", "attempt": attempt, "search": q})

                        if attempt == 0:
                            continue

                if consult_remote:
                    remote_results = await self.aggregator.search(
                        parsed,
                        use_a=remote_mode != "nominatim",
                        use_b=remote_mode != "geonames"
                    )

                    # Remote data beats sound-alike guesses
                    if remote_results.match_count > 0 and corpus_matched_only_by_sound:
                        corpus_matches = None

                break

            source_names = self._source_names()
            remote_maps = [remote_results.matches.get(name) for name in source_names] if remote_results else []
            matches = merge_location_maps(corpus_matches, *remote_maps, limit=limit + 1)

            if len(matches) > limit:
                matches = matches[:limit]
                result.limit_reached = True

            result.matches = matches

            if parsed.alt_normalized:
                result.normalized_search += "; " + parsed.alt_normalized

            self._summarize(result, remote_results, source_names, corpus_error, extend)

            log_structured(
                "info",
                create_compact_log_summary(
                    result, remote_results, source_names,
                    len(corpus_matches) if corpus_matches else 0,
                    corpus_error, timer.so_far, client, version
                ),
                lang=lang,
                ip=ip
            )

            if self.history is not None and not no_trace and not without_corpus and corpus_error is None:
                try:
                    self.history.record(history_key, extend, result.count, ip, lang)
                except CorpusError as e:
                    log_error(e, {"module": "atlas", "function": "record"})

            result.time = timer.so_far

        return result

    @staticmethod
    def _summarize(
        result: SearchResult,
        remote_results: Optional[RemoteSearchResults],
        source_names: List[str],
        corpus_error: Optional[str],
        extend: bool
    ):
        result.error = corpus_error

        if not remote_results:
            return

        for name in source_names:
            metrics = remote_results.metrics.get(name)

            if metrics is not None:
                line = (f"{name} raw matches: {metrics.raw_count}, filtered matches: {metrics.matched_count}, "
                        f"retrieval time: {format_variable_precision(metrics.retrieval_time)}s.")
                if not metrics.complete:
                    line += " Partial results."
                result.append_info_line(line)
            elif name in remote_results.errors:
                result.append_info_line(f"{name} error: {remote_results.errors[name]}")

        errors = [remote_results.errors.get(name) for name in source_names] + [None, None]
        error_a, error_b = errors[0], errors[1]

        if error_a and (not extend or error_b):
            result.append_warning_line(SUPPLEMENTARY_UNAVAILABLE)
        elif error_a or error_b:
            result.append_warning_line(SOME_SUPPLEMENTARY_UNAVAILABLE)
