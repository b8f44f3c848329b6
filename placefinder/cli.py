"""Command line interface: search the gazetteer or ingest GeoNames exports."""
import argparse
import json
import sys
from pathlib import Path

from placefinder.core.aggregator import RemoteAggregator
from placefinder.core.atlas import REMOTE_MODES, Atlas
from placefinder.core.config import DEFAULT_MATCH_LIMIT, DUCKDB_PATH, LOG_LEVEL
from placefinder.core.duckdb_store import DuckDBStore
from placefinder.core.errors import PlacefinderError
from placefinder.core.search_history import SearchHistory
from placefinder.gazetteers.geonames import GeoNamesSource
from placefinder.gazetteers.geonames_dump import GeoNamesDumpImporter
from placefinder.gazetteers.nominatim import NominatimSource
from placefinder.utils.logging import setup_logging


def run_search(args) -> int:
    store = DuckDBStore(args.db_path)
    tables = store.load_name_tables()
    aggregator = None

    if args.remote != "skip":
        aggregator = RemoteAggregator(GeoNamesSource(tables), NominatimSource(tables))

    history = SearchHistory(store)
    atlas = Atlas(store, tables, aggregator, history)

    try:
        result = atlas.search(
            args.query,
            version=args.version,
            lang=args.lang,
            remote_mode=args.remote,
            limit=args.limit,
            client="cli",
            no_trace=args.no_trace
        )
        history.flush()
    finally:
        if aggregator:
            aggregator.close()
        store.close()

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(result.to_plain_text())

    return 1 if result.error else 0


def run_ingest(args) -> int:
    if not args.directory.is_dir():
        print(f"Error: Directory not found: {args.directory}", file=sys.stderr)
        return 1

    store = DuckDBStore(args.db_path)

    try:
        importer = GeoNamesDumpImporter(store)
        counts = importer.ingest_directory(args.directory, args.places_file, args.min_population)
    finally:
        store.close()

    for label, count in counts.items():
        print(f"{label}: {count}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="placefinder", description="Gazetteer place search")
    parser.add_argument("--db-path", type=Path, default=DUCKDB_PATH, help="DuckDB database path")
    parser.add_argument("--log-level", default=LOG_LEVEL, help=f"Log level (default: {LOG_LEVEL})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Search for a place")
    search.add_argument("query", help='Search text, e.g. "Springfield, IL" or "90210"')
    search.add_argument("--lang", default="", help="Two-letter language code for localized names")
    search.add_argument("--remote", default="skip", choices=REMOTE_MODES,
                        help="Remote source mode (default: skip)")
    search.add_argument("--limit", type=int, default=DEFAULT_MATCH_LIMIT,
                        help=f"Maximum number of matches (default: {DEFAULT_MATCH_LIMIT})")
    search.add_argument("--version", type=int, default=9,
                        help="Client protocol version; below 3 parses loosely")
    search.add_argument("--no-trace", action="store_true", help="Do not record the search")
    search.add_argument("--json", action="store_true", help="Print JSON instead of plain text")
    search.set_defaults(func=run_search)

    ingest = subparsers.add_parser("ingest", help="Import GeoNames export files")
    ingest.add_argument("directory", type=Path, help="Directory holding the GeoNames exports")
    ingest.add_argument("--places-file", default="allCountries.txt",
                        help="Place file name within the directory (default: allCountries.txt)")
    ingest.add_argument("--min-population", type=int, default=0,
                        help="Skip populated places smaller than this")
    ingest.set_defaults(func=run_ingest)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        sys.exit(args.func(args))
    except PlacefinderError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
