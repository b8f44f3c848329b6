"""DuckDB storage layer for the gazetteer corpus."""
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set

import duckdb

from placefinder.core.config import DEFAULT_LANG, DUCKDB_PATH
from placefinder.core.corpus import AltNameRow, Corpus, CorpusRow, MatchType, PostalRow
from placefinder.core.errors import CorpusError
from placefinder.core.lookups import NameTables
from placefinder.core.normalization import phonetic_codes, simplify, standardize_short_county_name
from placefinder.utils.logging import log_structured
from placefinder.utils.timing import time_function

PLACE_COLUMNS = """
    id, name, country, COALESCE(admin1, ''), COALESCE(admin2, ''), latitude, longitude, elevation,
    timezone, COALESCE(place_rank, 0), COALESCE(feature_code, 'P.PPL'), COALESCE(source, ''),
    COALESCE(geonames_id, 0), postal_code
"""

POSTAL_COLUMNS = """
    id, code, name, country, COALESCE(admin1, ''), latitude, longitude, COALESCE(accuracy, 0),
    timezone, COALESCE(source, 'GEOZ'), COALESCE(gazetteer_id, 0)
"""

# Regional flags that have no ISO country code of their own
REGIONAL_FLAG_CODES = {"england", "scotland", "wales", "catalonia"}


class DuckDBCorpus(Corpus):
    """Corpus queries bound to one DuckDB cursor."""

    def __init__(self, cursor: duckdb.DuckDBPyConnection):
        self.cursor = cursor

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        try:
            return self.cursor.execute(sql, list(params)).fetchall()
        except duckdb.Error as e:
            raise CorpusError(f"Corpus query failed: {e}") from e

    def search(self, match_type: MatchType, values: Sequence[str], positive_rank_only: bool) -> List[CorpusRow]:
        if match_type == MatchType.STARTS_WITH:
            condition = "key_name >= ? AND key_name < ?"
        elif match_type == MatchType.SOUNDS_LIKE:
            condition = "(mphone1 = ? OR mphone2 = ?)"
        else:
            condition = "key_name = ?"

        if positive_rank_only:
            condition += " AND place_rank > 0"

        rows = self._query(f"SELECT {PLACE_COLUMNS} FROM gazetteer WHERE {condition}", values)
        return [CorpusRow(*row) for row in rows]

    def find_alt_names(self, match_type: MatchType, values: Sequence[str], lang: Optional[str],
                       any_language: bool = False) -> List[AltNameRow]:
        params = list(values)

        if match_type == MatchType.STARTS_WITH:
            condition = "key_name >= ? AND key_name < ?"
        else:
            condition = "key_name = ?"

        condition += " AND name_type = 'P'"

        if any_language:
            condition += " AND (lang = '' OR lang = ? OR lang = ?)"
            params += [DEFAULT_LANG, lang or ""]
        else:
            condition += " AND lang = ?"
            params.append(lang or "")

            if match_type != MatchType.STARTS_WITH:
                condition += " AND NOT colloquial AND NOT historic"

        rows = self._query(
            f"SELECT COALESCE(gazetteer_id, 0), name, COALESCE(lang, '') FROM gazetteer_alt_names WHERE {condition}",
            params
        )
        return [AltNameRow(*row) for row in rows]

    def find_postal_codes(self, code: str) -> List[PostalRow]:
        rows = self._query(f"SELECT {POSTAL_COLUMNS} FROM gazetteer_postal WHERE code = ?", [code])
        return [PostalRow(*row) for row in rows]

    def places_by_id(self, ids: Iterable[int], positive_rank_only: bool) -> List[CorpusRow]:
        ids = list(ids)

        if not ids:
            return []

        condition = f"id IN ({', '.join('?' for _ in ids)})"

        if positive_rank_only:
            condition += " AND place_rank > 0"

        rows = self._query(f"SELECT {PLACE_COLUMNS} FROM gazetteer WHERE {condition}", ids)
        return [CorpusRow(*row) for row in rows]


class DuckDBStore:
    """DuckDB storage manager for the gazetteer corpus and search history."""

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize DuckDB connection.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
        """
        self.db_path = db_path or DUCKDB_PATH

        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = duckdb.connect(str(self.db_path))
        except duckdb.Error as e:
            raise CorpusError(f"Cannot open corpus database {self.db_path}: {e}") from e

        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS gazetteer (
                id BIGINT PRIMARY KEY,
                name VARCHAR,
                key_name VARCHAR,
                admin1 VARCHAR,
                admin2 VARCHAR,
                country VARCHAR,
                latitude DOUBLE,
                longitude DOUBLE,
                elevation DOUBLE,
                timezone VARCHAR,
                place_rank INTEGER,
                feature_code VARCHAR,
                source VARCHAR,
                geonames_id BIGINT,
                postal_code VARCHAR,
                mphone1 VARCHAR,
                mphone2 VARCHAR
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS gazetteer_alt_names (
                gazetteer_id BIGINT,
                geonames_orig_id BIGINT,
                key_name VARCHAR,
                name VARCHAR,
                lang VARCHAR,
                name_type VARCHAR,
                colloquial BOOLEAN DEFAULT FALSE,
                historic BOOLEAN DEFAULT FALSE,
                preferred BOOLEAN DEFAULT FALSE,
                short BOOLEAN DEFAULT FALSE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS gazetteer_postal (
                id BIGINT PRIMARY KEY,
                code VARCHAR,
                name VARCHAR,
                admin1 VARCHAR,
                country VARCHAR,
                latitude DOUBLE,
                longitude DOUBLE,
                accuracy INTEGER,
                timezone VARCHAR,
                source VARCHAR,
                gazetteer_id BIGINT
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS gazetteer_countries (
                iso3 VARCHAR PRIMARY KEY,
                iso2 VARCHAR,
                name VARCHAR,
                postal_regex VARCHAR,
                geonames_id BIGINT
            )
        """)

        for table in ("gazetteer_admin1", "gazetteer_admin2"):
            self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    key_name VARCHAR PRIMARY KEY,
                    name VARCHAR,
                    geonames_id BIGINT
                )
            """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS gazetteer_searches (
                search_string VARCHAR PRIMARY KEY,
                extended BOOLEAN,
                hits INTEGER,
                matches INTEGER,
                ip VARCHAR,
                lang VARCHAR,
                time_stamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_gazetteer_key ON gazetteer(key_name)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_gazetteer_mphone1 ON gazetteer(mphone1)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_gazetteer_mphone2 ON gazetteer(mphone2)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_alt_names_key ON gazetteer_alt_names(key_name)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_postal_code ON gazetteer_postal(code)")

    def cursor(self) -> duckdb.DuckDBPyConnection:
        return self.conn.cursor()

    @contextmanager
    def session(self) -> Iterator[DuckDBCorpus]:
        """Corpus bound to a fresh cursor, closed when the block exits."""
        try:
            cursor = self.conn.cursor()
        except duckdb.Error as e:
            raise CorpusError(f"Cannot open corpus session: {e}") from e

        try:
            yield DuckDBCorpus(cursor)
        finally:
            cursor.close()

    def add_places(self, places: Iterable[Dict[str, Any]]):
        """
        Insert gazetteer records, deriving their match and phonetic keys.

        Args:
            places: Dicts with CorpusRow field names (id, name, country, admin1, ...)
        """
        rows = []

        for place in places:
            key_name = simplify(place["name"])
            codes = phonetic_codes(key_name) or (None, None)
            rows.append((
                place["id"],
                place["name"],
                key_name,
                place.get("admin1", ""),
                place.get("admin2", ""),
                place["country"],
                place.get("latitude", 0.0),
                place.get("longitude", 0.0),
                place.get("elevation"),
                place.get("timezone"),
                place.get("rank", 0),
                place.get("feature_code", "P.PPL"),
                str(place.get("source", "")),
                place.get("geonames_id", 0),
                place.get("postal_code"),
                codes[0],
                codes[1],
            ))

        if rows:
            self.conn.executemany(
                """
                INSERT INTO gazetteer
                (id, name, key_name, admin1, admin2, country, latitude, longitude, elevation, timezone,
                 place_rank, feature_code, source, geonames_id, postal_code, mphone1, mphone2)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows
            )

    def add_alt_names(self, alt_names: Iterable[Dict[str, Any]]):
        rows = [
            (
                alt.get("gazetteer_id", 0),
                alt.get("geonames_orig_id", 0),
                simplify(alt["name"]),
                alt["name"],
                alt.get("lang", ""),
                alt.get("type", "P"),
                alt.get("colloquial", False),
                alt.get("historic", False),
                alt.get("preferred", False),
                alt.get("short", False),
            )
            for alt in alt_names
        ]

        if rows:
            self.conn.executemany(
                """
                INSERT INTO gazetteer_alt_names
                (gazetteer_id, geonames_orig_id, key_name, name, lang, name_type,
                 colloquial, historic, preferred, short)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows
            )

    def add_postal_codes(self, postal_codes: Iterable[Dict[str, Any]]):
        rows = [
            (
                postal["id"],
                postal["code"],
                postal["name"],
                postal.get("admin1", ""),
                postal["country"],
                postal.get("latitude", 0.0),
                postal.get("longitude", 0.0),
                postal.get("accuracy", 0),
                postal.get("timezone"),
                postal.get("source", "GEOZ"),
                postal.get("gazetteer_id", 0),
            )
            for postal in postal_codes
        ]

        if rows:
            self.conn.executemany(
                """
                INSERT INTO gazetteer_postal
                (id, code, name, admin1, country, latitude, longitude, accuracy, timezone, source, gazetteer_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows
            )

    def add_countries(self, countries: Iterable[Dict[str, Any]]):
        rows = [
            (c["iso3"], c.get("iso2"), c["name"], c.get("postal_regex"), c.get("geonames_id", 0))
            for c in countries
        ]

        if rows:
            self.conn.executemany(
                """
                INSERT OR REPLACE INTO gazetteer_countries (iso3, iso2, name, postal_regex, geonames_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows
            )

    def add_admin_names(self, level: int, admins: Iterable[Dict[str, Any]]):
        """Insert admin-1 ("USA.IL") or admin-2 ("USA.IL.031") names."""
        table = "gazetteer_admin1" if level == 1 else "gazetteer_admin2"
        rows = [(a["key_name"], a["name"], a.get("geonames_id", 0)) for a in admins]

        if rows:
            self.conn.executemany(
                f"INSERT OR REPLACE INTO {table} (key_name, name, geonames_id) VALUES (?, ?, ?)",
                rows
            )

    @time_function
    def load_name_tables(self, flag_codes: Optional[Set[str]] = None) -> NameTables:
        """
        Build the name tables from the country, admin and alternate-name tables.

        Args:
            flag_codes: Available flag image codes; defaults to every ISO-2 code
                plus the regional flags

        Returns:
            NameTables
        """
        tables = NameTables()
        id_to_code3: Dict[int, str] = {}

        for iso3, iso2, name, postal_regex, geonames_id in self.conn.execute(
                "SELECT iso3, iso2, name, postal_regex, geonames_id FROM gazetteer_countries").fetchall():
            tables.add_country(iso3, name, iso2, postal_regex)
            if geonames_id:
                id_to_code3[geonames_id] = iso3

        for orig_id, lang, name, preferred, short in self.conn.execute("""
                SELECT geonames_orig_id, COALESCE(lang, ''), name, preferred, short FROM gazetteer_alt_names
                WHERE name_type = 'C' AND (NOT historic OR preferred) AND NOT colloquial
                """).fetchall():
            iso3 = id_to_code3.get(orig_id)
            if not iso3:
                continue

            tables.alt_form_to_std.setdefault(simplify(name), tables.country_names[iso3])
            by_lang = tables.country_names_by_lang.setdefault(iso3, {})

            if not short and lang in ("", DEFAULT_LANG):
                by_lang[lang] = tables.country_names[iso3]

            if short or preferred or lang not in by_lang:
                by_lang[lang] = name

        id_to_admin1: Dict[int, str] = {}

        for key_name, name, geonames_id in self.conn.execute(
                "SELECT key_name, name, geonames_id FROM gazetteer_admin1").fetchall():
            tables.add_admin1(key_name, name)
            if geonames_id:
                id_to_admin1[geonames_id] = key_name

        for orig_id, lang, name, preferred, short in self.conn.execute("""
                SELECT geonames_orig_id, COALESCE(lang, ''), name, preferred, short FROM gazetteer_alt_names
                WHERE name_type = '1' AND NOT historic AND NOT colloquial
                """).fetchall():
            admin1 = id_to_admin1.get(orig_id)
            if not admin1:
                continue

            if lang == "es" and name.lower().startswith("estado de "):
                name = name[10:].strip()

            by_lang = tables.admin1_names_by_lang.setdefault(admin1, {})

            if lang == DEFAULT_LANG and not preferred:
                by_lang[lang] = tables.admin1_names[admin1]
            elif short or preferred or lang not in by_lang:
                by_lang[lang] = name

        for key_name, name in self.conn.execute("SELECT key_name, name FROM gazetteer_admin2").fetchall():
            tables.admin2_names[key_name] = name

            if key_name.startswith("USA."):
                tables.us_counties.add(f"{standardize_short_county_name(name)}, {key_name[4:6]}")

        tables.us_counties.add("Washington, DC")

        if flag_codes is None:
            flag_codes = {code.lower() for code in tables.code2_to_code3} | REGIONAL_FLAG_CODES

        tables.flag_codes = set(flag_codes)

        log_structured(
            "info",
            "Name tables loaded",
            countries=len(tables.country_names),
            admin1=len(tables.admin1_names),
            admin2=len(tables.admin2_names)
        )

        return tables

    def close(self):
        """Close database connection."""
        self.conn.close()
