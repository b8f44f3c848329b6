"""Import GeoNames export files into the DuckDB corpus."""
import csv
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

import pandas as pd

from placefinder.core.config import POSTAL_SOURCE_TAG
from placefinder.core.duckdb_store import DuckDBStore
from placefinder.gazetteers.geonames import FEATURE_CODES, GEONAMES_SOURCE_TAG, rank_for_place
from placefinder.utils.logging import log_error, log_structured
from placefinder.utils.timing import Timer

CHUNK_SIZE = 100000

# GeoNames TSV format (allCountries.txt, XX.txt, cities500.txt, ...)
PLACE_COLUMNS = [
    "geonameid", "name", "asciiname", "alternatenames", "latitude", "longitude",
    "feature_class", "feature_code", "country_code", "cc2", "admin1", "admin2",
    "admin3", "admin4", "population", "elevation", "dem", "timezone", "modification_date"
]

ALT_NAME_COLUMNS = [
    "alternatenameid", "geonameid", "isolanguage", "alternate_name", "is_preferred_name",
    "is_short_name", "is_colloquial", "is_historic", "from", "to"
]

COUNTRY_COLUMNS = [
    "iso2", "iso3", "iso_numeric", "fips", "country", "capital", "area", "population", "continent",
    "tld", "currency_code", "currency_name", "phone", "postal_code_format", "postal_code_regex",
    "languages", "geonameid", "neighbours", "equivalent_fips_code"
]

ADMIN_COLUMNS = ["code", "name", "asciiname", "geonameid"]

POSTAL_COLUMNS = [
    "country_code", "postal_code", "place_name", "admin_name1", "admin_code1", "admin_name2",
    "admin_code2", "admin_name3", "admin_code3", "latitude", "longitude", "accuracy"
]

ADMIN_FEATURE_CODES = {"ADM1", "ADM2", "PCLI"}

# Pseudo-languages in alternateNames that carry links and codes rather than names
NON_NAME_LANGUAGES = {"link", "post", "iata", "icao", "faac", "abbr", "wkdt", "unlc", "tcid", "fr_1793"}


def _read_tsv(path: Path, columns, chunked: bool = True):
    return pd.read_csv(
        path,
        sep="\t",
        header=None,
        names=columns,
        dtype=str,
        keep_default_na=False,
        quoting=csv.QUOTE_NONE,
        chunksize=CHUNK_SIZE if chunked else None,
        encoding="utf-8"
    )


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _flag(value: str) -> bool:
    return value == "1"


class GeoNamesDumpImporter:
    """
    Loads the GeoNames text exports into a DuckDBStore.

    Countries must be imported first: every other file refers to countries
    by ISO-2 code, which the corpus stores as ISO-3.
    """

    def __init__(self, store: DuckDBStore):
        self.store = store
        self.code2_to_code3: Dict[str, str] = {}
        self._next_postal_id = 1

    def import_countries(self, path: Path) -> int:
        """Import countryInfo.txt."""
        df = _read_tsv(path, COUNTRY_COLUMNS, chunked=False).fillna("")
        df = df[(df["iso2"] != "") & ~df["iso2"].str.startswith("#") & (df["iso3"] != "")]

        countries = [
            {
                "iso3": row.iso3,
                "iso2": row.iso2,
                "name": row.country,
                "postal_regex": row.postal_code_regex or None,
                "geonames_id": _to_int(row.geonameid),
            }
            for row in df.itertuples(index=False)
        ]

        self.store.add_countries(countries)
        self.code2_to_code3.update({c["iso2"]: c["iso3"] for c in countries})

        log_structured("info", "Countries imported", path=str(path), count=len(countries))
        return len(countries)

    def _load_country_codes(self):
        if not self.code2_to_code3:
            rows = self.store.conn.execute("SELECT iso2, iso3 FROM gazetteer_countries").fetchall()
            self.code2_to_code3 = {iso2: iso3 for iso2, iso3 in rows if iso2}

    def _admin_key(self, code: str) -> Optional[str]:
        """Map "US.IL.031" to "USA.IL.031"."""
        country, _, rest = code.partition(".")
        iso3 = self.code2_to_code3.get(country)

        return f"{iso3}.{rest}" if iso3 and rest else None

    def import_admin_names(self, path: Path, level: int) -> int:
        """Import admin1CodesASCII.txt (level 1) or admin2Codes.txt (level 2)."""
        self._load_country_codes()
        df = _read_tsv(path, ADMIN_COLUMNS, chunked=False).fillna("")
        admins = []

        for row in df.itertuples(index=False):
            key = self._admin_key(row.code)

            if key:
                admins.append({"key_name": key, "name": row.name, "geonames_id": _to_int(row.geonameid)})

        self.store.add_admin_names(level, admins)

        log_structured("info", "Admin names imported", path=str(path), admin_level=level, count=len(admins))
        return len(admins)

    def _places(self, chunk: pd.DataFrame, min_population: int,
                country_codes: Optional[Set[str]]) -> Iterator[Dict]:
        for row in chunk.itertuples(index=False):
            if country_codes and row.country_code not in country_codes:
                continue

            if row.feature_code not in FEATURE_CODES and not (
                    row.feature_class == "A" and row.feature_code in ADMIN_FEATURE_CODES):
                continue

            population = _to_int(row.population)

            if row.feature_class == "P" and population < min_population:
                continue

            country = self.code2_to_code3.get(row.country_code)

            if not country:
                continue

            place_type = f"{row.feature_class}.{row.feature_code}"
            elevation = _to_float(row.elevation)

            if elevation is None:
                elevation = _to_float(row.dem)

            geonameid = _to_int(row.geonameid)

            yield {
                "id": geonameid,
                "name": row.name,
                "country": country,
                "admin1": row.admin1,
                "admin2": row.admin2,
                "latitude": _to_float(row.latitude) or 0.0,
                "longitude": _to_float(row.longitude) or 0.0,
                "elevation": elevation,
                "timezone": row.timezone or None,
                "rank": rank_for_place(place_type, population),
                "feature_code": place_type,
                "source": GEONAMES_SOURCE_TAG,
                "geonames_id": geonameid,
            }

    def import_places(self, path: Path, min_population: int = 0,
                      country_codes: Optional[Set[str]] = None) -> int:
        """
        Import a GeoNames place file.

        Args:
            path: allCountries.txt, a per-country file or a citiesNNN.txt file
            min_population: Skip populated places smaller than this
            country_codes: ISO-2 codes to keep; None keeps all

        Returns:
            Number of places imported
        """
        self._load_country_codes()
        count = 0

        for chunk in _read_tsv(path, PLACE_COLUMNS):
            places = list(self._places(chunk, min_population, country_codes))
            self.store.add_places(places)
            count += len(places)

        log_structured("info", "Places imported", path=str(path), count=count)
        return count

    def import_alt_names(self, path: Path) -> int:
        """
        Import alternateNamesV2.txt, keeping names of known places, countries and admin-1 areas.

        Names are typed "C" (country), "1" (admin-1) or "P" (place), which is
        how the name tables and the matcher tell them apart.
        """
        conn = self.store.conn
        place_ids = {row[0] for row in conn.execute("SELECT id FROM gazetteer").fetchall()}
        country_ids = {row[0] for row in conn.execute(
            "SELECT geonames_id FROM gazetteer_countries WHERE geonames_id > 0").fetchall()}
        admin1_ids = {row[0] for row in conn.execute(
            "SELECT geonames_id FROM gazetteer_admin1 WHERE geonames_id > 0").fetchall()}
        count = 0

        for chunk in _read_tsv(path, ALT_NAME_COLUMNS):
            alt_names = []

            for row in chunk.itertuples(index=False):
                lang = row.isolanguage

                if lang in NON_NAME_LANGUAGES or len(lang) > 3 or not row.alternate_name:
                    continue

                geonameid = _to_int(row.geonameid)

                if geonameid in country_ids:
                    name_type = "C"
                elif geonameid in admin1_ids:
                    name_type = "1"
                elif geonameid in place_ids:
                    name_type = "P"
                else:
                    continue

                alt_names.append({
                    "gazetteer_id": geonameid if name_type == "P" else 0,
                    "geonames_orig_id": geonameid,
                    "name": row.alternate_name,
                    "lang": lang,
                    "type": name_type,
                    "preferred": _flag(row.is_preferred_name),
                    "short": _flag(row.is_short_name),
                    "colloquial": _flag(row.is_colloquial),
                    "historic": _flag(row.is_historic),
                })

            self.store.add_alt_names(alt_names)
            count += len(alt_names)

        log_structured("info", "Alternate names imported", path=str(path), count=count)
        return count

    def import_postal_codes(self, path: Path) -> int:
        """Import a GeoNames postal code file (allCountries.txt from the postal export)."""
        count = 0

        for chunk in _read_tsv(path, POSTAL_COLUMNS):
            postal_codes = []

            for row in chunk.itertuples(index=False):
                if not row.postal_code:
                    continue

                postal_codes.append({
                    "id": self._next_postal_id,
                    "code": row.postal_code,
                    "name": row.place_name,
                    "country": row.country_code,
                    "admin1": row.admin_code1,
                    "latitude": _to_float(row.latitude) or 0.0,
                    "longitude": _to_float(row.longitude) or 0.0,
                    "accuracy": _to_int(row.accuracy),
                    "source": POSTAL_SOURCE_TAG,
                })
                self._next_postal_id += 1

            self.store.add_postal_codes(postal_codes)
            count += len(postal_codes)

        log_structured("info", "Postal codes imported", path=str(path), count=count)
        return count

    def ingest_directory(self, directory: Path, places_file: str = "allCountries.txt",
                         min_population: int = 0) -> Dict[str, int]:
        """
        Import every recognized GeoNames export found in a directory.

        Looks for countryInfo.txt, admin1CodesASCII.txt, admin2Codes.txt,
        the places file, alternateNamesV2.txt and postal/allCountries.txt.
        Missing files are skipped.
        """
        counts: Dict[str, int] = {}
        steps = [
            ("countries", directory / "countryInfo.txt", self.import_countries),
            ("admin1", directory / "admin1CodesASCII.txt", lambda p: self.import_admin_names(p, 1)),
            ("admin2", directory / "admin2Codes.txt", lambda p: self.import_admin_names(p, 2)),
            ("places", directory / places_file, lambda p: self.import_places(p, min_population)),
            ("alt_names", directory / "alternateNamesV2.txt", self.import_alt_names),
            ("postal_codes", directory / "postal" / "allCountries.txt", self.import_postal_codes),
        ]

        with Timer("geonames_ingest"):
            for label, path, step in steps:
                if not path.exists():
                    log_structured("warning", "GeoNames file not found, skipping", path=str(path))
                    continue

                try:
                    counts[label] = step(path)
                except (OSError, pd.errors.ParserError) as e:
                    log_error(e, {"module": "geonames_dump", "function": "ingest_directory", "path": str(path)})
                    raise

        return counts
