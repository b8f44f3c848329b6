"""GeoNames web service source."""
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from placefinder.core.config import GEONAMES_TIMEOUT, GEONAMES_URL, GEONAMES_USERNAME, POSTAL_SOURCE_TAG
from placefinder.core.errors import RemoteSourceError
from placefinder.core.lookups import NameTables
from placefinder.core.models import Location, LocationMap, Origin, SourceMetrics
from placefinder.core.normalization import (
    close_match_for_city,
    close_match_for_state,
    get_flag_code,
    process_place_names,
    standardize_short_county_name,
)
from placefinder.gazetteers.base import RemoteSource
from placefinder.utils.timing import Timer

GEONAMES_SOURCE_TAG = "GEON"

# Feature codes worth offering as search results
FEATURE_CODES = [
    "LK", "MILB", "PPL", "PPLA", "PPLA2", "PPLA3", "PPLA4", "PPLC", "PPLF", "PPLG", "PPLL", "PPLQ", "PPLR",
    "PPLS", "PPLW", "PPLX", "ASTR", "ATHF", "CTRS", "OBS", "STNB", "ATOL", "CAPE", "ISL", "MT", "PK",
]


def rank_for_place(place_type: str, population: int) -> int:
    """Populated places and admin areas rank higher, capitals and big cities higher still."""
    rank = 0

    if place_type.startswith("A.") or place_type.startswith("P."):
        rank += 1

        if place_type.endswith("PPLC"):
            rank += 1

        if population > 0:
            rank += 2 if population >= 1000000 else 1

    return rank


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class GeoNamesSource(RemoteSource):
    """Searches the GeoNames searchJSON and postalCodeSearchJSON services."""

    def __init__(self, tables: NameTables, username: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: float = GEONAMES_TIMEOUT, session=None):
        super().__init__("GeoNames", timeout, tables, session)
        self.username = username or GEONAMES_USERNAME
        self.base_url = (base_url or GEONAMES_URL).rstrip("/")

    def _request(self, target_city: str, postal_code: str) -> List[Dict[str, Any]]:
        if not self.username:
            raise RemoteSourceError(self.name, "GeoNames username is not configured")

        params: Dict[str, Any] = {"username": self.username, "style": "full"}

        if postal_code:
            url = f"{self.base_url}/postalCodeSearchJSON"
            params["postalcode"] = postal_code
        else:
            url = f"{self.base_url}/searchJSON"
            params["isNameRequired"] = "true"
            params["featureCode"] = FEATURE_CODES
            params["name_startsWith"] = target_city

        results = self.get_json(url, params, timeout=self.timeout)

        if not isinstance(results, dict):
            return []

        if "status" in results:
            message = results["status"].get("message", "unknown error")
            raise RemoteSourceError(self.name, f"GeoNames error: {message}")

        if postal_code:
            return results.get("postalCodes") or []
        elif _to_int(results.get("totalResultsCount")) > 0:
            return results.get("geonames") or []

        return []

    def lookup(
        self,
        target_city: str,
        target_state: str,
        postal_code: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> Tuple[LocationMap, SourceMetrics]:
        metrics = SourceMetrics()
        places = LocationMap()
        target_city = re.sub(r"^mt\b", "mount", target_city or "", flags=re.IGNORECASE)

        with Timer("geonames_lookup", log=False) as timer:
            geonames = self._request(target_city, postal_code)
            self.check_cancelled(cancel_event)
            metrics.raw_count = len(geonames)

            for geoname in geonames:
                location = self._to_location(geoname, target_city, target_state, postal_code)

                if location is not None and not places.contains_matching(location):
                    places.add(location)
                    metrics.matched_count += 1

        metrics.retrieval_time = timer.elapsed

        return places, metrics

    def _to_location(self, geoname: Dict[str, Any], target_city: str, target_state: str,
                     postal_code: str) -> Optional[Location]:
        city = geoname.get("placeName" if postal_code else "name") or ""
        county = geoname.get("adminName2") or ""
        country = geoname.get("countryCode") or ""
        place_type = "P.PPL" if postal_code else f"{geoname.get('fcl')}.{geoname.get('fcode')}"

        if geoname.get("continentCode") == "AN":
            country = "ATA"

        country = self.tables.code2_to_code3.get(country, country)

        if country == "USA":
            county = standardize_short_county_name(county)
            state = geoname.get("adminCode1") or ""
        else:
            state = geoname.get("adminName1") or ""

        names = process_place_names(city, county, state, country, self.tables)

        if names is None:
            return None

        if not (postal_code or close_match_for_city(target_city, names.city) or
                close_match_for_city(target_city, names.variant)):
            return None

        if not close_match_for_state(target_state, state, country, self.tables):
            return None

        timezone = geoname.get("timezone") or {}

        return Location(
            city=names.city,
            variant=names.variant,
            county=names.county,
            state=names.state,
            country=names.country,
            long_country=names.long_country,
            flag_code=get_flag_code(names.country, names.state, self.tables),
            latitude=float(geoname.get("lat") or 0.0),
            longitude=float(geoname.get("lng") or 0.0),
            zone=timezone.get("timeZoneId"),
            zip=geoname.get("postalcode") if postal_code else None,
            rank=rank_for_place(place_type, _to_int(geoname.get("population"))),
            place_type=place_type,
            source=POSTAL_SOURCE_TAG if postal_code else GEONAMES_SOURCE_TAG,
            origin=Origin.GEONAMES,
            geonames_id=_to_int(geoname.get("geonameId")),
        )
