"""OpenStreetMap Nominatim source."""
import threading
from typing import Any, Dict, List, Optional, Tuple

from placefinder.core.config import (
    NOMINATIM_MAX_PAGES,
    NOMINATIM_PREFERRED_TIME,
    NOMINATIM_TIMEOUT,
    NOMINATIM_URL,
)
from placefinder.core.lookups import NameTables
from placefinder.core.models import Location, LocationMap, Origin, SourceMetrics
from placefinder.core.normalization import (
    close_match_for_city,
    close_match_for_state,
    get_flag_code,
    process_place_names,
)
from placefinder.gazetteers.base import RemoteSource
from placefinder.gazetteers.geonames import rank_for_place
from placefinder.utils.logging import log_structured
from placefinder.utils.timing import Timer

NOMINATIM_SOURCE_TAG = "OSM"
PAGE_SIZE = 40

# (OSM class, OSM type) -> place type code
PLACE_TYPES = {
    ("place", "city"): "P.PPL",
    ("place", "town"): "P.PPL",
    ("place", "village"): "P.PPL",
    ("place", "hamlet"): "P.PPL",
    ("place", "municipality"): "P.PPL",
    ("place", "locality"): "P.PPLL",
    ("place", "suburb"): "P.PPLX",
    ("place", "quarter"): "P.PPLX",
    ("place", "neighbourhood"): "P.PPLX",
    ("place", "island"): "T.ISL",
    ("place", "islet"): "T.ISL",
    ("natural", "peak"): "T.PK",
    ("natural", "volcano"): "T.PK",
    ("natural", "ridge"): "T.MT",
    ("natural", "cape"): "T.CAPE",
    ("natural", "water"): "H.LK",
    ("water", "lake"): "H.LK",
    ("leisure", "park"): "L.PRK",
    ("leisure", "nature_reserve"): "L.PRK",
    ("boundary", "national_park"): "L.PRK",
    ("landuse", "military"): "L.MILB",
    ("military", "base"): "L.MILB",
    ("man_made", "observatory"): "S.OBS",
}

ADMIN_PLACE_TYPES = {
    "country": "A.ADM0",
    "state": "A.ADM1",
    "province": "A.ADM1",
    "county": "A.ADM2",
}


def place_type_for(result: Dict[str, Any]) -> Optional[str]:
    """Map a Nominatim result to a place type code, or None if it is not a place we offer."""
    category = result.get("category") or result.get("class")
    osm_type = result.get("type")

    if category == "boundary" and osm_type == "administrative":
        return ADMIN_PLACE_TYPES.get(result.get("addresstype"), "P.PPL")

    place_type = PLACE_TYPES.get((category, osm_type))

    if place_type == "P.PPL" and (result.get("extratags") or {}).get("capital") == "yes":
        return "P.PPLC"

    return place_type


class NominatimSource(RemoteSource):
    """
    Searches Nominatim page by page.

    Nominatim is slow for broad names, so paging stops once the preferred
    time has passed and whatever was found so far is returned as a partial
    result (metrics.complete is False).
    """

    def __init__(self, tables: NameTables, base_url: Optional[str] = None, timeout: float = NOMINATIM_TIMEOUT,
                 preferred_time: float = NOMINATIM_PREFERRED_TIME, max_pages: int = NOMINATIM_MAX_PAGES,
                 session=None):
        super().__init__("Nominatim", timeout, tables, session)
        self.base_url = (base_url or NOMINATIM_URL).rstrip("/")
        self.preferred_time = preferred_time
        self.max_pages = max_pages

    def _request(self, target_city: str, target_state: str, postal_code: str,
                 excluded: List[str]) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "format": "jsonv2",
            "addressdetails": 1,
            "extratags": 1,
            "limit": PAGE_SIZE,
        }

        if postal_code:
            params["postalcode"] = postal_code
        else:
            params["q"] = f"{target_city}, {target_state}" if target_state else target_city

        if excluded:
            params["exclude_place_ids"] = ",".join(excluded)

        results = self.get_json(f"{self.base_url}/search", params)

        return results if isinstance(results, list) else []

    def lookup(
        self,
        target_city: str,
        target_state: str,
        postal_code: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> Tuple[LocationMap, SourceMetrics]:
        metrics = SourceMetrics()
        places = LocationMap()
        excluded: List[str] = []

        with Timer("nominatim_lookup", log=False) as timer:
            for page in range(self.max_pages):
                self.check_cancelled(cancel_event)

                if page > 0 and timer.so_far > self.preferred_time:
                    metrics.complete = False
                    log_structured(
                        "info",
                        "Nominatim search stopped early",
                        search=target_city,
                        pages=page,
                        elapsed_seconds=timer.so_far
                    )
                    break

                results = self._request(target_city, target_state, postal_code, excluded)
                metrics.raw_count += len(results)

                for result in results:
                    location = self._to_location(result, target_city, target_state, postal_code)

                    if location is not None and not places.contains_matching(location):
                        places.add(location)
                        metrics.matched_count += 1

                excluded.extend(str(result["place_id"]) for result in results if result.get("place_id"))

                if len(results) < PAGE_SIZE:
                    break

        metrics.retrieval_time = timer.elapsed

        return places, metrics

    def _to_location(self, result: Dict[str, Any], target_city: str, target_state: str,
                     postal_code: str) -> Optional[Location]:
        place_type = place_type_for(result)

        if place_type is None:
            return None

        address = result.get("address") or {}
        city = (result.get("name") or address.get("city") or address.get("town") or
                address.get("village") or address.get("hamlet") or "")
        country = (address.get("country_code") or "").upper()
        country = self.tables.code2_to_code3.get(country, address.get("country") or country)
        state = address.get("state") or ""

        # "US-IL" -> "IL"
        iso_state = address.get("ISO3166-2-lvl4") or ""
        if country in ("USA", "CAN") and "-" in iso_state:
            state = iso_state.split("-", 1)[1]

        names = process_place_names(city, address.get("county"), state, country, self.tables)

        if names is None:
            return None

        if not (postal_code or close_match_for_city(target_city, names.city) or
                close_match_for_city(target_city, names.variant)):
            return None

        if not close_match_for_state(target_state, names.state, names.country, self.tables):
            return None

        population = (result.get("extratags") or {}).get("population") or "0"

        return Location(
            city=names.city,
            variant=names.variant,
            county=names.county,
            state=names.state,
            country=names.country,
            long_country=names.long_country,
            flag_code=get_flag_code(names.country, names.state, self.tables),
            latitude=float(result.get("lat") or 0.0),
            longitude=float(result.get("lon") or 0.0),
            zip=address.get("postcode") if postal_code else None,
            rank=rank_for_place(place_type, int(population) if str(population).isdigit() else 0),
            place_type=place_type,
            source=NOMINATIM_SOURCE_TAG,
            origin=Origin.NOMINATIM,
        )
