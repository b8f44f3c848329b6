"""Cross-source deduplication, merging and ranking of location results."""
import re
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from placefinder.core.models import Location
from placefinder.core.proximity import SAME_PLACE_KM, rough_distance_km
from placefinder.utils.logging import log_structured

KEY_SUFFIX = re.compile(r"\(\d+\)$")

MATCH_ADM = re.compile(r"^A\.ADM", re.IGNORECASE)
MATCH_PPL = re.compile(r"^P\.PPL", re.IGNORECASE)
MATCH_PPLX = re.compile(r"^P\.PPL\w", re.IGNORECASE)

PEAK = "T.PK"
MOUNTAIN = "T.MT"

MergedLocations = Dict[str, List[Location]]


class Outcome(Enum):
    KEEP_BOTH = 0
    DROP_FIRST = 1
    DROP_SECOND = 2


class Bucket:
    """Locations that might be the same place, with a liveness flag per entry."""

    def __init__(self, locations: List[Location]):
        self.locations = locations
        self.live = [True] * len(locations)

    def kill(self, index: int):
        self.live[index] = False

    def live_locations(self) -> List[Location]:
        return [location for location, alive in zip(self.locations, self.live) if alive]


def copy_and_merge_locations(destination: MergedLocations, source: Mapping[str, Location]):
    """Regroup locations under their dedup key with any "(n)" collision suffix removed."""
    for key, location in source.items():
        destination.setdefault(KEY_SUFFIX.sub("", key), []).append(location)


def _comparable_place_types(type1: str, type2: str) -> Tuple[str, str]:
    """Treat an admin area and its populated place, or a place and its section, as the same type."""
    type1 = type1 or ""
    type2 = type2 or ""

    if MATCH_ADM.match(type1) and MATCH_PPL.match(type2):
        type1 = type2
    if MATCH_ADM.match(type2) and MATCH_PPL.match(type1):
        type2 = type1
    if MATCH_PPL.match(type1) and MATCH_PPLX.match(type2):
        type1 = type2
    if MATCH_PPL.match(type2) and MATCH_PPLX.match(type1):
        type2 = type1

    return type1, type2


def _share_zone(first: Location, second: Location):
    """Copy a certain timezone onto a nearby location whose zone is uncertain."""
    if first.zone_is_uncertain and not second.zone_is_uncertain:
        first.zone = second.zone
    elif second.zone_is_uncertain and not first.zone_is_uncertain:
        second.zone = first.zone


def _merge_same_record(first: Location, second: Location) -> Outcome:
    """Two representations of one gazetteer record: the higher origin is newer data."""
    if first.origin > second.origin:
        survivor, loser, outcome = first, second, Outcome.DROP_SECOND
    else:
        survivor, loser, outcome = second, first, Outcome.DROP_FIRST

    newer = survivor.origin > loser.origin
    survivor.rank = max(first.rank, second.rank)
    survivor.zip = survivor.zip or loser.zip
    survivor.use_as_update = newer and not survivor.is_close_match(loser)
    survivor.source = loser.source
    survivor.origin = loser.origin

    return outcome


def _resolve_detail_conflict(first: Location, second: Location, attribute: str, distance: float) -> Outcome:
    """Handle two same-type places whose state (or county) differs."""
    value1 = getattr(first, attribute) or ""
    value2 = getattr(second, attribute) or ""

    if distance < SAME_PLACE_KM and value1 and value2:
        log_structured(
            "warning",
            "Possible detail conflict for same location",
            city=first.city,
            field=attribute,
            values=[value1, value2],
            state=first.state,
            country=first.country
        )

    if second.rank > first.rank:
        return Outcome.DROP_FIRST
    elif first.rank > second.rank or not value2:
        return Outcome.DROP_SECOND
    elif not value1:
        return Outcome.DROP_FIRST

    setattr(first, f"show_{attribute}", True)
    setattr(second, f"show_{attribute}", True)

    return Outcome.KEEP_BOTH


def _resolve_duplicate(first: Location, second: Location) -> Outcome:
    """Same place, state and county: keep one entry."""
    if first.origin.is_external != second.origin.is_external:
        # The local record wins but takes the better rank and any zip
        keeper, loser = (second, first) if first.origin.is_external else (first, second)
        keeper.rank = max(first.rank, second.rank)
        keeper.zip = keeper.zip or loser.zip

        return Outcome.DROP_FIRST if keeper is second else Outcome.DROP_SECOND

    if second.rank > first.rank:
        return Outcome.DROP_FIRST
    elif first.rank > second.rank or (first.zip and not second.zip):
        return Outcome.DROP_SECOND

    return Outcome.DROP_FIRST


def reconcile_pair(first: Location, second: Location) -> Outcome:
    """
    Decide whether two locations from one bucket are duplicates.

    Args:
        first: Earlier entry in the bucket
        second: Later entry in the bucket

    Returns:
        Which entry, if any, should be dropped. The survivor may be updated
        with the loser's rank, zip code, timezone or display hints.
    """
    type1, type2 = _comparable_place_types(first.place_type, second.place_type)
    distance = rough_distance_km(first.latitude, first.longitude, second.latitude, second.longitude)

    if distance < SAME_PLACE_KM:
        _share_zone(first, second)

    if first.geonames_id and first.geonames_id == second.geonames_id:
        return _merge_same_record(first, second)
    elif distance < SAME_PLACE_KM and type1 == MOUNTAIN and type2 == PEAK:
        return Outcome.DROP_FIRST
    elif distance < SAME_PLACE_KM and type1 == PEAK and type2 == MOUNTAIN:
        return Outcome.DROP_SECOND
    elif type1 != type2:
        return Outcome.KEEP_BOTH
    elif (first.state or "") != (second.state or ""):
        return _resolve_detail_conflict(first, second, "state", distance)
    elif (first.county or "") != (second.county or ""):
        return _resolve_detail_conflict(first, second, "county", distance)

    return _resolve_duplicate(first, second)


def _eliminate_in_bucket(bucket: Bucket):
    count = len(bucket.locations)

    for i in range(count - 1):
        for j in range(i + 1, count):
            if not bucket.live[i]:
                break
            if not bucket.live[j]:
                continue

            outcome = reconcile_pair(bucket.locations[i], bucket.locations[j])

            if outcome == Outcome.DROP_FIRST:
                bucket.kill(i)
            elif outcome == Outcome.DROP_SECOND:
                bucket.kill(j)


def eliminate_duplicates_and_sort(merged: MergedLocations, limit: int) -> List[Location]:
    """
    Remove duplicates within each bucket, cap the result and sort it.

    Args:
        merged: Buckets built by copy_and_merge_locations
        limit: Maximum number of locations returned

    Returns:
        Locations sorted by rank, city, country and state
    """
    unique: List[Location] = []

    for key in sorted(merged):
        bucket = Bucket(merged[key])
        _eliminate_in_bucket(bucket)

        for location in bucket.live_locations():
            if len(unique) < limit:
                unique.append(location)

    return sorted(unique, key=Location.sort_key)


def merge_location_maps(*maps: Optional[Mapping[str, Location]], limit: int) -> List[Location]:
    """Merge any number of keyed location collections; missing ones are skipped."""
    merged: MergedLocations = {}

    for locations in maps:
        if locations:
            copy_and_merge_locations(merged, locations)

    return eliminate_duplicates_and_sort(merged, limit)
