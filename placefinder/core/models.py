"""Data models for place search results."""
import re
from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Optional, List, Dict, Any, Tuple

from placefinder.core.normalization import (
    adjust_us_county_name,
    collation_key,
    equals_ignore_case,
    make_location_key,
)

UNCERTAIN_ZONE_MARKER = "?"

COUNTY_SUFFIX = re.compile(r" (Borough|Census Area|County|Division|Parish)", re.IGNORECASE)

# Place type -> display qualifier
PLACE_TYPE_QUALIFIERS = {
    "T.CAPE": "cape",
    "H.LK": "lake",
    "L.PRK": "park",
    "T.PK": "peak",
    "L.MILB": "military base",
    "T.ISL": "island",
    "S.ASTR": "geographic point",
    "T.POLE": "geographic point",
    "T.MT": "mountain",
    "A.ADM0": "nation",
    "S.OBS": "observatory",
}


class Origin(IntEnum):
    """Where a location record came from, in increasing precedence."""
    CORPUS = 0
    CORPUS_UPDATE = 1
    SUPPLEMENTAL = 2
    GEONAMES = 3
    NOMINATIM = 4

    @property
    def is_external(self) -> bool:
        return self in (Origin.SUPPLEMENTAL, Origin.GEONAMES, Origin.NOMINATIM)


def _parenthetical(text: str) -> str:
    return f" ({text})"


def format_variable_precision(value: float, max_decimals: int = 3) -> str:
    """Format a number with up to max_decimals digits, trailing zeros removed."""
    text = f"{value:.{max_decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


@dataclass
class Location:
    """A resolved place candidate."""
    city: str
    country: str
    latitude: float = 0.0
    longitude: float = 0.0
    variant: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None
    long_country: Optional[str] = None
    flag_code: Optional[str] = None
    elevation: Optional[float] = None
    zone: Optional[str] = None
    zip: Optional[str] = None
    place_type: str = "P.PPL"
    rank: int = 0
    source: str = ""
    origin: Origin = Origin.CORPUS
    geonames_id: int = 0
    matched_by_alternate_name: bool = False
    matched_by_sound: bool = False
    show_county: bool = False
    show_state: bool = False
    use_as_update: bool = False

    @property
    def zone_is_uncertain(self) -> bool:
        return not self.zone or self.zone.endswith(UNCERTAIN_ZONE_MARKER)

    @property
    def display_name(self) -> str:
        """Human-readable name, qualified by county, state, country and place type as needed."""
        city = self.city
        county = self.county
        city_qualifier = ""
        state_qualifier = ""
        show_state = self.show_state

        if self.country == "USA" or (self.country == "CAN" and self.place_type != "A.ADM0"):
            display_state = self.state if self.place_type != "A.ADM1" else self.country

            if self.country == "USA":
                if self.place_type == "A.ADM2":
                    city = adjust_us_county_name(city, self.state)
                else:
                    county = adjust_us_county_name(county, self.state)
        else:
            display_state = self.country

            if self.country == "GBR" and self.state:
                state_qualifier = _parenthetical(self.state)
                show_state = False
            elif self.long_country and self.place_type != "A.ADM0":
                state_qualifier = _parenthetical(self.long_country)

        if county and self.show_county:
            city_qualifier = _parenthetical(county)

        if self.state and show_state:
            state_qualifier += _parenthetical(self.state)

        if self.place_type in PLACE_TYPE_QUALIFIERS:
            state_qualifier += _parenthetical(PLACE_TYPE_QUALIFIERS[self.place_type])
        elif self.place_type == "A.ADM2":
            if COUNTY_SUFFIX.search(city or ""):
                state_qualifier += " (county)"
        elif self.place_type == "A.ADM1" and self.country == "CAN":
            state_qualifier += " (province)"
        elif self.place_type == "A.ADM1" and self.country == "USA":
            state_qualifier += " (state)"

        return city + city_qualifier + (", " + display_state if display_state else "") + state_qualifier

    def is_close_match(self, other: "Location") -> bool:
        """True when an update would not change anything a user can see."""
        return (
            equals_ignore_case(self.city, other.city) and
            equals_ignore_case(self.variant, other.variant) and
            equals_ignore_case(self.county, other.county) and
            equals_ignore_case(self.state, other.state) and
            equals_ignore_case(self.country, other.country) and
            abs(self.latitude - other.latitude) < 0.0001 and
            abs(self.longitude - other.longitude) < 0.0001 and
            self.elevation == other.elevation and
            self.zone == other.zone and
            self.zip == other.zip and
            self.place_type == other.place_type
        )

    def sort_key(self) -> Tuple:
        """Rank descending, then city, country and state."""
        return (
            -(self.rank or 0),
            collation_key(self.city),
            collation_key(self.country),
            collation_key(self.state),
        )

    def compare_to(self, other: "Location") -> int:
        mine, theirs = self.sort_key(), other.sort_key()
        return (mine > theirs) - (mine < theirs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = asdict(self)
        del result["use_as_update"]
        result["origin"] = self.origin.name.lower()
        result["display_name"] = self.display_name
        return result

    def __str__(self) -> str:
        parts = [f"{self.display_name} - lat: {self.latitude}, long: {self.longitude};"]

        if self.zip:
            parts.append(f" zip: {self.zip};")

        parts.append(f" zone: {self.zone}; placeType: {self.place_type}; source: {self.source}; rank: {self.rank}")

        if self.flag_code:
            parts.append(f" flagCode: {self.flag_code};")
        if self.matched_by_alternate_name:
            parts.append(" matchedByAlternateName;")
        if self.matched_by_sound:
            parts.append(" matchedBySound;")

        return "".join(parts)


class LocationMap(dict):
    """Insertion-ordered locations keyed by city plus state or country."""

    def add(self, location: Location, state: Optional[str] = None) -> str:
        """
        Store a location under a fresh dedup key.

        Args:
            location: Location to store
            state: State used for the key, when it differs from location.state

        Returns:
            The key the location was stored under
        """
        key = make_location_key(location.city, location.state if state is None else state, location.country, self)
        self[key] = location
        return key

    def contains_matching(self, location: Location) -> bool:
        """True if a location with the same city, county, state and country is present."""
        return any(
            other.city == location.city and
            other.county == location.county and
            other.state == location.state and
            other.country == location.country
            for other in self.values()
        )


@dataclass
class ParsedQuery:
    """Structured decomposition of one query string."""
    actual_search: str
    postal_code: str = ""
    target_city: str = ""
    target_state: str = ""
    normalized_search: str = ""
    alt_city: Optional[str] = None
    alt_state: Optional[str] = None
    alt_normalized: Optional[str] = None

    def clear_alternate(self):
        self.alt_city = None
        self.alt_state = None
        self.alt_normalized = None


@dataclass
class SourceMetrics:
    """Diagnostics reported by a remote source."""
    raw_count: int = 0
    matched_count: int = 0
    retrieval_time: float = 0.0
    complete: bool = True


@dataclass
class RemoteSearchResults:
    """Per-source outcome of a remote aggregation, keyed by source name."""
    matches: Dict[str, LocationMap] = field(default_factory=dict)
    metrics: Dict[str, SourceMetrics] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def match_count(self) -> int:
        return sum(len(found) for found in self.matches.values())

    @property
    def no_errors(self) -> bool:
        return not self.errors


@dataclass
class SearchResult:
    """Outcome of one place search request."""
    original_search: str
    normalized_search: str
    time: float = 0.0
    error: Optional[str] = None
    warning: Optional[str] = None
    info: Optional[str] = None
    limit_reached: bool = False
    matches: List[Location] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.matches)

    def append_info_line(self, line: str):
        self.info = f"{self.info}\n{line}" if self.info else line

    def append_warning_line(self, line: str):
        self.warning = f"{self.warning}\n{line}" if self.warning else line

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "original_search": self.original_search,
            "normalized_search": self.normalized_search,
            "time": self.time,
            "error": self.error,
            "warning": self.warning,
            "info": self.info,
            "limit_reached": self.limit_reached,
            "count": self.count,
            "matches": [match.to_dict() for match in self.matches],
        }

    def to_plain_text(self) -> str:
        lines = [
            f"originalSearch: {self.original_search}",
            f"normalizedSearch: {self.normalized_search}",
            f"time: {format_variable_precision(self.time)}s",
        ]

        if self.error:
            lines.append(f"error: {self.error}")
        else:
            if self.warning:
                lines.append("warning: " + self.warning.replace("\n", "⏎\n"))
            if self.info:
                lines.append("info: " + self.info.replace("\n", "⏎\n"))

            lines.append(f"count: {self.count}" + (" (limit reached)" if self.limit_reached else ""))
            lines.extend(str(match) for match in self.matches)

        lines.append("")
        return "\n".join(lines)
