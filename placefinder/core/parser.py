"""Parse free-form place queries into structured search targets."""
import re
from typing import Literal

from placefinder.core.lookups import NameTables
from placefinder.core.models import ParsedQuery
from placefinder.core.normalization import make_key

ParseMode = Literal["loose", "strict"]

# "<words> <2+ letters>" at the end of the city part, e.g. "Rome Italy"
TRAILING_STATE_PATTERN = re.compile(r"(.+)\s+([^\W\d_]{2,})$")


def is_postal_code(text: str, tables: NameTables) -> bool:
    return tables.is_postal_code(text)


def parse_search_string(q: str, mode: ParseMode, tables: NameTables) -> ParsedQuery:
    """
    Split a query into city, state/country and postal code targets.

    Comma-separated parts are read as city, state, country. The query is also
    split on whitespace so that "90210 CA" or "Nashua 03060" are recognized
    as postal code searches.

    Args:
        q: Raw query string
        mode: "loose" promotes a recognizable trailing state/country token
            ("Rome Italy") into the target state; "strict" only offers it
            as an alternate parse
        tables: Name tables supplying postal patterns and state/country names

    Returns:
        ParsedQuery
    """
    parsed = ParsedQuery(actual_search=q)
    parts = [part.strip() for part in q.split(",")]
    alt_parts = [part for part in q.split() if "," not in part]
    postal_code = ""
    target_city = parts[0]
    target_state = parts[1] if len(parts) > 1 else ""
    target_country = parts[2] if len(parts) > 2 else ""

    if len(alt_parts) > 1:
        if is_postal_code(alt_parts[0], tables):
            postal_code = alt_parts[0]
            target_city = ""
            target_state = alt_parts[1]
        elif is_postal_code(alt_parts[1], tables):
            postal_code = alt_parts[1]
            target_city = alt_parts[0]
            target_state = ""

    if not postal_code:
        if is_postal_code(target_city, tables):
            postal_code = target_city
            target_city = ""
        elif target_state and is_postal_code(target_state, tables):
            postal_code = target_state
            target_state = ""
        else:
            target_city = make_key(target_city)

    target_state = make_key(target_state)
    target_country = make_key(target_country)

    # Country and state share one matching slot
    if target_country:
        target_state = target_country

    match = TRAILING_STATE_PATTERN.match(parts[0]) if not target_state else None

    if match:
        start = make_key(match.group(1).strip())
        end = match.group(2).upper()

        if mode == "loose" and tables.is_state_or_country(end):
            target_city = start
            target_state = end
        else:
            parsed.alt_city = start
            parsed.alt_state = end

        parsed.alt_normalized = f"{start}, {end}"

    parsed.postal_code = postal_code
    parsed.target_city = target_city
    parsed.target_state = target_state
    parsed.normalized_search = postal_code or target_city

    if target_state:
        parsed.normalized_search += ", " + target_state
    elif postal_code and target_city:
        parsed.normalized_search = f"{target_city}, {postal_code}"

    return parsed
