"""Text normalization utilities for place name matching."""
import re
import unicodedata
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from metaphone import doublemetaphone

from placefinder.utils.logging import log_structured

MAX_KEY_LENGTH = 40

# Letters that survive NFD decomposition unchanged
SPECIAL_LETTERS = {
    "ß": "SS",
    "Æ": "AE",
    "æ": "AE",
    "Ø": "O",
    "ø": "O",
    "Œ": "OE",
    "œ": "OE",
    "Ł": "L",
    "ł": "L",
    "Đ": "D",
    "đ": "D",
    "Þ": "TH",
    "þ": "TH",
    "ı": "I",
}

VARIANT_START = re.compile(
    r"^((CANON DE|CERRO|FORT|FT|ILE D|ILE DE|ILE DU|ILES|ILSA|LA|LAKE|LAS|LE|LOS|MOUNT|MT|POINT|PT|THE) )(.*)"
)

LEADING_ABBREVIATIONS = [
    ("FORT ", "FT"),
    ("MOUNT ", "MT"),
    ("POINT ", "PT"),
]

CLEANUP1 = re.compile(
    r"^((County(\s+of)?)|((Provincia|Província|Province|Región Metropolitana|Distrito|Región)\s+(de|del|de la|des|di)))",
    re.IGNORECASE
)
CLEANUP2 = re.compile(
    r"\s+(province|administrative region|national capital region|prefecture|oblast'|oblast|kray|county|district|"
    r"department|governorate|metropolitan area|territory)$"
)
CLEANUP3 = re.compile(r"\s+(region|republic)$")

CENSUS_AREAS = re.compile(
    r"(Aleutians West|Bethel|Dillingham|Nome|Prince of Wales-Outer Ketchikan|Skagway-Hoonah-Angoon|"
    r"Southeast Fairbanks|Valdez-Cordova|Wade Hampton|Wrangell-Petersburg|Yukon-Koyukuk)",
    re.IGNORECASE
)

US_TERRITORIES = {"AS", "FM", "GU", "MH", "MP", "PW", "VI"}

# (pattern, replacement) pairs applied in order by standardize_short_county_name
COUNTY_NAME_FIXES = [
    (r"City and (Borough|County) of ", ""),
    (r" (Borough|Census Area|County|Division|Municipality|Parish|City and Borough)", ""),
    (r"Aleutian Islands", "Aleutians West"),
    (r"Juneau City and", "Juneau"),
    (r"De Kalb", "DeKalb"),
    (r"De Soto", "DeSoto"),
    (r"De Witt", "DeWitt"),
    (r"Du Page", "DuPage"),
    (r"^La(Crosse|Moure|Paz|Plate|Porte|Salle)", r"La \1"),
    (r"Skagway-Yakutat-Angoon", "Skagway-Hoonah-Angoon"),
    (r"Grays Harbor", "Gray's Harbor"),
    (r"OBrien", "O'Brien"),
    (r"Prince Georges", "Prince George's"),
    (r"Queen Annes", "Queen Anne's"),
    (r"Scotts Bluff", "Scott's Bluff"),
    (r"^(St\. |St )", "Saint "),
    (r"Saint Johns", "Saint John's"),
    (r"Saint Marys", "Saint Mary's"),
]


def strip_diacritics(text: str) -> str:
    """Remove combining marks after NFD decomposition."""
    if not text:
        return ""

    text = unicodedata.normalize("NFD", text)
    return "".join(c for c in text if unicodedata.category(c) != "Mn")


def to_plain_ascii_upper(text: str) -> str:
    """
    Transliterate text to plain uppercase ASCII.

    Diacritics are stripped, a few letters that do not decompose are spelled
    out, and anything still outside ASCII is dropped.

    Args:
        text: Input text string

    Returns:
        Uppercase ASCII string
    """
    if not text:
        return ""

    text = "".join(SPECIAL_LETTERS.get(c, c) for c in strip_diacritics(text))
    return text.encode("ascii", "ignore").decode("ascii").upper()


def simplify(name: str, as_variant: bool = False, process_abbreviations: bool = True) -> str:
    """
    Fold a place name to the key used for exact and prefix matching.

    "Mount Rainier", "Mt. Rainier" and "MT RAINIER" all become "MTRAINIER".

    Args:
        name: Place name
        as_variant: Drop a leading qualifier word ("Lake", "Mount", "The", ...) instead of abbreviating it
        process_abbreviations: Apply the leading-word rules at all

    Returns:
        Key of at most 40 characters, no spaces
    """
    if not name:
        return name or ""

    pos = name.find("(")
    if pos >= 0:
        name = name[:pos].strip()

    chars = []
    for ch in to_plain_ascii_upper(name):
        if ch in "-.":
            chars.append(" ")
        elif ch == " " or ("A" <= ch <= "Z") or ch.isdigit():
            chars.append(ch)

    s = "".join(chars)

    if process_abbreviations:
        if as_variant:
            match = VARIANT_START.match(s)
            if match:
                s = match.group(3)
        else:
            for prefix, abbreviation in LEADING_ABBREVIATIONS:
                if s.startswith(prefix):
                    s = abbreviation + s[len(prefix):]
                    break

        if s.startswith("SAINT "):
            s = "ST" + s[6:]
        elif s.startswith("SAINTE "):
            s = "STE" + s[7:]

    return s.replace(" ", "")[:MAX_KEY_LENGTH]


def make_key(name: str) -> str:
    """
    Key for query text: plain uppercase ASCII letters and digits only, 40 chars max.

    Leading Fort/Mount/Point/Saint words are abbreviated before spaces are
    dropped, so "Fort Worth" gets the same key as the corpus row "Ft Worth".
    """
    text = re.sub(r"[^A-Z\d\s.-]+", "", to_plain_ascii_upper(name or ""))

    return simplify(re.sub(r"\s+", " ", text).strip())


def starts_with_icnd(testee: Optional[str], test: Optional[str]) -> bool:
    """Prefix test ignoring case and diacritics."""
    if not testee or not test:
        return False

    return simplify(testee).startswith(simplify(test))


def close_match_for_city(target: Optional[str], candidate: Optional[str]) -> bool:
    if not target or not candidate:
        return False

    return simplify(candidate).startswith(simplify(target))


def close_match_for_state(target: Optional[str], state: Optional[str], country: Optional[str],
                          tables, lang: Optional[str] = None) -> bool:
    """
    Check whether a target state/country plausibly refers to a place's state or country.

    Args:
        target: State or country text from the query
        state: The place's admin-1 code or name
        country: The place's ISO-3 country code
        tables: NameTables used for long state and country names
        lang: Optional language for localized state names

    Returns:
        True when any of the place's state or country forms starts with target,
        or when there is nothing to compare against
    """
    if not target or (not state and not country):
        return True

    long_state = tables.long_state(country, state, lang)
    long_country = tables.country_names.get(country)
    code2 = tables.code3_to_code2.get(country)

    return (
        starts_with_icnd(state, target) or
        starts_with_icnd(country, target) or
        starts_with_icnd(long_state, target) or
        starts_with_icnd(long_country, target) or
        (country == "GBR" and starts_with_icnd("Great Britain", target)) or
        (country == "GBR" and starts_with_icnd("England", target)) or
        starts_with_icnd(code2, target)
    )


def phonetic_codes(name: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Primary and secondary double metaphone codes for a name.

    Returns None for empty names and names containing digits. The secondary
    code falls back to the primary one.
    """
    if not name or re.search(r"\d", name):
        return None

    primary, secondary = doublemetaphone(strip_diacritics(name))
    if not primary:
        return None

    return primary, secondary or primary


def equals_ignore_case(s1: Optional[str], s2: Optional[str]) -> bool:
    """Case and diacritic insensitive equality; None and "" are equal."""
    return strip_diacritics(s1 or "").casefold() == strip_diacritics(s2 or "").casefold()


def collation_key(text: Optional[str]) -> Tuple[str, str]:
    """Sort key approximating a locale-aware comparison. Empty text sorts first."""
    text = text or ""
    return strip_diacritics(text).casefold(), text


def strip_trailing_number(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None

    return re.sub(r"\b\d+$", "", name).strip()


def is_all_uppercase_words(text: str) -> bool:
    return bool(text) and bool(re.search(r"[A-Za-z]", text)) and text == text.upper()


def to_mixed_case(text: str) -> str:
    """Capitalize each word, keeping the rest of the word lowercase."""
    return re.sub(r"[^\W\d_]+('[^\W\d_]+)?", lambda m: m.group(0).capitalize(), text.lower())


def county_state_cleanup(name: Optional[str]) -> str:
    """Strip administrative boilerplate such as "County of" or "Province"."""
    if not name:
        return ""

    name = CLEANUP1.sub("", name)
    name = CLEANUP2.sub("", name)
    return CLEANUP3.sub("", name).strip()


def standardize_short_county_name(county: Optional[str]) -> Optional[str]:
    if not county:
        return county

    county = county.strip()
    county = re.sub(r" \(.*\)", "", county)
    county = re.sub(r"\s+", " ", county)
    county = re.sub(r"\s*?-\s*?\b", "-", county)

    for pattern, replacement in COUNTY_NAME_FIXES:
        county = re.sub(pattern, replacement, county, flags=re.IGNORECASE)

    match = re.match(r"^Mc([a-z])(.*)", county)
    if match:
        county = "Mc" + match.group(1).upper() + match.group(2)

    return county


def adjust_us_county_name(county: Optional[str], state: Optional[str]) -> Optional[str]:
    """Append the county-level suffix a US state uses (Borough, Parish, County, ...)."""
    if not county:
        return county

    if re.search(r" (Division|Census Area|Borough|Parish|County)$", county, re.IGNORECASE):
        return county

    if state == "AK":
        if re.search(r"Anchorage|Juneau", county, re.IGNORECASE):
            return county + " Division"
        elif CENSUS_AREAS.search(county):
            return county + " Census Area"
        return county + " Borough"
    elif state == "LA":
        return county + " Parish"

    return county + " County"


def fix_rearranged_name(name: str) -> Tuple[str, Optional[str]]:
    """Turn "Dalles, The" into ("The Dalles", "Dalles")."""
    match = re.match(r"(.+), (\w)(.*')", name)
    if match:
        variant = match.group(1)
        return match.group(2).upper() + match.group(3) + variant, variant

    match = re.match(r"(.+), (\w)(.*)", name)
    if match:
        variant = match.group(1)
        return match.group(2).upper() + match.group(3) + " " + variant, variant

    return name, None


def make_location_key(city: str, state: Optional[str], country: str, existing: Mapping) -> str:
    """
    Build the dedup key for a location, suffixing "(2)", "(3)", ... on collision.

    US and Canadian places are keyed by state, everything else by country.
    """
    city_key = simplify(city)

    if state and country in ("USA", "CAN"):
        base_key = f"{city_key},{state}"
    else:
        base_key = f"{city_key},{country}"

    key = base_key
    index = 1
    while key in existing:
        index += 1
        key = f"{base_key}({index})"

    return key


@dataclass
class ProcessedNames:
    city: str
    variant: Optional[str]
    county: Optional[str]
    state: str
    long_state: str
    country: str
    long_country: str


def process_place_names(city: str, county: Optional[str], state: Optional[str], country: Optional[str],
                        tables) -> Optional[ProcessedNames]:
    """
    Normalize the name fields of a place returned by a remote source.

    Args:
        city: Place name as supplied
        county: Admin-2 name
        state: Admin-1 code or name
        country: Country name, ISO-2 or ISO-3 code
        tables: NameTables

    Returns:
        ProcessedNames, or None for names that are not real places ("10th Arrondissement")
    """
    city = city or ""
    state = state or ""
    country = country or ""

    if re.search(r"\b\d+[a-z]", city, re.IGNORECASE) or re.search(r"\bParis \d\d\b", city, re.IGNORECASE):
        return None

    city, variant = fix_rearranged_name(city)

    if "," in city:
        log_structured("warning", "City name contains a comma", city=city, state=state, country=country)

    if not variant:
        match = re.match(r"^(lake|mount|(?:mt\.?)|the|la|las|el|le|los)\b(.+)", city, re.IGNORECASE)
        if match:
            variant = match.group(2).strip()

    country = tables.alt_form_to_std.get(simplify(country), country)
    state = county_state_cleanup(state)
    county = county_state_cleanup(county)

    long_state = state
    long_country = country
    code3 = tables.code3_for_country(country) if country else None

    if code3:
        country = code3
        long_country = tables.country_names.get(code3, long_country)
    elif country in tables.country_names:
        long_country = tables.country_names[country]
    elif len(country) > 3 and tables.closest_country_code3(country):
        code3 = tables.closest_country_code3(country)
        log_structured("info", "Resolved country by similarity", country=country, code3=code3)
        country = code3
        long_country = tables.country_names[code3]
    else:
        log_structured("warning", "Failed to recognize country", country=country, city=city, state=state)
        country = country[:2] + "?"

    if state.lower().endswith(" state"):
        state = state[:-6]

    if country in ("USA", "CAN"):
        if state and state in tables.long_states:
            long_state = tables.long_states[state]
        elif state:
            abbreviation = (
                tables.state_abbreviations.get(to_plain_ascii_upper(state)) or
                tables.state_abbreviations.get(
                    to_plain_ascii_upper(re.sub(r" (state|province)$", "", state, flags=re.IGNORECASE))
                )
            )
            if abbreviation:
                state = abbreviation
            else:
                log_structured("warning", "Failed to recognize state/province", state=state, country=country)

        if county and country == "USA" and state not in US_TERRITORIES:
            county = _resolve_us_county(city, county, state, tables)

    return ProcessedNames(
        city=city,
        variant=variant,
        county=county,
        state=state,
        long_state=long_state,
        country=country,
        long_country=long_country,
    )


def _resolve_us_county(city: str, county: str, state: str, tables) -> Optional[str]:
    original = county
    county = standardize_short_county_name(county)

    if f"{county}, {state}" in tables.us_counties:
        return county

    county = original
    if county == "District of Columbia":
        county = "Washington"

    county = re.sub(r"^City of ", "", county, flags=re.IGNORECASE)
    county = re.sub(r"\s(Indep\. City|Independent City|Independent|City|Division|Municipality)$", "", county,
                    flags=re.IGNORECASE)

    if county == original:
        log_structured("warning", "Failed to recognize US county", county=county, city=city, state=state)
        return county

    # An independent city is its own county
    if simplify(original) == simplify(city) or simplify(county) == simplify(city):
        return None

    if re.search(r"city|division|municipality", city, re.IGNORECASE):
        return "City of " + county

    return county


def get_flag_code(country: Optional[str], state: Optional[str], tables) -> Optional[str]:
    """Flag image code for a place, or None when no flag is available."""
    if country == "GBR" and equals_ignore_case(state, "England"):
        code = "england"
    elif country == "GBR" and equals_ignore_case(state, "Scotland"):
        code = "scotland"
    elif country == "GBR" and equals_ignore_case(state, "Wales"):
        code = "wales"
    elif country == "ESP" and equals_ignore_case(state, "Catalonia"):
        code = "catalonia"
    else:
        code = tables.code3_to_code2.get(country)

    if not code:
        return None

    code = code.lower()
    return code if code in tables.flag_codes else None
