"""Read-only name and pattern tables consulted during search.

The tables are opaque to the search engine: they are filled either from the
DuckDB corpus (see ``DuckDBStore.load_name_tables``) or built directly in tests.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Pattern, Set, Tuple

from rapidfuzz import fuzz, process

from placefinder.core.config import DEFAULT_LANG, FUZZY_THRESHOLD
from placefinder.core.normalization import simplify, to_plain_ascii_upper

Lookup = Tuple[Optional[Mapping[str, str]], Optional[str]]

CANADIAN_PROVINCE_ABBRS = ["AB", "BC", "MB", "NB", "NF", "", "NS", "ON", "PE", "QC", "SK", "YT", "NT", "NU"]


def resolve_first(lookups: Iterable[Lookup], default: Optional[str] = None) -> Optional[str]:
    """
    Return the first non-empty value found by a prioritized list of lookups.

    Args:
        lookups: (table, key) pairs, tried in order. A missing table or key is skipped.
        default: Value returned when no lookup produces anything

    Returns:
        The first hit, or default
    """
    for table, key in lookups:
        if table is None or key is None:
            continue
        value = table.get(key)
        if value:
            return value

    return default


@dataclass
class NameTables:
    """Country, state and postal-code tables keyed the way the corpus keys them."""
    country_names: Dict[str, str] = field(default_factory=dict)                 # ISO3 -> name
    country_names_by_lang: Dict[str, Dict[str, str]] = field(default_factory=dict)
    code2_to_code3: Dict[str, str] = field(default_factory=dict)
    code3_to_code2: Dict[str, str] = field(default_factory=dict)
    name_to_code3: Dict[str, str] = field(default_factory=dict)                 # simplified name -> ISO3
    admin1_names: Dict[str, str] = field(default_factory=dict)                  # "USA.IL" -> "Illinois"
    admin1_names_by_lang: Dict[str, Dict[str, str]] = field(default_factory=dict)
    admin2_names: Dict[str, str] = field(default_factory=dict)                  # "USA.IL.031" -> "Cook County"
    long_states: Dict[str, str] = field(default_factory=dict)                   # "IL" -> "Illinois"
    state_abbreviations: Dict[str, str] = field(default_factory=dict)           # "ILLINOIS" -> "IL"
    alt_form_to_std: Dict[str, str] = field(default_factory=dict)               # simplified alt country name -> std name
    postal_patterns: Dict[str, Pattern] = field(default_factory=dict)           # ISO3 -> regex
    flag_codes: Set[str] = field(default_factory=set)
    us_counties: Set[str] = field(default_factory=set)                          # "Cook, IL"
    default_lang: str = DEFAULT_LANG

    def add_country(self, iso3: str, name: str, iso2: Optional[str] = None, postal_regex: Optional[str] = None):
        self.country_names[iso3] = name
        self.name_to_code3[simplify(name)[:40]] = iso3

        if iso2:
            self.code2_to_code3[iso2] = iso3
            self.code3_to_code2[iso3] = iso2

        if postal_regex:
            self.postal_patterns[iso3] = re.compile(postal_regex, re.IGNORECASE)

    def add_admin1(self, key: str, name: str):
        self.admin1_names[key] = name

        country, _, code = key.partition(".")
        if country == "USA":
            self.long_states[code] = name
            self.state_abbreviations[to_plain_ascii_upper(name)] = code
        elif country == "CAN" and code.isdigit() and 0 < int(code) <= len(CANADIAN_PROVINCE_ABBRS):
            abbr = CANADIAN_PROVINCE_ABBRS[int(code) - 1]
            if abbr:
                self.long_states.setdefault(abbr, name)
                self.state_abbreviations[to_plain_ascii_upper(name)] = abbr

    def is_postal_code(self, text: str) -> bool:
        if not text:
            return False

        return any(pattern.search(text) for pattern in self.postal_patterns.values())

    def country_name(self, code3: str, lang: Optional[str] = None) -> Optional[str]:
        by_lang = self.country_names_by_lang.get(code3)

        return resolve_first([
            (by_lang, lang or self.default_lang),
            (self.country_names, code3),
        ])

    def admin1_name(self, country: str, code: str, lang: Optional[str] = None) -> Optional[str]:
        """Long name for an admin-1 code: language, default language, unqualified, plain table."""
        key = f"{country}.{code}"
        by_lang = self.admin1_names_by_lang.get(key)

        return resolve_first([
            (by_lang, lang or self.default_lang),
            (by_lang, self.default_lang),
            (by_lang, ""),
            (self.admin1_names, key),
        ])

    def long_state(self, country: str, state: str, lang: Optional[str] = None) -> Optional[str]:
        if lang:
            return resolve_first([
                (self.admin1_names_by_lang.get(f"{country}.{state}"), lang),
                (self.long_states, state),
            ])

        return self.long_states.get(state)

    def admin2_name(self, country: str, admin1: str, admin2: str) -> Optional[str]:
        return self.admin2_names.get(f"{country}.{admin1}.{admin2}")

    def code3_for_country(self, country: str) -> Optional[str]:
        return self.name_to_code3.get(simplify(country)[:20]) or self.name_to_code3.get(simplify(country)[:40])

    def closest_country_code3(self, country: str, threshold: float = FUZZY_THRESHOLD) -> Optional[str]:
        """ISO-3 code of the known country name closest to a misspelled or variant form."""
        key = simplify(country)

        if not key or not self.name_to_code3:
            return None

        match = process.extractOne(key, list(self.name_to_code3), scorer=fuzz.ratio,
                                   score_cutoff=int(threshold * 100))

        return self.name_to_code3[match[0]] if match else None

    def is_state_or_country(self, token: str) -> bool:
        """True when token names a US/Canadian state, a country code or a country name."""
        if not token:
            return False

        token = token.upper()

        return bool(
            token in self.long_states or
            token in self.country_names or
            to_plain_ascii_upper(token) in self.state_abbreviations or
            simplify(token) in self.name_to_code3
        )
