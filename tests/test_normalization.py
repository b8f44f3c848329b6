"""Tests for place name normalization."""
import pytest
from placefinder.core.normalization import (
    adjust_us_county_name,
    close_match_for_city,
    close_match_for_state,
    county_state_cleanup,
    fix_rearranged_name,
    get_flag_code,
    make_key,
    make_location_key,
    phonetic_codes,
    process_place_names,
    simplify,
    standardize_short_county_name,
    to_plain_ascii_upper,
)


def test_simplify_abbreviates_leading_words():
    """Mount, Fort and Saint forms fold to the same key."""
    assert simplify("Mount Rainier") == "MTRAINIER"
    assert simplify("Mt. Rainier") == "MTRAINIER"
    assert simplify("MT RAINIER") == "MTRAINIER"
    assert simplify("Fort Worth") == "FTWORTH"
    assert simplify("Saint Louis") == "STLOUIS"
    assert simplify("St. Louis") == "STLOUIS"
    assert simplify("Sainte Genevieve") == "STEGENEVIEVE"


def test_make_key_matches_corpus_keys():
    """Query keys abbreviate leading words the same way corpus keys do."""
    assert make_key("Fort Worth") == make_key("Ft. Worth") == simplify("Fort Worth") == "FTWORTH"
    assert make_key("Saint-Louis") == "STLOUIS"
    assert make_key("Mount Rainier") == simplify("Mt Rainier")
    assert make_key("Paris (France)") == "PARISFRANCE"
    assert make_key("São Paulo") == "SAOPAULO"
    assert make_key("") == ""


def test_simplify_strips_accents_and_parentheticals():
    """Diacritics, punctuation and parenthetical notes are dropped."""
    assert simplify("São Paulo") == "SAOPAULO"
    assert simplify("Winston-Salem") == "WINSTONSALEM"
    assert simplify("Springfield (Illinois)") == "SPRINGFIELD"
    assert simplify("") == ""


def test_simplify_as_variant():
    """Variant keys drop the leading qualifier word."""
    assert simplify("Lake Tahoe", as_variant=True) == "TAHOE"
    assert simplify("The Dalles", as_variant=True) == "DALLES"
    assert simplify("Lake Tahoe", as_variant=True, process_abbreviations=False) == "LAKETAHOE"


@pytest.mark.parametrize("name", [
    "Mount Rainier", "St. Louis", "São Paulo", "Llanfairpwllgwyngyllgogerychwyrndrobwllllantysiliogogogoch",
    "Winston-Salem", "Ærøskøbing", "Fort Worth",
])
def test_simplify_is_idempotent_and_bounded(name):
    """Simplifying twice changes nothing and keys never exceed 40 characters."""
    key = simplify(name)

    assert simplify(key) == key
    assert len(key) <= 40
    assert " " not in key


def test_to_plain_ascii_upper():
    """Letters without a decomposition are spelled out."""
    assert to_plain_ascii_upper("Straße") == "STRASSE"
    assert to_plain_ascii_upper("Łódź") == "LODZ"
    assert to_plain_ascii_upper("Ærø") == "AERO"
    assert to_plain_ascii_upper("東京") == ""


def test_close_match_for_city():
    """Candidate must start with the target, ignoring case and accents."""
    assert close_match_for_city("SPRING", "Springfield")
    assert close_match_for_city("SAOPAULO", "São Paulo")
    assert not close_match_for_city("SPRINGFIELD", "Spring")
    assert not close_match_for_city(None, "Springfield")
    assert not close_match_for_city("SPRING", "")


def test_close_match_for_state(name_tables):
    """State codes, long state names, country codes and names all match."""
    assert close_match_for_state("IL", "IL", "USA", name_tables)
    assert close_match_for_state("ILL", "IL", "USA", name_tables)
    assert close_match_for_state("US", "IL", "USA", name_tables)
    assert close_match_for_state("UNITED", "IL", "USA", name_tables)
    assert close_match_for_state("ITA", "07", "ITA", name_tables)
    assert close_match_for_state("ENGLAND", "ENG", "GBR", name_tables)
    assert not close_match_for_state("MA", "IL", "USA", name_tables)


def test_close_match_for_state_without_target(name_tables):
    """An empty target, or a place with no state and country, always matches."""
    assert close_match_for_state("", "IL", "USA", name_tables)
    assert close_match_for_state("IL", "", "", name_tables)


def test_phonetic_codes():
    """Sound-alike spellings share codes; numbers have none."""
    assert phonetic_codes("Smith") == phonetic_codes("Smyth")
    assert phonetic_codes("Route 66") is None
    assert phonetic_codes("") is None
    assert phonetic_codes(None) is None


def test_fix_rearranged_name():
    """Inverted names are put back in reading order."""
    assert fix_rearranged_name("Dalles, The") == ("The Dalles", "Dalles")
    assert fix_rearranged_name("Springfield") == ("Springfield", None)


def test_adjust_us_county_name():
    """Each state uses its own county-level suffix."""
    assert adjust_us_county_name("Cook", "IL") == "Cook County"
    assert adjust_us_county_name("Orleans", "LA") == "Orleans Parish"
    assert adjust_us_county_name("Bethel", "AK") == "Bethel Census Area"
    assert adjust_us_county_name("Juneau", "AK") == "Juneau Division"
    assert adjust_us_county_name("Kodiak Island", "AK") == "Kodiak Island Borough"
    assert adjust_us_county_name("Cook County", "IL") == "Cook County"
    assert adjust_us_county_name(None, "IL") is None


def test_standardize_short_county_name():
    """County names are reduced to their short standard form."""
    assert standardize_short_county_name("Sangamon County") == "Sangamon"
    assert standardize_short_county_name("St. Louis County") == "Saint Louis"
    assert standardize_short_county_name("De Kalb County") == "DeKalb"
    assert standardize_short_county_name("Prince Georges County") == "Prince George's"


def test_county_state_cleanup():
    """Administrative boilerplate is removed from admin names."""
    assert county_state_cleanup("County of Los Angeles") == "Los Angeles"
    assert county_state_cleanup("Provincia di Roma") == "Roma"
    assert county_state_cleanup("Moscow oblast") == "Moscow"
    assert county_state_cleanup(None) == ""


def test_make_location_key():
    """US and Canadian places are keyed by state, others by country, with collision suffixes."""
    assert make_location_key("Springfield", "IL", "USA", {}) == "SPRINGFIELD,IL"
    assert make_location_key("Rome", "07", "ITA", {}) == "ROME,ITA"

    existing = {"SPRINGFIELD,IL": None, "SPRINGFIELD,IL(2)": None}
    assert make_location_key("Springfield", "IL", "USA", existing) == "SPRINGFIELD,IL(3)"


def test_process_place_names_us(name_tables):
    """US state names become abbreviations and counties are standardized."""
    names = process_place_names("Springfield", "Sangamon County", "Illinois", "USA", name_tables)

    assert names.city == "Springfield"
    assert names.state == "IL"
    assert names.county == "Sangamon"
    assert names.country == "USA"
    assert names.long_country == "United States"


def test_process_place_names_country_name(name_tables):
    """Country names resolve to ISO-3 codes; unknown ones get a marked fallback."""
    names = process_place_names("Rome", None, "Lazio", "Italy", name_tables)
    assert names.country == "ITA"
    assert names.long_country == "Italy"

    names = process_place_names("Poseidonia", None, "", "Atlantis", name_tables)
    assert names.country == "At?"


def test_process_place_names_misspelled_country(name_tables):
    """Close misspellings of a known country still resolve."""
    names = process_place_names("Rome", None, "Lazio", "Itally", name_tables)

    assert names.country == "ITA"
    assert names.long_country == "Italy"


def test_closest_country_code3(name_tables):
    assert name_tables.closest_country_code3("United Statess") == "USA"
    assert name_tables.closest_country_code3("Atlantis") is None
    assert name_tables.closest_country_code3("") is None


def test_process_place_names_rejects_numbered_districts(name_tables):
    """Numbered districts are not places."""
    assert process_place_names("10th Arrondissement", None, "", "FRA", name_tables) is None
    assert process_place_names("Paris 01", None, "", "FRA", name_tables) is None


def test_process_place_names_variant(name_tables):
    """A leading qualifier word yields a variant name."""
    names = process_place_names("Lake Forest", None, "IL", "USA", name_tables)
    assert names.variant == "Forest"


def test_get_flag_code(name_tables):
    """Regional flags take precedence over the country flag."""
    assert get_flag_code("USA", "IL", name_tables) == "us"
    assert get_flag_code("GBR", "England", name_tables) == "england"
    assert get_flag_code("GBR", "Yorkshire", name_tables) == "gb"
    assert get_flag_code("ZZZ", None, name_tables) is None


def test_process_place_names_alternate_country_name(name_tables):
    """Country names in other languages map to the standard name."""
    names = process_place_names("Roma", None, "Lazio", "Italia", name_tables)

    assert names.country == "ITA"
    assert names.long_country == "Italy"
