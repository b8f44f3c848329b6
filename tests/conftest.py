"""Pytest configuration and fixtures."""
import pytest
import tempfile
import shutil
from pathlib import Path
from placefinder.core.duckdb_store import DuckDBStore
from placefinder.core.atlas import Atlas
from placefinder.core.search_history import SearchHistory

US_POSTAL_REGEX = r"^\d{5}(-\d{4})?$"
FIVE_DIGIT_POSTAL_REGEX = r"^\d{5}$"

SAMPLE_COUNTRIES = [
    {"iso3": "USA", "iso2": "US", "name": "United States", "postal_regex": US_POSTAL_REGEX, "geonames_id": 6252001},
    {"iso3": "ITA", "iso2": "IT", "name": "Italy", "postal_regex": FIVE_DIGIT_POSTAL_REGEX, "geonames_id": 3175395},
    {"iso3": "FRA", "iso2": "FR", "name": "France", "postal_regex": FIVE_DIGIT_POSTAL_REGEX, "geonames_id": 3017382},
    {"iso3": "GBR", "iso2": "GB", "name": "United Kingdom", "postal_regex": None, "geonames_id": 2635167},
]

SAMPLE_ADMIN1 = [
    {"key_name": "USA.IL", "name": "Illinois", "geonames_id": 4896861},
    {"key_name": "USA.MA", "name": "Massachusetts", "geonames_id": 6254926},
    {"key_name": "USA.MO", "name": "Missouri", "geonames_id": 4398678},
    {"key_name": "USA.CA", "name": "California", "geonames_id": 5332921},
    {"key_name": "USA.NY", "name": "New York", "geonames_id": 5128638},
    {"key_name": "USA.TX", "name": "Texas", "geonames_id": 4736286},
    {"key_name": "ITA.07", "name": "Lazio", "geonames_id": 3174976},
    {"key_name": "FRA.11", "name": "Île-de-France", "geonames_id": 3012874},
]

SAMPLE_ADMIN2 = [
    {"key_name": "USA.IL.167", "name": "Sangamon County", "geonames_id": 4250542},
    {"key_name": "USA.CA.037", "name": "Los Angeles County", "geonames_id": 5368381},
]

SAMPLE_PLACES = [
    {"id": 4250542, "name": "Springfield", "country": "USA", "admin1": "IL", "admin2": "167",
     "latitude": 39.80172, "longitude": -89.64371, "timezone": "America/Chicago", "rank": 2,
     "feature_code": "P.PPLA", "source": "GEON", "geonames_id": 4250542},
    {"id": 4951788, "name": "Springfield", "country": "USA", "admin1": "MA", "admin2": "013",
     "latitude": 42.10148, "longitude": -72.58981, "timezone": "America/New_York", "rank": 2,
     "source": "GEON", "geonames_id": 4951788},
    {"id": 4409896, "name": "Springfield", "country": "USA", "admin1": "MO", "admin2": "077",
     "latitude": 37.21533, "longitude": -93.29824, "timezone": "America/Chicago", "rank": 2,
     "source": "GEON", "geonames_id": 4409896},
    {"id": 3169070, "name": "Rome", "country": "ITA", "admin1": "07", "admin2": "RM",
     "latitude": 41.89193, "longitude": 12.51133, "timezone": "Europe/Rome", "rank": 3,
     "feature_code": "P.PPLC", "source": "GEON", "geonames_id": 3169070},
    {"id": 5134295, "name": "Rome", "country": "USA", "admin1": "NY", "admin2": "065",
     "latitude": 43.21285, "longitude": -75.45573, "timezone": "America/New_York", "rank": 1,
     "source": "GEON", "geonames_id": 5134295},
    {"id": 5368361, "name": "Los Angeles", "country": "USA", "admin1": "CA", "admin2": "037",
     "latitude": 34.05223, "longitude": -118.24368, "timezone": "America/Los_Angeles", "rank": 3,
     "source": "GEON", "geonames_id": 5368361},
    {"id": 5328041, "name": "Beverly Hills", "country": "USA", "admin1": "CA", "admin2": "037",
     "latitude": 34.07362, "longitude": -118.40036, "timezone": "America/Los_Angeles", "rank": 2,
     "source": "GEON", "geonames_id": 5328041},
    {"id": 2988507, "name": "Paris", "country": "FRA", "admin1": "11", "admin2": "75",
     "latitude": 48.85341, "longitude": 2.3488, "timezone": "Europe/Paris", "rank": 3,
     "feature_code": "P.PPLC", "source": "GEON", "geonames_id": 2988507},
    {"id": 9000001, "name": "Quarrytown", "country": "USA", "admin1": "MO",
     "latitude": 38.1, "longitude": -91.2, "timezone": "America/Chicago", "rank": 0,
     "source": "GEON", "geonames_id": 9000001},
    {"id": 9000002, "name": "Newtown", "country": "USA", "admin1": "IL",
     "latitude": 41.2, "longitude": -88.1, "timezone": "America/Chicago", "rank": 2,
     "source": "103", "geonames_id": 9000002},
    {"id": 9000003, "name": "Newtown", "country": "USA", "admin1": "MA",
     "latitude": 42.3, "longitude": -71.2, "timezone": "America/New_York", "rank": 1,
     "source": "GEON", "geonames_id": 9000003},
    {"id": 9000004, "name": "Smith", "country": "USA", "admin1": "MO",
     "latitude": 37.5, "longitude": -92.5, "timezone": "America/Chicago", "rank": 1,
     "source": "GEON", "geonames_id": 9000004},
    {"id": 4691930, "name": "Fort Worth", "country": "USA", "admin1": "TX", "admin2": "439",
     "latitude": 32.72541, "longitude": -97.32085, "timezone": "America/Chicago", "rank": 3,
     "source": "GEON", "geonames_id": 4691930},
    {"id": 4407066, "name": "Saint Louis", "country": "USA", "admin1": "MO", "admin2": "510",
     "latitude": 38.62727, "longitude": -90.19789, "timezone": "America/Chicago", "rank": 3,
     "source": "GEON", "geonames_id": 4407066},
]

SAMPLE_ALT_NAMES = [
    {"gazetteer_id": 3169070, "geonames_orig_id": 3169070, "name": "Roma", "lang": "it", "type": "P",
     "preferred": True},
    {"gazetteer_id": 3169070, "geonames_orig_id": 3169070, "name": "Rom", "lang": "de", "type": "P"},
    {"gazetteer_id": 2988507, "geonames_orig_id": 2988507, "name": "Lutetia", "lang": "en", "type": "P",
     "historic": True},
    {"gazetteer_id": 0, "geonames_orig_id": 3175395, "name": "Italia", "lang": "it", "type": "C",
     "preferred": True},
    {"gazetteer_id": 0, "geonames_orig_id": 3174976, "name": "Latium", "lang": "la", "type": "1"},
]

SAMPLE_POSTAL_CODES = [
    {"id": 1, "code": "90210", "name": "Beverly Hills", "country": "US", "admin1": "CA",
     "latitude": 34.0901, "longitude": -118.4065, "accuracy": 4, "gazetteer_id": 5328041},
    {"id": 2, "code": "62701", "name": "SPRINGFIELD", "country": "US", "admin1": "IL",
     "latitude": 39.8, "longitude": -89.65, "accuracy": 4, "timezone": "America/Chicago"},
    {"id": 3, "code": "10001", "name": "Manhattan 1", "country": "US", "admin1": "NY",
     "latitude": 40.75, "longitude": -73.99, "accuracy": 4, "timezone": "America/New_York"},
    {"id": 4, "code": "10001", "name": "Manhattan 2", "country": "US", "admin1": "NY",
     "latitude": 40.78, "longitude": -73.97, "accuracy": 4, "timezone": "America/New_York"},
    {"id": 5, "code": "10001", "name": "Manhattan 3", "country": "US", "admin1": "NY",
     "latitude": 42.9, "longitude": -73.99, "accuracy": 4, "timezone": "America/New_York"},
    {"id": 6, "code": "10001", "name": "Manhattan 4", "country": "US", "admin1": "NY",
     "latitude": 40.76, "longitude": -73.98, "accuracy": 4, "timezone": "America/Chicago"},
]


@pytest.fixture
def temp_db():
    """Create temporary DuckDB database."""
    temp_dir = tempfile.mkdtemp()
    db_path = Path(temp_dir) / "test.duckdb"
    db_store = DuckDBStore(db_path)
    yield db_store
    db_store.close()
    shutil.rmtree(temp_dir)


@pytest.fixture
def populated_db(temp_db):
    """Create database with sample countries, admin areas, places and postal codes."""
    temp_db.add_countries(SAMPLE_COUNTRIES)
    temp_db.add_admin_names(1, SAMPLE_ADMIN1)
    temp_db.add_admin_names(2, SAMPLE_ADMIN2)
    temp_db.add_places(SAMPLE_PLACES)
    temp_db.add_alt_names(SAMPLE_ALT_NAMES)
    temp_db.add_postal_codes(SAMPLE_POSTAL_CODES)

    return temp_db


@pytest.fixture
def name_tables(populated_db):
    """Name tables loaded from the sample database."""
    return populated_db.load_name_tables()


@pytest.fixture
def corpus(populated_db):
    """Corpus session over the sample database."""
    with populated_db.session() as session:
        yield session


@pytest.fixture
def history(populated_db):
    """Search history with a short debounce delay."""
    search_history = SearchHistory(populated_db, debounce_seconds=0.05)
    yield search_history
    search_history.flush()


@pytest.fixture
def atlas(populated_db, name_tables, history):
    """Corpus-only search coordinator."""
    return Atlas(populated_db, name_tables, history=history)
