"""Tests for the GeoNames and Nominatim remote sources."""
import threading
import pytest
import requests
from placefinder.core.errors import RemoteSourceError, SourceTimeoutError
from placefinder.core.models import Origin
from placefinder.gazetteers.geonames import GeoNamesSource, rank_for_place
from placefinder.gazetteers.nominatim import PAGE_SIZE, NominatimSource, place_type_for


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Stands in for requests.Session, replaying canned payloads."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = []
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        payload = self.payloads.pop(0) if self.payloads else []

        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, FakeResponse):
            return payload

        return FakeResponse(payload)


SPRINGFIELD_GEONAME = {
    "name": "Springfield",
    "adminName2": "Sangamon County",
    "adminCode1": "IL",
    "adminName1": "Illinois",
    "countryCode": "US",
    "fcl": "P",
    "fcode": "PPLA",
    "lat": "39.80172",
    "lng": "-89.64371",
    "population": 116250,
    "geonameId": 4250542,
    "timezone": {"timeZoneId": "America/Chicago"},
}


def nominatim_place(place_id, name="Springfield", state="Illinois", iso="US-IL", **kwargs):
    place = {
        "place_id": place_id,
        "category": "place",
        "type": "city",
        "addresstype": "city",
        "name": name,
        "lat": "39.8",
        "lon": "-89.6",
        "address": {
            "city": name,
            "county": "Sangamon County",
            "state": state,
            "ISO3166-2-lvl4": iso,
            "country": "United States",
            "country_code": "us",
        },
        "extratags": {"population": "116250"},
    }
    place.update(kwargs)
    return place


def test_rank_for_place():
    """Populated places and capitals outrank natural features."""
    assert rank_for_place("T.PK", 0) == 0
    assert rank_for_place("P.PPL", 0) == 1
    assert rank_for_place("P.PPL", 500) == 2
    assert rank_for_place("P.PPLC", 2000000) == 4


def test_geonames_lookup(name_tables):
    """GeoNames results are normalized into locations."""
    session = FakeSession({"totalResultsCount": 1, "geonames": [SPRINGFIELD_GEONAME]})
    source = GeoNamesSource(name_tables, username="demo", session=session)

    places, metrics = source.lookup("SPRINGFIELD", "IL")

    assert metrics.raw_count == 1
    assert metrics.matched_count == 1
    location = places["SPRINGFIELD,IL"]
    assert location.state == "IL"
    assert location.county == "Sangamon"
    assert location.country == "USA"
    assert location.zone == "America/Chicago"
    assert location.rank == 2
    assert location.place_type == "P.PPLA"
    assert location.source == "GEON"
    assert location.origin == Origin.GEONAMES
    assert location.geonames_id == 4250542

    url, params = session.calls[0]
    assert url.endswith("/searchJSON")
    assert params["name_startsWith"] == "SPRINGFIELD"
    assert params["username"] == "demo"


def test_geonames_filters_other_states(name_tables):
    session = FakeSession({"totalResultsCount": 1, "geonames": [SPRINGFIELD_GEONAME]})
    source = GeoNamesSource(name_tables, username="demo", session=session)

    places, metrics = source.lookup("SPRINGFIELD", "MO")

    assert len(places) == 0
    assert metrics.raw_count == 1


def test_geonames_postal_lookup(name_tables):
    """Postal searches use the postal code service and keep the zip."""
    session = FakeSession({"postalCodes": [{
        "placeName": "Beverly Hills", "postalcode": "90210", "countryCode": "US", "adminCode1": "CA",
        "adminName2": "Los Angeles", "lat": 34.09, "lng": -118.41,
    }]})
    source = GeoNamesSource(name_tables, username="demo", session=session)

    places, _ = source.lookup("", "", "90210")

    location = list(places.values())[0]
    assert location.zip == "90210"
    assert location.source == "GEOZ"
    assert session.calls[0][0].endswith("/postalCodeSearchJSON")


def test_geonames_service_error(name_tables):
    session = FakeSession({"status": {"message": "daily limit exceeded", "value": 18}})
    source = GeoNamesSource(name_tables, username="demo", session=session)

    with pytest.raises(RemoteSourceError, match="daily limit exceeded"):
        source.lookup("SPRINGFIELD", "")


def test_geonames_requires_username(name_tables):
    source = GeoNamesSource(name_tables, username="demo", session=FakeSession())
    source.username = None

    with pytest.raises(RemoteSourceError):
        source.lookup("SPRINGFIELD", "")


def test_http_failures_mapped(name_tables):
    """Transport failures become source errors; timeouts keep their own type."""
    source = GeoNamesSource(name_tables, username="demo",
                            session=FakeSession(requests.exceptions.Timeout("slow"),
                                                requests.exceptions.ConnectionError("refused"),
                                                FakeResponse({}, status_code=503)))

    with pytest.raises(SourceTimeoutError):
        source.lookup("SPRINGFIELD", "")
    with pytest.raises(RemoteSourceError, match="refused"):
        source.lookup("SPRINGFIELD", "")
    with pytest.raises(RemoteSourceError, match="503"):
        source.lookup("SPRINGFIELD", "")


def test_cancelled_lookup(name_tables):
    """A lookup the caller gave up on stops with a timeout error."""
    session = FakeSession({"totalResultsCount": 1, "geonames": [SPRINGFIELD_GEONAME]})
    source = GeoNamesSource(name_tables, username="demo", session=session)
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(SourceTimeoutError):
        source.lookup("SPRINGFIELD", "", cancel_event=cancel_event)


def test_place_type_for():
    assert place_type_for({"category": "place", "type": "town"}) == "P.PPL"
    assert place_type_for({"category": "natural", "type": "peak"}) == "T.PK"
    assert place_type_for({"category": "boundary", "type": "administrative", "addresstype": "state"}) == "A.ADM1"
    assert place_type_for({"category": "place", "type": "city", "extratags": {"capital": "yes"}}) == "P.PPLC"
    assert place_type_for({"category": "highway", "type": "residential"}) is None


def test_nominatim_lookup(name_tables):
    """Nominatim places are normalized; streets and other features are skipped."""
    session = FakeSession([
        nominatim_place(1),
        nominatim_place(2, name="Springfield Road", category="highway", type="residential"),
    ])
    source = NominatimSource(name_tables, base_url="http://nominatim.test", session=session)

    places, metrics = source.lookup("SPRINGFIELD", "IL")

    assert metrics.raw_count == 2
    assert metrics.matched_count == 1
    assert metrics.complete
    location = places["SPRINGFIELD,IL"]
    assert location.state == "IL"
    assert location.county == "Sangamon"
    assert location.source == "OSM"
    assert location.origin == Origin.NOMINATIM
    assert location.rank == 2
    assert location.zip is None
    assert session.calls[0][1]["q"] == "SPRINGFIELD, IL"


def test_nominatim_pages_until_short_page(name_tables):
    """Full pages lead to another request excluding the places already seen."""
    first_page = [nominatim_place(i) for i in range(1, PAGE_SIZE + 1)]
    session = FakeSession(first_page, [])
    source = NominatimSource(name_tables, base_url="http://nominatim.test", session=session)

    places, metrics = source.lookup("SPRINGFIELD", "")

    assert len(session.calls) == 2
    assert "exclude_place_ids" not in session.calls[0][1]
    assert session.calls[1][1]["exclude_place_ids"].startswith("1,2,3")
    assert metrics.raw_count == PAGE_SIZE
    assert len(places) == 1


def test_nominatim_stops_after_preferred_time(name_tables):
    """Past the preferred time the partial result is returned."""
    first_page = [nominatim_place(i) for i in range(1, PAGE_SIZE + 1)]
    session = FakeSession(first_page, first_page)
    source = NominatimSource(name_tables, base_url="http://nominatim.test", preferred_time=0, session=session)

    places, metrics = source.lookup("SPRINGFIELD", "")

    assert len(session.calls) == 1
    assert not metrics.complete
    assert len(places) == 1
