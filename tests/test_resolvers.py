import pytest
import requests

from dpcmatch.geocoding.resolvers import NominatimResolver, ZippopotamResolver, state_abbreviation


class DummyResponse:
    def __init__(self, status_code=200, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload or {}
        self._invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._invalid_json:
            raise ValueError("not json")
        return self._payload


class DummySession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


ZIPPOPOTAM_PAYLOAD = {
    "post code": "78701",
    "country": "United States",
    "country abbreviation": "US",
    "places": [
        {
            "place name": "Austin",
            "longitude": "-97.7426",
            "state": "Texas",
            "state abbreviation": "TX",
            "latitude": "30.2713",
        }
    ],
}

NOMINATIM_PAYLOAD = {
    "address": {
        "house_number": "600",
        "road": "Congress Avenue",
        "town": "Austin",
        "county": "Travis County",
        "state": "Texas",
        "postcode": "78701-3234",
    }
}


def test_zippopotam_success():
    session = DummySession(DummyResponse(payload=ZIPPOPOTAM_PAYLOAD))
    resolver = ZippopotamResolver(base_url="https://api.zippopotam.us/us/", session=session)

    result = resolver.resolve_zip("78701", timeout=5.0)

    assert result.latitude == pytest.approx(30.2713)
    assert result.longitude == pytest.approx(-97.7426)
    assert result.city == "Austin"
    assert result.state_abbrev == "TX"
    assert result.country == "United States"
    assert session.calls[0]["url"] == "https://api.zippopotam.us/us/78701"
    assert session.calls[0]["timeout"] == 5.0


def test_zippopotam_not_found():
    session = DummySession(DummyResponse(status_code=404))
    assert ZippopotamResolver(session=session).resolve_zip("00000", timeout=5.0) is None


def test_zippopotam_server_error():
    session = DummySession(DummyResponse(status_code=503))
    assert ZippopotamResolver(session=session).resolve_zip("78701", timeout=5.0) is None


def test_zippopotam_transport_error():
    session = DummySession(error=requests.ConnectionError("refused"))
    assert ZippopotamResolver(session=session).resolve_zip("78701", timeout=5.0) is None


def test_zippopotam_empty_places():
    session = DummySession(DummyResponse(payload={"places": []}))
    assert ZippopotamResolver(session=session).resolve_zip("78701", timeout=5.0) is None


def test_zippopotam_malformed_place():
    payload = {"places": [{"place name": "Austin", "latitude": "n/a", "longitude": "-97.7"}]}
    session = DummySession(DummyResponse(payload=payload))
    assert ZippopotamResolver(session=session).resolve_zip("78701", timeout=5.0) is None


def test_nominatim_success():
    session = DummySession(DummyResponse(payload=NOMINATIM_PAYLOAD))
    resolver = NominatimResolver(user_agent="DPCMatch-test/1.0", session=session)

    result = resolver.resolve_point(30.2687, -97.7404, timeout=5.0)

    assert result.city == "Austin"
    assert result.state == "Texas"
    assert result.state_abbrev == "TX"
    assert result.zip_code == "78701"
    assert result.county == "Travis County"
    assert result.street == "600 Congress Avenue"

    call = session.calls[0]
    assert call["headers"]["User-Agent"] == "DPCMatch-test/1.0"
    assert call["params"]["lat"] == 30.2687
    assert call["params"]["lon"] == -97.7404
    assert call["params"]["format"] == "json"
    assert call["timeout"] == 5.0


def test_nominatim_street_without_house_number():
    payload = {"address": {"road": "Main Street", "village": "Wimberley", "state": "Texas"}}
    session = DummySession(DummyResponse(payload=payload))

    result = NominatimResolver(session=session).resolve_point(29.99, -98.1, timeout=5.0)

    assert result.street == "Main Street"
    assert result.city == "Wimberley"
    assert result.zip_code == ""


def test_nominatim_error_payload():
    session = DummySession(DummyResponse(payload={"error": "Unable to geocode"}))
    assert NominatimResolver(session=session).resolve_point(0.0, 0.0, timeout=5.0) is None


def test_nominatim_invalid_json():
    session = DummySession(DummyResponse(invalid_json=True))
    assert NominatimResolver(session=session).resolve_point(30.0, -97.0, timeout=5.0) is None


def test_state_abbreviation():
    assert state_abbreviation("Texas") == "TX"
    assert state_abbreviation("District of Columbia") == "DC"
    assert state_abbreviation("Ontario") == "ON"
    assert state_abbreviation("") == ""
