from unittest.mock import MagicMock

import requests

from services.geocoding_service import NominatimGeocoder


def make_geocoder(body=None, error=None, sleeps=None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value.json.return_value = body
    clock = iter(range(0, 1000)).__next__
    geocoder = NominatimGeocoder(
        "https://geo.test/search",
        "intake-tests/1.0",
        region="Philippines",
        session=session,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        clock=lambda: float(clock()) * 0.1,
    )
    return geocoder, session


def test_geocode_appends_region_and_sends_user_agent():
    geocoder, session = make_geocoder([{"lat": "10.31", "lon": "123.89"}])

    assert geocoder.geocode("Cebu City") == {"lat": 10.31, "lng": 123.89}

    kwargs = session.get.call_args.kwargs
    assert kwargs["params"]["q"] == "Cebu City, Philippines"
    assert kwargs["headers"]["User-Agent"] == "intake-tests/1.0"


def test_results_are_cached_per_lowercased_place():
    geocoder, session = make_geocoder([{"lat": "1", "lon": "2"}])

    geocoder.geocode("Cebu")
    geocoder.geocode("  cebu ")

    assert session.get.call_count == 1
    assert geocoder.cached("CEBU") == {"lat": 1.0, "lng": 2.0}


def test_misses_are_cached_too():
    geocoder, session = make_geocoder([])

    assert geocoder.geocode("Atlantis") is None
    assert geocoder.geocode("Atlantis") is None
    assert session.get.call_count == 1


def test_transport_errors_return_none_and_are_retried_later():
    geocoder, session = make_geocoder(error=requests.Timeout("slow"))

    assert geocoder.geocode("Davao") is None
    assert geocoder.geocode("Davao") is None
    assert session.get.call_count == 2


def test_blank_place_skips_the_request():
    geocoder, session = make_geocoder([{"lat": "1", "lon": "2"}])
    assert geocoder.geocode("   ") is None
    assert geocoder.geocode(None) is None
    session.get.assert_not_called()


def test_live_requests_are_spaced_out():
    sleeps = []
    geocoder, _ = make_geocoder([{"lat": "1", "lon": "2"}], sleeps=sleeps)

    geocoder.geocode("Cebu")
    geocoder.geocode("Manila")

    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 0.25
