from __future__ import annotations

from unittest.mock import MagicMock

import requests

from config import Configuration
from models import Cafe, Coordinate
from services.geocoding import NominatimClient, prefill_addresses


def _client(payload=None, ok: bool = True, error: Exception | None = None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        resp = MagicMock()
        resp.ok = ok
        resp.status_code = 200 if ok else 503
        resp.json.return_value = payload
        session.get.return_value = resp
    return NominatimClient(Configuration(), session=session), session


def test_geocode_restricts_to_metro_box() -> None:
    client, session = _client([{"lat": "-7.2575", "lon": "112.7521"}])

    coord = client.geocode("Tunjungan Plaza")

    assert coord == Coordinate(lat=-7.2575, lon=112.7521)
    url = session.get.call_args.args[0]
    params = session.get.call_args.kwargs["params"]
    assert url == "https://nominatim.openstreetmap.org/search"
    assert params["q"] == "Tunjungan Plaza, Surabaya, Indonesia"
    assert params["viewbox"] == "112.6,-7.1,112.9,-7.4"
    assert params["bounded"] == 1
    assert params["limit"] == 1
    assert session.get.call_args.kwargs["timeout"] == 10


def test_geocode_no_match() -> None:
    client, _ = _client([])
    assert client.geocode("nowhere") is None


def test_geocode_blank_skips_request() -> None:
    client, session = _client([])
    assert client.geocode("   ") is None
    session.get.assert_not_called()


def test_geocode_fails_soft() -> None:
    client, _ = _client(error=requests.Timeout("slow"))
    assert client.geocode("Galaxy Mall") is None
    client, _ = _client(ok=False)
    assert client.geocode("Galaxy Mall") is None
    client, _ = _client([{"lat": "x"}])
    assert client.geocode("Galaxy Mall") is None


def test_reverse_geocode() -> None:
    client, session = _client({"display_name": "Jl. Pemuda, Surabaya"})
    assert client.reverse_geocode(-7.26, 112.75) == "Jl. Pemuda, Surabaya"
    assert session.get.call_args.args[0].endswith("/reverse")
    client, _ = _client({"error": "Unable to geocode"})
    assert client.reverse_geocode(0.0, 0.0) is None


def test_prefill_only_missing_addresses() -> None:
    geocoder = MagicMock()
    geocoder.reverse_geocode.side_effect = ["Jl. Darmo, Surabaya", None]
    cafes = [
        Cafe(id="1", name="A", lat=-7.25, lon=112.75, address="Jl. Pemuda"),
        Cafe(id="2", name="B", lat=-7.26, lon=112.74),
        Cafe(id="3", name="C", lat=-7.27, lon=112.73),
    ]

    filled = prefill_addresses(geocoder, cafes, pause_ms=0)

    assert [c.address for c in filled] == ["Jl. Pemuda", "Jl. Darmo, Surabaya", ""]
    assert [call.args for call in geocoder.reverse_geocode.call_args_list] == [(-7.26, 112.74), (-7.27, 112.73)]
    assert cafes[1].address is None


def test_prefill_pauses_between_lookups(monkeypatch) -> None:
    sleeps = []
    monkeypatch.setattr("services.geocoding.time.sleep", sleeps.append)
    geocoder = MagicMock()
    geocoder.reverse_geocode.return_value = "somewhere"
    cafes = [Cafe(id=str(i), name="X", lat=-7.25, lon=112.75) for i in range(3)]

    prefill_addresses(geocoder, cafes, pause_ms=200)

    assert sleeps == [0.2, 0.2]
