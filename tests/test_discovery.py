"""Tests for station and channel discovery."""

import pytest

from helpers import (
    AVAILABILITY_URL,
    STATION_URL,
    Channel,
    Found,
    MalformedResponse,
    NotFound,
    SearchCriteria,
    Station,
    find_stations,
    find_usable_channel,
)
from tests.fakes import FakeClient, channel_row, channels, station_row, stations


@pytest.fixture
def criteria() -> SearchCriteria:
    return SearchCriteria(41.967, -71.188, "2017-03-01", "12:00:00", 1800)


def test_find_stations_query_parameters(criteria: SearchCriteria) -> None:
    client = FakeClient([stations(station_row("IU", "ANMO"))])

    find_stations(client, criteria, 0.1, {})

    assert client.calls == [
        (
            STATION_URL,
            {
                "latitude": 41.967,
                "longitude": -71.188,
                "maxradius": 0.1,
                "starttime": "2017-03-01",
                "endtime": "2017-03-01",
                "nodata": 404,
                "format": "text",
            },
        )
    ]


def test_find_stations_not_found_leaves_registry_alone(criteria: SearchCriteria) -> None:
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}
    client = FakeClient([NotFound()])

    assert find_stations(client, criteria, 0.1, registry) is False
    assert list(registry) == ["IUANMO"]


def test_find_stations_adds_new_stations(criteria: SearchCriteria) -> None:
    registry: dict[str, Station] = {}
    client = FakeClient(
        [stations(station_row("IU", "ANMO", "34.9", "-106.5"), station_row("NE", "WES"))]
    )

    assert find_stations(client, criteria, 0.1, registry) is True
    assert registry["IUANMO"] == Station("IU", "ANMO", 34.9, -106.5, invalid=False)
    assert list(registry) == ["IUANMO", "NEWES"]


def test_find_stations_never_overwrites_known_station(criteria: SearchCriteria) -> None:
    """Given an invalidated station, when it is listed again, then it stays as it was."""
    known = Station("IU", "ANMO", 1.0, 2.0, invalid=True)
    registry = {"IUANMO": known}
    client = FakeClient([stations(station_row("IU", "ANMO", "34.9", "-106.5"))])

    assert find_stations(client, criteria, 0.2, registry) is True
    assert registry["IUANMO"] is known
    assert known.invalid is True
    assert (known.latitude, known.longitude) == (1.0, 2.0)


def test_find_stations_rejects_bad_rows(criteria: SearchCriteria) -> None:
    client = FakeClient([Found(b"#header\nIU|ANMO|34.9\n")])

    with pytest.raises(MalformedResponse):
        find_stations(client, criteria, 0.1, {})


def test_find_stations_rejects_bad_coordinates(criteria: SearchCriteria) -> None:
    client = FakeClient([stations(station_row("IU", "ANMO", "north", "-106.5"))])

    with pytest.raises(MalformedResponse, match="coordinates"):
        find_stations(client, criteria, 0.1, {})


def test_find_usable_channel_query_parameters(criteria: SearchCriteria) -> None:
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}
    client = FakeClient()

    find_usable_channel(client, criteria, registry)

    assert client.calls == [
        (
            AVAILABILITY_URL,
            {
                "network": "IU",
                "station": "ANMO",
                "starttime": "2017-03-01",
                "endtime": "2017-03-01",
                "nodata": 404,
            },
        )
    ]


def test_find_usable_channel_selects_first_supported_row(criteria: SearchCriteria) -> None:
    """Given LHZ then BHZ then HNZ, when scanning, then the BHZ row is selected."""
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}
    client = FakeClient(
        channel_responses={
            "IUANMO": channels(
                channel_row("IU", "ANMO", "00", "LHZ"),
                channel_row("IU", "ANMO", "10", "BHZ"),
                channel_row("IU", "ANMO", "20", "HNZ"),
            )
        }
    )

    result = find_usable_channel(client, criteria, registry, ("BHZ", "HNZ"))

    assert result == (registry["IUANMO"], Channel(channel="BHZ", location="10"))


def test_find_usable_channel_exact_match_only(criteria: SearchCriteria) -> None:
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}
    client = FakeClient(
        channel_responses={
            "IUANMO": channels(
                channel_row("IU", "ANMO", "00", "BHZ1"),
                channel_row("IU", "ANMO", "00", "bhz"),
            )
        }
    )

    assert find_usable_channel(client, criteria, registry, ("BHZ",)) is None
    assert registry["IUANMO"].invalid is True


def test_find_usable_channel_invalidates_and_moves_on(criteria: SearchCriteria) -> None:
    registry = {
        "IUANMO": Station("IU", "ANMO", 34.9, -106.5),
        "NEWES": Station("NE", "WES", 42.4, -71.3),
        "USNCB": Station("US", "NCB", 44.0, -74.0),
    }
    client = FakeClient(
        channel_responses={
            "NEWES": channels(channel_row("NE", "WES", "00", "LHZ")),
            "USNCB": channels(channel_row("US", "NCB", "00", "HNZ")),
        }
    )

    station, channel = find_usable_channel(client, criteria, registry, ("BHZ", "HNZ"))

    assert station.key == "USNCB"
    assert channel == Channel("HNZ", "00")
    assert client.channel_queries() == ["IUANMO", "NEWES", "USNCB"]
    assert registry["IUANMO"].invalid and registry["NEWES"].invalid


def test_find_usable_channel_skips_invalid_stations(criteria: SearchCriteria) -> None:
    registry = {
        "IUANMO": Station("IU", "ANMO", 34.9, -106.5, invalid=True),
        "NEWES": Station("NE", "WES", 42.4, -71.3),
    }
    client = FakeClient()

    assert find_usable_channel(client, criteria, registry) is None
    assert client.channel_queries() == ["NEWES"]


def test_find_usable_channel_rejects_bad_rows(criteria: SearchCriteria) -> None:
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}
    client = FakeClient(channel_responses={"IUANMO": Found(b"#header\nIU ANMO 00 BHZ\n")})

    with pytest.raises(MalformedResponse):
        find_usable_channel(client, criteria, registry)


class UnexpectedOutcomeClient(FakeClient):
    def fetch(self, url, params=None):
        super().fetch(url, params)
        return b"#Network|Station\n"


def test_find_stations_rejects_unknown_outcome(criteria: SearchCriteria) -> None:
    registry: dict[str, Station] = {}

    with pytest.raises(TypeError, match="Unexpected query outcome"):
        find_stations(UnexpectedOutcomeClient(), criteria, 0.1, registry)

    assert registry == {}


def test_find_usable_channel_rejects_unknown_outcome(criteria: SearchCriteria) -> None:
    registry = {"IUANMO": Station("IU", "ANMO", 34.9, -106.5)}

    with pytest.raises(TypeError, match="Unexpected query outcome"):
        find_usable_channel(UnexpectedOutcomeClient(), criteria, registry)
