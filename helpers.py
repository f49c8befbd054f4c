"""
Helper functions.

Station discovery, channel discovery and waveform retrieval against the IRIS web
services, plus the radius-expansion search that ties them together.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

# -----------------------------
# Defaults / knobs
# -----------------------------
STATION_URL = "http://service.iris.edu/fdsnws/station/1/query"
AVAILABILITY_URL = "https://service.iris.edu/fdsnws/availability/1/query"
TIMESERIES_URL = "http://service.iris.edu/irisws/timeseries/1/query"

SUPPORTED_CHANNELS = ("BHZ", "HNZ")
INITIAL_RADIUS = 0.1  # degrees
MAX_RADIUS = None  # unbounded
TIMEOUT_S = 30.0
LOG_LEVEL = "WARNING"

NOT_FOUND_MARKER = b"Error 404"
WAV_SIGNATURE = b"RIFF"


class SeismographError(Exception):
    """Base class for all errors reported to the user."""


class InputFormatError(SeismographError):
    pass


class MalformedResponse(SeismographError):
    pass


class TransportError(SeismographError):
    pass


class InvalidPayload(SeismographError):
    pass


class FileWriteError(SeismographError):
    pass


class SearchExhausted(SeismographError):
    pass


class ConfigError(SeismographError):
    pass


@dataclass(frozen=True)
class Config:
    channels: tuple[str, ...] = SUPPORTED_CHANNELS
    max_radius: float | None = MAX_RADIUS
    timeout: float = TIMEOUT_S
    log_level: str = LOG_LEVEL


def _positive_float(environ, name: str) -> float | None:
    value = environ.get(name, "").strip()
    if not value:
        return None
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}.") from None
    if not number > 0:
        raise ConfigError(f"{name} must be positive, got {value!r}.")
    return number


def load_config(environ=None) -> Config:
    """
    Read the settings from the environment.

    - ``SEISMOGRAPH_CHANNELS``: comma-separated channel codes, e.g. ``BHZ, HNZ``.
    - ``SEISMOGRAPH_MAX_RADIUS``: give up past this radius in degrees.
    - ``SEISMOGRAPH_TIMEOUT``: seconds per request.
    - ``SEISMOGRAPH_LOG_LEVEL``: a logging level name.
    """
    environ = os.environ if environ is None else environ

    channels = SUPPORTED_CHANNELS
    if environ.get("SEISMOGRAPH_CHANNELS", "").strip():
        codes = environ["SEISMOGRAPH_CHANNELS"].split(",")
        channels = tuple(code.strip() for code in codes if code.strip())
        if not channels:
            raise ConfigError("SEISMOGRAPH_CHANNELS does not name any channel.")

    timeout = _positive_float(environ, "SEISMOGRAPH_TIMEOUT")

    log_level = environ.get("SEISMOGRAPH_LOG_LEVEL", "").strip().upper() or LOG_LEVEL
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown SEISMOGRAPH_LOG_LEVEL {log_level!r}.")

    return Config(
        channels=channels,
        max_radius=_positive_float(environ, "SEISMOGRAPH_MAX_RADIUS"),
        timeout=TIMEOUT_S if timeout is None else timeout,
        log_level=log_level,
    )


@dataclass(frozen=True)
class SearchCriteria:
    latitude: float
    longitude: float
    date: str  # YYYY-MM-DD
    time: str  # HH:MM:SS
    duration: int  # seconds

    @property
    def starttime(self) -> str:
        return f"{self.date}T{self.time}"


@dataclass
class Station:
    network: str
    station: str
    latitude: float
    longitude: float
    invalid: bool = False

    @property
    def key(self) -> str:
        return self.network + self.station

    def __str__(self) -> str:
        return f"{self.network} {self.station} ({self.latitude}, {self.longitude})"


@dataclass(frozen=True)
class Channel:
    channel: str
    location: str


@dataclass(frozen=True)
class Found:
    """A response body returned by the web service."""

    content: bytes

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class NotFound:
    """The web service answered with its "Error 404" no-data body."""


def split_fields(text: str, delimiter: str) -> list[str]:
    """
    Split a string on a single-character delimiter.

    No trimming and no quoting is done. A trailing delimiter yields a trailing empty
    string.
    """
    return text.split(delimiter)


def parse_table(body: str, separator: str, count: int = 8) -> list[list[str]]:
    """
    Parse a text table returned by the web services.

    The first line (header) and the last line (the empty string after the final
    newline) are dropped. Every remaining line must split into exactly ``count``
    fields.

    Parameters
    ----------
    body
        The response body.
    separator
        The field separator, e.g. ``"|"`` for the station service.
    count
        The expected number of fields per line.
    """
    lines = split_fields(body, "\n")[1:-1]

    rows = []
    for lineno, line in enumerate(lines, start=2):
        fields = split_fields(line, separator)
        if len(fields) != count:
            msg = (
                f"Failed to parse the data: expected {count} fields in line "
                f"{lineno}, saw {len(fields)}."
            )
            raise MalformedResponse(msg)
        rows.append(fields)
    return rows


class QueryClient:
    """
    Issue GET requests to the web services.

    The services are queried with ``nodata=404``, so "no data" comes back as a body
    containing ``Error 404`` and is returned as :class:`NotFound`. Nothing is retried
    here.
    """

    def __init__(self, timeout: float = TIMEOUT_S, session=None):
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def fetch(self, url: str, params: dict | None = None) -> Found | NotFound:
        logger.debug("GET %s params=%s", url, params)
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        if NOT_FOUND_MARKER in r.content:
            logger.debug("No data for %s", r.url)
            return NotFound()
        if not 200 <= r.status_code < 300:
            raise TransportError(f"{url} returned status {r.status_code}.")
        logger.debug("Received %d bytes from %s", len(r.content), r.url)
        return Found(r.content)


def find_stations(
    client: QueryClient,
    criteria: SearchCriteria,
    radius: float,
    registry: dict[str, Station],
) -> bool:
    """
    Add the stations operational on the search date within ``radius`` to ``registry``.

    Stations already in the registry are left untouched, including invalid ones.

    Returns
    -------
    bool
        False if the service has no stations for the query, True otherwise (even if
        none of the stations were new).
    """
    print(
        f"\nFinding stations that were operational on {criteria.date} near "
        f"{criteria.latitude}, {criteria.longitude} within a radius of {radius:g}..."
    )
    params = {
        "latitude": criteria.latitude,
        "longitude": criteria.longitude,
        "maxradius": radius,
        "starttime": criteria.date,
        "endtime": criteria.date,
        "nodata": 404,
        "format": "text",
    }
    match client.fetch(STATION_URL, params=params):
        case NotFound():
            return False
        case Found() as response:
            rows = parse_table(response.text, "|")
        case other:
            raise TypeError(f"Unexpected query outcome: {other!r}")

    new_stations = 0
    for row in rows:
        try:
            latitude, longitude = float(row[2]), float(row[3])
        except ValueError:
            msg = (
                f"Invalid coordinates for station {row[0]} {row[1]}: "
                f"{row[2]}, {row[3]}."
            )
            raise MalformedResponse(msg) from None
        station = Station(row[0], row[1], latitude, longitude)
        if station.key not in registry:
            registry[station.key] = station
            new_stations += 1

    print(f"Found {new_stations} new stations.")
    logger.debug("Registry holds %d stations", len(registry))
    return True


def find_usable_channel(
    client: QueryClient,
    criteria: SearchCriteria,
    registry: dict[str, Station],
    supported: tuple[str, ...] = SUPPORTED_CHANNELS,
) -> tuple[Station, Channel] | None:
    """
    Find the first channel of a supported type that was active on the search date.

    Invalid stations are skipped. A station that is checked and has no active or no
    supported channel is marked invalid, so it is never queried again.
    """
    print(
        "Searching the stations for usable channels that were active on "
        f"{criteria.date}..."
    )
    for station in registry.values():
        if station.invalid:
            continue

        print(f"Checking {station}'s channels... ", end="")
        params = {
            "network": station.network,
            "station": station.station,
            "starttime": criteria.date,
            "endtime": criteria.date,
            "nodata": 404,
        }
        match client.fetch(AVAILABILITY_URL, params=params):
            case NotFound():
                print("No channels were active.")
                station.invalid = True
                continue
            case Found() as response:
                rows = parse_table(response.text, " ")
            case other:
                raise TypeError(f"Unexpected query outcome: {other!r}")

        for row in rows:
            channel = Channel(channel=row[3], location=row[2])
            if channel.channel in supported:
                print(f"Found an active {channel.channel} channel.")
                station.invalid = True
                return station, channel

        station.invalid = True
        print("No usable channel types.")

    return None


@dataclass
class SearchContext:
    """
    State of one search: the criteria, the station registry and the radius.

    Parameters
    ----------
    criteria
        What to search for.
    client
        Anything with a ``fetch(url, params)`` method returning Found/NotFound.
    supported
        Channel codes that may be selected.
    max_radius
        Give up once the radius would grow past this value. None means search
        until something is found.
    """

    criteria: SearchCriteria
    client: QueryClient
    supported: tuple[str, ...] = SUPPORTED_CHANNELS
    max_radius: float | None = MAX_RADIUS
    radius: float = INITIAL_RADIUS
    first_attempt: bool = True
    registry: dict[str, Station] = field(default_factory=dict)


def search(context: SearchContext) -> tuple[Station, Channel]:
    """
    Double the search radius until a station with a usable channel is found.

    The whole disc is queried again after every expansion; stations already known
    are not checked again.
    """
    while True:
        # Increase the radius each subsequent attempt.
        radius = context.radius if context.first_attempt else context.radius * 2
        if context.max_radius is not None and radius > context.max_radius:
            msg = (
                "No usable station was found within the maximum radius of "
                f"{context.max_radius:g}."
            )
            raise SearchExhausted(msg)
        if not context.first_attempt:
            print(
                f"\nRetrying. Increasing the search radius from {context.radius:g} "
                f"to {radius:g}."
            )
            context.radius = radius

        if not find_stations(
            context.client, context.criteria, context.radius, context.registry
        ):
            print("No stations were operational.")
            context.first_attempt = False
            continue

        result = find_usable_channel(
            context.client, context.criteria, context.registry, context.supported
        )
        if result is None:
            print("None of the stations had usable channels.")
            context.first_attempt = False
            continue

        return result


def retrieve(
    client: QueryClient, station: Station, channel: Channel, criteria: SearchCriteria
) -> bytes:
    """
    Download ``criteria.duration`` seconds of the channel as a WAV file.
    """
    print(
        f"Retrieving {criteria.duration} seconds of data starting at {criteria.time} "
        f"on {criteria.date} from {station.network}{station.station} "
        f"({station.latitude}, {station.longitude})'s {channel.channel} channel."
    )
    params = {
        "output": "audio",
        "net": station.network,
        "sta": station.station,
        "loc": channel.location,
        "cha": channel.channel,
        "starttime": criteria.starttime,
        "duration": criteria.duration,
    }
    response = client.fetch(TIMESERIES_URL, params=params)
    if not isinstance(response, Found) or response.content[:4] != WAV_SIGNATURE:
        raise InvalidPayload("Failed to download the data.")
    return response.content


def output_filename(station: Station, channel: Channel, criteria: SearchCriteria) -> str:
    time = criteria.time.replace(":", "-")
    return (
        f"{station.network}{station.station} {channel.channel} {criteria.date} "
        f"{time} {criteria.duration}.wav"
    )


def save_wav(payload: bytes, filename: str, directory: str | Path = ".") -> Path:
    path = Path(directory) / filename
    try:
        path.write_bytes(payload)
    except OSError as e:
        raise FileWriteError(f"Failed to save the file: {e}") from e
    return path
