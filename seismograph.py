"""
Save a WAV of the seismic waveform recorded near a location at a given time.

The nearest station that was operational on the given date and has a usable channel
(BHZ or HNZ by default) is found by repeatedly doubling a search radius around the
location. The waveform is downloaded from the IRIS timeseries service as audio and
saved in the current directory.

- History:
  - 2020/10/12 Initial version.
"""

import logging
import re
import sys

from obspy import UTCDateTime

from helpers import (
    Config,
    InputFormatError,
    QueryClient,
    SearchContext,
    SearchCriteria,
    SeismographError,
    load_config,
    output_filename,
    retrieve,
    save_wav,
    search,
)

__version__ = "2020-10-12"

logger = logging.getLogger(__name__)

USAGE = (
    'Usage: <Latitude> <Longitude> <Date> <Time> <Duration>. "Date" must be in '
    'YYYY-MM-DD format. "Time" must be in HH:MM:SS format (24-hour). "Duration" is '
    'in seconds. Example: "41.967 -71.188 2017-03-01 12:00:00 1800".'
)
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}:\d{2}$")


def banner():
    """
    Print the startup message.
    """
    print(
        f"Seismograph {__version__}\n\n"
        "Copyright Myles Trevino\n"
        "Licensed under the Apache License, Version 2.0\n"
        "https://www.apache.org/licenses/LICENSE-2.0\n"
    )


def parse_criteria(line: str) -> SearchCriteria:
    """
    Parse and validate "<latitude> <longitude> <date> <time> <duration>".
    """
    tokens = line.split()
    if len(tokens) != 5:
        raise InputFormatError(USAGE)
    latitude, longitude, date, time, duration = tokens

    if not DATE_PATTERN.match(date):
        raise InputFormatError("Invalid date format.")
    if not TIME_PATTERN.match(time):
        raise InputFormatError("Invalid time format.")
    try:
        UTCDateTime(f"{date}T{time}")
    except (TypeError, ValueError) as e:
        raise InputFormatError(f"Invalid date or time: {date} {time}.") from e

    try:
        criteria = SearchCriteria(
            latitude=float(latitude),
            longitude=float(longitude),
            date=date,
            time=time,
            duration=int(duration),
        )
    except ValueError as e:
        raise InputFormatError(f"Invalid number: {e}.") from e
    if criteria.duration <= 0:
        raise InputFormatError("Duration must be a positive number of seconds.")
    return criteria


def run(
    criteria: SearchCriteria, client=None, directory=".", config: Config | None = None
) -> str:
    """
    Search for a station, download its waveform and save it. Return the file name.
    """
    config = config if config is not None else Config()
    client = client if client is not None else QueryClient(timeout=config.timeout)
    context = SearchContext(
        criteria=criteria,
        client=client,
        supported=config.channels,
        max_radius=config.max_radius,
    )
    station, channel = search(context)
    logger.info(
        "Selected %s.%s.%s.%s after %d stations within %g degrees",
        station.network,
        station.station,
        channel.location,
        channel.channel,
        len(context.registry),
        context.radius,
    )

    payload = retrieve(client, station, channel, criteria)
    filename = output_filename(station, channel, criteria)
    save_wav(payload, filename, directory)
    print(f'Saved as "{filename}".')
    return filename


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv

    banner()
    try:
        config = load_config()
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            stream=sys.stderr,
        )
        if len(argv) == 5:
            line = " ".join(argv)
        else:
            line = input("> ")
        criteria = parse_criteria(line)
        run(criteria, config=config)
    except SeismographError as e:
        print(f"\nError: {e}")
        return 1
    except EOFError:
        print(f"\nError: {USAGE}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
