"""Navitia queries for vehicle occupancies: vehicle journeys and route schedules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from forseti import metrics
from forseti.httpclient import HttpError, fetch_json
from forseti.oditi_models import new_route_schedule

__all__ = [
    "StopPointVj",
    "VehicleJourney",
    "create_vehicle_journeys",
    "call_navitia",
    "get_status_publication_date",
    "get_vehicle_journeys",
    "load_route_schedules_data",
    "load_routes_with_direction",
]

URL_GET_LAST_LOAD = "{}/status?"
URL_GET_VEHICLE_JOURNEY = (
    "{}/vehicle_journeys?filter=vehicle_journey.has_code({})&since={}&until={}&"
)
URL_GET_ROUTES = "{}/lines/{}/route_schedules?direction_type={}&from_datetime={}"
STOP_POINT_CODE = "gtfs_stop_code"

LINE_40 = "line:IDFM:C00048"
LINE_45 = "line:IDFM:C00051"

_NAVITIA_DATE_TIME = "%Y%m%dT%H%M%S"


@dataclass(frozen=True)
class StopPointVj:
    """A stop point of a vehicle journey with its GTFS stop code."""

    id: str
    gtfs_stop_code: str


@dataclass
class VehicleJourney:
    """A Navitia vehicle journey matched to a GTFS-RT trip code."""

    vehicle_id: str
    codes_source: str
    stop_points: list = field(default_factory=list)
    create_date: datetime | None = None


def call_navitia(url, token, timeout):
    """Query Navitia and return the decoded JSON body."""
    try:
        return fetch_json(url, token, "Authorization", timeout)
    except (HttpError, ValueError):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise


def _as_mapping(data, what):
    if not isinstance(data, dict):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise ValueError(f"unexpected Navitia {what} response")
    return data


def create_vehicle_journeys(navitia_vj, id_gtfs_rt, create_date):
    """Build one VehicleJourney for each journey of a Navitia response.

    Stop points accumulate from one journey to the next, and a stop time
    without a GTFS code repeats the previous stop point.
    """
    stop_points = []
    current = StopPointVj("", "")
    journeys = []
    for journey in navitia_vj.get("vehicle_journeys") or []:
        for stop_time in journey.get("stop_times") or []:
            stop_point = stop_time.get("stop_point") or {}
            for code in stop_point.get("codes") or []:
                if code.get("type") == STOP_POINT_CODE:
                    current = StopPointVj(stop_point.get("id", ""), code.get("value", ""))
            stop_points.append(current)
        journeys.append(
            VehicleJourney(journey.get("id", ""), id_gtfs_rt, list(stop_points), create_date)
        )
    return journeys


def get_status_publication_date(uri, token, timeout):
    """Return the publication date of the data currently loaded in Navitia."""
    data = _as_mapping(call_navitia(URL_GET_LAST_LOAD.format(uri), token, timeout), "status")
    status = data.get("status") or {}
    publication_date = status.get("publication_date", "") if isinstance(status, dict) else None
    if not isinstance(publication_date, str):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise ValueError("unexpected Navitia publication date")
    return publication_date


def get_vehicle_journeys(id_gtfs_rt, uri, token, timeout, location):
    """Fetch the journeys carrying the trip code, running within an hour of now."""
    source_code = f"source%2C{id_gtfs_rt}"
    now = datetime.now(timezone.utc).astimezone(location)
    since = (now - timedelta(hours=1)).strftime(_NAVITIA_DATE_TIME)
    until = (now + timedelta(hours=1)).strftime(_NAVITIA_DATE_TIME)
    url = URL_GET_VEHICLE_JOURNEY.format(uri, source_code, since, until)
    data = _as_mapping(call_navitia(url, token, timeout), "vehicle journey")
    return create_vehicle_journeys(data, id_gtfs_rt, datetime.now(timezone.utc))


def load_route_schedules_data(start_index, navitia_routes, direction, location):
    """Build route schedules from the first schedule table of a Navitia response.

    Ids are numbered from `start_index`; passages at the first row are departures.
    Passages whose date time cannot be read are skipped.
    """
    schedules = navitia_routes.get("route_schedules") or []
    if not schedules:
        raise ValueError("no route schedule in the Navitia response")
    schedule = schedules[0]
    line_code = (schedule.get("display_informations") or {}).get("code", "")
    result = []
    rows = (schedule.get("table") or {}).get("rows") or []
    for row_index, row in enumerate(rows):
        stop_id = (row.get("stop_point") or {}).get("id", "")
        for passage in row.get("date_times") or []:
            vj_id = passage["links"][0].get("value", "")
            try:
                route_schedule = new_route_schedule(
                    line_code, stop_id, vj_id, passage.get("date_time", ""), direction,
                    start_index, row_index == 0, location,
                )
            except ValueError:
                continue
            result.append(route_schedule)
            start_index += 1
    return result


def _load_line(uri, line, token, direction, sens, start_index, timeout, location, date_time):
    url = URL_GET_ROUTES.format(uri, line, direction, date_time)
    data = _as_mapping(call_navitia(url, token, timeout), "route schedules")
    return load_route_schedules_data(start_index, data, sens, location)


def load_routes_with_direction(start_index, uri, token, direction, timeout, location):
    """Load today's route schedules of lines 40 and 45 in one direction."""
    date_time = datetime.now(timezone.utc).strftime("%Y%m%dT000000")
    sens = 1 if direction in ("backward", "outbound") else 0
    schedules = _load_line(uri, LINE_40, token, direction, sens, start_index, timeout,
                           location, date_time)
    start_index += len(schedules)
    schedules += _load_line(uri, LINE_45, token, direction, sens, start_index + 1, timeout,
                            location, date_time)
    return schedules