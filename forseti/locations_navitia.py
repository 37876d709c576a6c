"""Navitia queries and vehicle journey models for vehicle locations."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from forseti.httpclient import fetch_json

URL_GET_LAST_LOAD = "{}/status?"
URL_GET_VEHICLE_JOURNEY = "{}/vehicle_journeys?filter=vehicle_journey.has_code({})&"
STOP_POINT_CODE = "gtfs_stop_code"


class Navitia:
    """Connection settings for Navitia and the last publication date seen."""

    def __init__(self, url, token, connection_timeout):
        self.url = str(url)
        self.token = token
        self.connection_timeout = connection_timeout
        self._last_load = ""
        self._lock = threading.Lock()

    def check_last_load_changed(self, last_load_at):
        """Record `last_load_at` and tell whether it differs from the last one seen."""
        with self._lock:
            if self._last_load == "" or self._last_load != last_load_at:
                self._last_load = last_load_at
                return True
            return False


@dataclass(frozen=True)
class StopPointVj:
    """A stop point of a vehicle journey: Navitia id and GTFS-realtime stop code."""

    id: str
    gtfs_stop_code: str


@dataclass
class VehicleJourney:
    """A Navitia vehicle journey matched to a GTFS-realtime trip."""

    vehicle_id: str
    codes_source: str
    stop_points: list[StopPointVj] = field(default_factory=list)
    create_date: datetime | None = None


def create_vehicle_journey(navitia_vj, id_gtfs_rt, create_date):
    """Build a VehicleJourney from the first journey of a Navitia response."""
    journeys = navitia_vj.get("vehicle_journeys") or []
    if not journeys:
        raise ValueError("no vehicle journey in the Navitia response")
    journey = journeys[0]
    stop_points = []
    # A stop time without a GTFS code repeats the previous stop point.
    current = StopPointVj("", "")
    for stop_time in journey.get("stop_times") or []:
        stop_point = stop_time.get("stop_point") or {}
        for code in stop_point.get("codes") or []:
            if code.get("type") == STOP_POINT_CODE:
                current = StopPointVj(stop_point.get("id", ""), code.get("value", ""))
        stop_points.append(current)
    return VehicleJourney(journey.get("id", ""), id_gtfs_rt, stop_points, create_date)


def call_navitia(url, token, timeout):
    """Query Navitia and return the decoded JSON body."""
    return fetch_json(url, token, "Authorization", timeout)


def get_status_publication_date(navitia):
    """Return the publication date of the data currently loaded in Navitia."""
    data = call_navitia(URL_GET_LAST_LOAD.format(navitia.url), navitia.token,
                        navitia.connection_timeout)
    if not isinstance(data, dict):
        raise ValueError("unexpected Navitia status response")
    status = data.get("status") or {}
    if not isinstance(status, dict):
        raise ValueError("unexpected Navitia status response")
    publication_date = status.get("publication_date") or ""
    if not isinstance(publication_date, str):
        raise ValueError("unexpected Navitia publication date")
    return publication_date


def get_vehicle_journey(id_gtfs_rt, navitia):
    """Fetch the Navitia vehicle journey carrying the GTFS-realtime trip code."""
    source_code = f"source%2C{id_gtfs_rt}"
    url = URL_GET_VEHICLE_JOURNEY.format(navitia.url, source_code)
    data = call_navitia(url, navitia.token, navitia.connection_timeout)
    if not isinstance(data, dict):
        raise ValueError("unexpected Navitia vehicle journey response")
    return create_vehicle_journey(data, id_gtfs_rt, datetime.now(timezone.utc))