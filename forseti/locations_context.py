"""Vehicle locations context fed by a GTFS-realtime source and Navitia."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from forseti import metrics
from forseti.gtfsrt import GtfsRtError, parse_vehicles_response
from forseti.httpclient import fetch
from forseti.locations_navitia import Navitia, get_status_publication_date, get_vehicle_journey
from forseti.locations_store import VehicleLocation, VehicleLocations, _trip_id
from forseti.sources import ConnectorType, ExternalSource
from forseti.timeutil import unix_to_local

logger = logging.getLogger(__name__)

_STARTUP_DELAY = 10


def _trim(value):
    return f"{value:.6f}".rstrip("0").rstrip(".")


def _format_duration(duration):
    total_us = duration // timedelta(microseconds=1)
    if total_us == 0:
        return "0s"
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    if total_us < 1000:
        return f"{sign}{total_us}µs"
    if total_us < 1_000_000:
        return f"{sign}{_trim(total_us / 1000)}ms"
    hours, rest = divmod(total_us, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = _trim(rest / 1_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def load_gtfs_rt(source):
    """Fetch and decode the GTFS-realtime feed of an external source."""
    body = fetch(source.url, source.token, "Authorization", source.connection_timeout)
    feed = parse_vehicles_response(body)
    if not feed.vehicles:
        raise GtfsRtError("no data loaded from GTFS-RT")
    return feed


def create_vehicle_location_from_data_source(vehicle_journey, vehicle, location):
    """Build a VehicleLocation from a Navitia journey and a feed vehicle."""
    try:
        date = unix_to_local(vehicle.time, location)
    except (ValueError, OverflowError):
        return VehicleLocation()
    return VehicleLocation(
        id=_trip_id(vehicle.trip),
        vehicle_journey_id=vehicle_journey.vehicle_id,
        date_time=date,
        latitude=vehicle.latitude,
        longitude=vehicle.longitude,
        bearing=vehicle.bearing,
        speed=vehicle.speed,
    )


class GtfsRtContext:
    """Keeps vehicle locations and journeys refreshed from a GTFS-realtime feed."""

    def __init__(self):
        self.vehicle_locations = None
        self.vehicles_journey = None
        self.source = None
        self.navitia = None
        self.clean_vj = 0
        self.clean_vl = 0
        self.location = timezone.utc
        self._start = datetime.now(timezone.utc)
        self._lock = threading.RLock()

    def get_all_vehicle_locations(self):
        """Return the location store, creating it when missing."""
        with self._lock:
            if self.vehicle_locations is None:
                self.vehicle_locations = VehicleLocations()
            return self.vehicle_locations

    def clean_list_vehicle_locations(self):
        self.get_all_vehicle_locations().clean()

    def clean_list_vehicle_journey(self):
        with self._lock:
            self.vehicles_journey = None
        logger.info("*** Clean list VehicleJourney")

    def clean_list_old_vehicle_journey(self, delay_hours):
        """Drop journeys created more than `delay_hours` hours ago."""
        with self._lock:
            if not self.vehicles_journey:
                return
            limit = datetime.now(timezone.utc) - timedelta(hours=delay_hours)
            self.vehicles_journey = {
                code: journey for code, journey in self.vehicles_journey.items()
                if not journey.create_date < limit
            }

    def add_vehicle_journey(self, vehicle_journey):
        with self._lock:
            if self.vehicles_journey is None:
                self.vehicles_journey = {}
            self.vehicles_journey[vehicle_journey.codes_source] = vehicle_journey
            logger.debug("*** Vehicle Journey size: %d", len(self.vehicles_journey))
            if self.vehicle_locations is not None:
                self.vehicle_locations._touch()

    def get_vehicle_locations(self, param):
        return self.get_all_vehicle_locations().get_vehicle_locations(param)

    def init_context(self, files_uri, external_uri, external_token, navitia_uri, navitia_token,
                     load_external_refresh, clean_vj, clean_vl, connection_timeout, location,
                     reload_active):
        """Configure the sources, cleaning delays (hours) and time zone."""
        self.source = ExternalSource(str(files_uri), str(external_uri), external_token,
                                     load_external_refresh, connection_timeout)
        self.navitia = Navitia(navitia_uri, navitia_token, self.source.connection_timeout)
        self.vehicle_locations = VehicleLocations()
        self.location = location
        self.clean_vj = clean_vj
        self.clean_vl = clean_vl
        self.vehicle_locations.manage_status(reload_active)

    def refresh(self):
        """Load the feed once and merge it into the stored locations."""
        begin = time.monotonic()
        clean_at = self._start + timedelta(hours=self.clean_vl)
        try:
            feed = load_gtfs_rt(self.source)
        except Exception as exc:
            metrics.LOCATIONS_LOADING_ERRORS.inc()
            raise RuntimeError(f"loading external source: {exc}") from exc
        if feed is None or not feed.vehicles:
            raise RuntimeError("no data to load from GTFS-RT")

        try:
            publication_date = get_status_publication_date(self.navitia)
        except Exception as exc:
            metrics.LOCATIONS_LOADING_ERRORS.inc()
            logger.warning("Error while loading publication date from Navitia: %s", exc)
            publication_date = ""

        if self.navitia.check_last_load_changed(publication_date):
            self.clean_list_vehicle_locations()
            self.clean_list_vehicle_journey()

        if clean_at < datetime.now(timezone.utc):
            self.clean_list_vehicle_locations()
            self._start = datetime.now(timezone.utc)

        self.clean_list_old_vehicle_journey(self.clean_vj)
        self._merge_feed(feed)
        metrics.LOCATIONS_LOADING_DURATION.observe(time.monotonic() - begin)

    def _merge_feed(self, feed):
        store = self.get_all_vehicle_locations()
        for vehicle in feed.vehicles:
            journey = (self.vehicles_journey or {}).get(vehicle.trip)
            if journey is None:
                try:
                    journey = get_vehicle_journey(vehicle.trip, self.navitia)
                except Exception:
                    metrics.LOCATIONS_LOADING_ERRORS.inc()
                    continue
                self.add_vehicle_journey(journey)

            if _trip_id(vehicle.trip) in store:
                store.update(vehicle, self.location)
            else:
                store.add(create_vehicle_location_from_data_source(journey, vehicle, self.location))

    def refresh_vehicle_locations_loop(self):
        """Refresh forever, waiting the configured refresh time between loads."""
        time.sleep(_STARTUP_DELAY)
        while True:
            try:
                self.refresh()
            except Exception as exc:
                logger.error("Error while loading VehicleLocations GTFS-RT data: %s", exc)
            else:
                logger.debug("vehicle_locations GTFS-RT data updated")
            time.sleep(self.source.refresh_seconds)

    def last_update(self):
        return self.get_all_vehicle_locations().last_update()

    def load_locations_data(self):
        return self.get_all_vehicle_locations().load_locations_data()

    def refresh_time(self):
        """Return the refresh period written as a duration such as "5m0s"."""
        return _format_duration(self.source.refresh_time)


def connector_factory(type_connector):
    """Create the vehicle locations context for a connector type."""
    if type_connector == ConnectorType.GTFS_RT.value:
        return GtfsRtContext()
    raise ValueError("Wrong connector type passed")