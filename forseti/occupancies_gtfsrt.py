"""Vehicle occupancies context fed by a GTFS-realtime source and Navitia."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from forseti import metrics
from forseti.gtfsrt import occupancy_status_name, parse_vehicles_response
from forseti.httpclient import HttpError, fetch
from forseti.occupancies_navitia import get_status_publication_date, get_vehicle_journeys
from forseti.occupancies_store import VehicleOccupanciesContext, VehicleOccupancy
from forseti.timeutil import unix_to_local

logger = logging.getLogger(__name__)

_STARTUP_DELAY = 10


def _seconds(value):
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def load_data_external_source(uri, token):
    """Fetch and decode the GTFS-realtime feed at `uri`.

    Only sources without a token are supported; with a token nothing is loaded
    and None is returned.
    """
    if token:
        return None
    try:
        body = fetch(str(uri))
    except HttpError:
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise
    feed = parse_vehicles_response(body)
    logger.debug("*** Gtfs-rt size: %d", len(feed.vehicles))
    return feed


def create_occupancy_from_data_source(vo_id, vehicle_journey, vehicle, location):
    """Build the occupancy of a journey at the stop a feed vehicle reports.

    Returns None when the journey does not serve that stop.
    """
    try:
        date = unix_to_local(vehicle.time, location)
    except (ValueError, OverflowError) as exc:
        logger.info("%s", exc)
        return VehicleOccupancy()
    for stop_point in vehicle_journey.stop_points:
        if stop_point.gtfs_stop_code == vehicle.stop_id:
            return VehicleOccupancy(
                id=vo_id,
                line_code="",
                vehicle_journey_id=vehicle_journey.vehicle_id,
                stop_id=stop_point.id,
                direction=-1,
                date_time=date,
                occupancy=occupancy_status_name(vehicle.occupancy),
                source_code=vehicle_journey.codes_source,
            )
    return None


class VehicleOccupanciesGtfsRtContext:
    """Keeps vehicle occupancies and journeys refreshed from a GTFS-realtime feed."""

    def __init__(self):
        self.vo_context = None
        self.vehicles_journey = None
        self.last_load_navitia = ""
        self._start = datetime.now(timezone.utc)
        self._lock = threading.RLock()

    def get_vehicle_occupancies_context(self):
        """Return the occupancy store, creating it when missing."""
        with self._lock:
            if self.vo_context is None:
                self.vo_context = VehicleOccupanciesContext()
            return self.vo_context

    def check_last_load_changed(self, last_load_at):
        """Record `last_load_at` and tell whether it differs from the last one seen."""
        with self._lock:
            if self.last_load_navitia == "" or self.last_load_navitia != last_load_at:
                self.last_load_navitia = last_load_at
                return True
            return False

    def clean_list_vehicle_occupancies(self):
        self.get_vehicle_occupancies_context().clean()

    def clean_list_vehicle_journey(self):
        with self._lock:
            self.vehicles_journey = None
        logger.info("*** Clean list VehicleJourney")

    def clean_list_old_vehicle_journey(self, delay_hours):
        """Drop every trip having a journey created more than `delay_hours` hours ago."""
        with self._lock:
            if not self.vehicles_journey:
                return
            limit = datetime.now(timezone.utc) - timedelta(hours=delay_hours)
            self.vehicles_journey = {
                code: journeys for code, journeys in self.vehicles_journey.items()
                if not any(journey.create_date < limit for journey in journeys)
            }

    def add_vehicle_journey(self, vehicle_journey):
        """Append a journey to those known for its GTFS-realtime trip."""
        with self._lock:
            if self.vehicles_journey is None:
                self.vehicles_journey = {}
            self.vehicles_journey.setdefault(vehicle_journey.codes_source, []).append(
                vehicle_journey)

    def add_vehicle_occupancy(self, vehicle_occupancy):
        self.get_vehicle_occupancies_context().add_vehicle_occupancy(vehicle_occupancy)

    def update_occupancy(self, vehicle_occupancy, vehicle, location):
        """Refresh status and date of an occupancy from a feed vehicle."""
        with self._lock:
            if vehicle_occupancy is None:
                return
            try:
                date = unix_to_local(vehicle.time, location)
            except (ValueError, OverflowError) as exc:
                logger.info("%s", exc)
                date = vehicle_occupancy.date_time
            vehicle_occupancy.occupancy = occupancy_status_name(vehicle.occupancy)
            vehicle_occupancy.date_time = date

    def init_context(self, files_uri, external_uri, external_token, navitia_uri, navitia_token,
                     load_external_refresh, occupancy_clean_vj, occupancy_clean_vo,
                     connection_timeout, location, occupancy_active):
        """Create an empty store with its loading status and refresh period."""
        self.vo_context = VehicleOccupanciesContext()
        self.vo_context.manage_vehicle_occupancy_status(occupancy_active)
        self.vo_context.set_refresh_time(load_external_refresh)

    def refresh(self, external_uri, external_token, navitia_uri, navitia_token,
                occupancy_clean_vj, occupancy_clean_vo, connection_timeout, location):
        """Load the feed once and merge it into the stored occupancies.

        Cleaning delays are in hours.
        """
        begin = time.monotonic()
        clean_at = self._start + timedelta(hours=occupancy_clean_vo)
        try:
            feed = load_data_external_source(external_uri, external_token)
        except Exception as exc:
            raise RuntimeError(f"loading external source: {exc}") from exc
        if feed is None or not feed.vehicles:
            raise RuntimeError("no data to load from GTFS-RT")

        try:
            publication_date = get_status_publication_date(
                str(navitia_uri), navitia_token, connection_timeout)
        except Exception as exc:
            logger.warning("Error while loading publication date from Navitia: %s", exc)
            publication_date = ""

        if self.check_last_load_changed(publication_date):
            logger.info("New date of Navitia data loaded ")
            self.clean_list_vehicle_occupancies()
            self.clean_list_vehicle_journey()

        if clean_at < datetime.now(timezone.utc):
            self.clean_list_vehicle_occupancies()
            self._start = datetime.now(timezone.utc)

        self.clean_list_old_vehicle_journey(occupancy_clean_vj)
        self._merge_feed(feed, str(navitia_uri), navitia_token, connection_timeout, location)
        metrics.OCCUPANCIES_LOADING_DURATION.observe(time.monotonic() - begin)

    def _add_from_journeys(self, journeys, vehicle, location):
        store = self.get_vehicle_occupancies_context()
        for journey in journeys:
            vo_id = len(store.vehicle_occupancies or {}) - 1
            occupancy = create_occupancy_from_data_source(vo_id, journey, vehicle, location)
            if occupancy is not None:
                self.add_vehicle_occupancy(occupancy)

    def _merge_feed(self, feed, navitia_uri, navitia_token, connection_timeout, location):
        store = self.get_vehicle_occupancies_context()
        for vehicle in feed.vehicles:
            known = (self.vehicles_journey or {}).get(vehicle.trip)
            if known is None:
                try:
                    journeys = get_vehicle_journeys(vehicle.trip, navitia_uri, navitia_token,
                                                    connection_timeout, location)
                except Exception:
                    continue
                for journey in journeys:
                    self.add_vehicle_journey(journey)
            else:
                journeys = list(known)

            occupancies = store.vehicle_occupancies
            if not occupancies:
                self._add_from_journeys(journeys, vehicle, location)
                continue

            matching = [vo for vo in occupancies.values() if vo.source_code == vehicle.trip]
            if not matching:
                self._add_from_journeys(journeys, vehicle, location)
                continue

            index = next(
                (position for position, vo in enumerate(matching)
                 if vo.stop_id.split(":")[-1] == vehicle.stop_id),
                -1,
            )
            if index == -1:
                self._add_from_journeys(journeys, vehicle, location)
            else:
                # The position among matching occupancies is looked up as a store key.
                self.update_occupancy(occupancies.get(index), vehicle, location)

    def refresh_vehicle_occupancies_loop(self, external_uri, external_token, navitia_uri,
                                         navitia_token, load_external_refresh,
                                         occupancy_clean_vj, occupancy_clean_vo,
                                         connection_timeout, location):
        """Refresh forever, waiting `load_external_refresh` between loads."""
        time.sleep(_STARTUP_DELAY)
        while True:
            try:
                self.refresh(external_uri, external_token, navitia_uri, navitia_token,
                             occupancy_clean_vj, occupancy_clean_vo, connection_timeout,
                             location)
            except Exception as exc:
                logger.error("Error while loading VehicleOccupancy GTFS-RT data: %s", exc)
            else:
                logger.debug("vehicle_occupancies GTFS-RT data updated")
            time.sleep(_seconds(load_external_refresh))

    def manage_vehicle_occupancy_status(self, active):
        self.get_vehicle_occupancies_context().manage_vehicle_occupancy_status(active)

    def get_vehicle_occupancies(self, param):
        return self.get_vehicle_occupancies_context().get_vehicle_occupancies(param)

    def last_update(self):
        return self.get_vehicle_occupancies_context().last_update()

    def load_occupancy_data(self):
        return self.get_vehicle_occupancies_context().load_occupancy_data()

    def refresh_time(self):
        return self.get_vehicle_occupancies_context().refresh_time()