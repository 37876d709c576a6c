"""Vehicle occupancies context fed by ODITI predictions and Navitia schedules."""

from __future__ import annotations

import csv
import io
import logging
import math
import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit, urlunsplit

from forseti import metrics
from forseti.httpclient import HttpError, fetch_json, read_uri
from forseti.occupancies_navitia import load_routes_with_direction
from forseti.occupancies_store import VehicleOccupanciesContext, VehicleOccupancy
from forseti.oditi_models import (
    load_predictions_data,
    new_course,
    new_stop_point,
    occupancy_status_for_oditi,
)
from forseti.timeutil import add_date_and_time

logger = logging.getLogger(__name__)

STOP_POINTS_FILE_NAME = "mapping_stops.csv"
COURSES_FILE_NAME = "extraction_courses.csv"
PREDICTION_HEADER = "Ocp-Apim-Subscription-Key"

_STARTUP_DELAY = 10


def _seconds(value):
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def _read_records(uri, timeout, file_name):
    """Read the records of a ';' separated file under `uri`, header excluded."""
    parts = urlsplit(str(uri))
    target = urlunsplit(parts._replace(path=f"{parts.path.rstrip('/')}/{file_name}"))
    try:
        body = read_uri(target, timeout)
    except (OSError, HttpError, ValueError):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise
    rows = csv.reader(io.StringIO(body.decode("utf-8-sig")), delimiter=";")
    next(rows, None)
    return [row for row in rows if row]


def load_stop_points(uri, timeout, file_name=STOP_POINTS_FILE_NAME):
    """Load the stop point mapping file, keyed by stop name and direction."""
    stop_points = {}
    for record in _read_records(uri, timeout, file_name):
        stop_point = new_stop_point(record)
        stop_points[stop_point.key] = stop_point
    return stop_points


def load_courses(uri, timeout, file_name=COURSES_FILE_NAME):
    """Load the course extraction file, grouping courses by line code."""
    courses = defaultdict(list)
    try:
        for record in _read_records(uri, timeout, file_name):
            course = new_course(record, _LOCATION_FOR_COURSES.get())
            courses[course.line_code].append(course)
    except ValueError as exc:
        logger.error("LoadCourses Error: %s", exc)
        raise
    return dict(courses)


class _CourseLocation:
    """Time zone in which course dates of the referential files are read."""

    def __init__(self):
        self._tz = timezone.utc
        try:
            from zoneinfo import ZoneInfo

            self._tz = ZoneInfo("Europe/Paris")
        except (KeyError, ValueError, OSError):
            pass

    def get(self):
        return self._tz


_LOCATION_FOR_COURSES = _CourseLocation()


def load_predictions(uri, token, timeout, location):
    """Fetch today's ODITI predictions and build Prediction records."""
    day = datetime.now().strftime("%Y-%m-%d")
    url = f"{uri}/futuredata/getfuturedata?start_time={day}&end_time={day}"
    try:
        data = fetch_json(url, token, PREDICTION_HEADER, timeout)
    except (HttpError, ValueError):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise
    if not isinstance(data, list):
        metrics.OCCUPANCIES_LOADING_ERRORS.inc()
        raise ValueError("unexpected predictions response")
    predictions = load_predictions_data(data, location)
    logger.info("*** predictions size: %d", len(predictions))
    return predictions


def load_routes_for_all_lines(context, uri, token, timeout, location):
    """Load forward then backward route schedules and store them in `context`."""
    route_schedules = load_routes_with_direction(1, uri, token, "forward", timeout, location)
    backward = load_routes_with_direction(len(route_schedules) + 1, uri, token, "backward",
                                          timeout, location)
    context.init_route_schedules(route_schedules + backward)


def create_occupancies_from_predictions(context, predictions):
    """Build occupancies, keyed by id, from predictions matched to route schedules.

    A prediction of order 0 selects the vehicle journey used by the predictions
    that follow it.
    """
    occupancies = {}
    vehicle_journey_id = ""
    for prediction in predictions:
        if prediction.order == 0:
            try:
                first_time = context.get_course_first_time(prediction)
            except LookupError:
                continue
            date_time = add_date_and_time(prediction.date, first_time)
            vehicle_journey_id = context.get_vehicle_journey_id(prediction, date_time)

        if not vehicle_journey_id:
            continue
        stop_id = context.get_stop_id(prediction.stop_name, prediction.direction)
        schedule = context.get_route_schedule(vehicle_journey_id, stop_id, prediction.direction)
        if schedule is None:
            continue
        occupancy = VehicleOccupancy(
            id=schedule.id,
            line_code=schedule.line_code,
            vehicle_journey_id=schedule.vehicle_journey_id,
            stop_id=schedule.stop_id,
            direction=schedule.direction,
            date_time=schedule.date_time,
            occupancy=occupancy_status_for_oditi(prediction.occupancy),
            source_code="",
        )
        occupancies[occupancy.id] = occupancy
    return occupancies


def refresh_vehicle_occupancies(context, uri, token, timeout, location):
    """Reload predictions and replace the stored occupancies.

    Nothing happens while occupancy loading is switched off.
    """
    store = context.get_vehicle_occupancies_context()
    if not store.load_occupancy_data():
        return
    if context.route_schedules is None:
        raise RuntimeError("RouteSchedule contains no data")
    begin = time.monotonic()
    failure = None
    try:
        predictions = load_predictions(uri, token, timeout, location)
    except Exception as exc:
        predictions = []
        failure = exc
    if not predictions:
        raise RuntimeError(f"Predictions contains no data: {failure}")
    store.update_vehicle_occupancies(create_occupancies_from_predictions(context, predictions))
    metrics.OCCUPANCIES_LOADING_DURATION.observe(time.monotonic() - begin)


def load_all_for_vehicle_occupancies(context, files_uri, navitia_uri, predict_uri, navitia_token,
                                     predict_token, timeout, location):
    """Load referential files, route schedules and predictions into `context`."""
    context.init_stop_points(load_stop_points(files_uri, timeout))
    context.init_courses(load_courses(files_uri, timeout))
    load_routes_for_all_lines(context, navitia_uri, navitia_token, timeout, location)
    refresh_vehicle_occupancies(context, predict_uri, predict_token, timeout, location)


class VehicleOccupanciesOditiContext:
    """Holds ODITI referential data and the occupancies computed from predictions."""

    def __init__(self):
        self.vo_context = None
        self.stop_points = None
        self.courses = None
        self.route_schedules = None
        self._lock = threading.RLock()

    def get_vehicle_occupancies_context(self):
        """Return the occupancy store, creating it when missing."""
        with self._lock:
            if self.vo_context is None:
                self.vo_context = VehicleOccupanciesContext()
            return self.vo_context

    def _touch(self):
        self.get_vehicle_occupancies_context()._last_update = datetime.now(timezone.utc)

    def init_stop_points(self, stop_points):
        with self._lock:
            self.stop_points = stop_points
            logger.info("*** stopPoints size: %d", len(stop_points))
            self._touch()

    def init_courses(self, courses):
        with self._lock:
            self.courses = courses
            logger.info("*** courses size: %d", len(courses))
            self._touch()

    def init_route_schedules(self, route_schedules):
        with self._lock:
            self.route_schedules = route_schedules
            logger.info("*** routeSchedules size: %d", len(route_schedules))
            self._touch()

    def get_stop_id(self, name, direction):
        """Return the stop point id for a stop name and direction, or ""."""
        with self._lock:
            stop_point = (self.stop_points or {}).get(f"{name}{direction}")
            return stop_point.id if stop_point is not None else ""

    def get_stop_points(self):
        with self._lock:
            return self.stop_points if self.stop_points is not None else {}

    def get_courses(self):
        with self._lock:
            return self.courses if self.courses is not None else {}

    def get_route_schedules(self):
        with self._lock:
            return self.route_schedules if self.route_schedules is not None else []

    def get_course_first_time(self, prediction):
        """Return the first time of the course a prediction belongs to."""
        with self._lock:
            weekday = prediction.date.isoweekday() % 7
            for course in (self.courses or {}).get(prediction.line_code, []):
                if prediction.course == course.course and weekday == course.day_of_week:
                    return course.first_time
        raise LookupError("no corresponding data found")

    def get_vehicle_journey_id(self, prediction, date_time):
        """Return the journey whose departure is closest to `date_time`, or ""."""
        with self._lock:
            best = math.inf
            result = ""
            for schedule in self.route_schedules or []:
                if not (schedule.departure
                        and prediction.line_code == schedule.line_code
                        and prediction.direction == schedule.direction):
                    continue
                gap = abs((schedule.date_time - date_time).total_seconds())
                if gap < best:
                    best = gap
                    result = schedule.vehicle_journey_id
            return result

    def get_route_schedule(self, vj_id, stop_id, direction):
        """Return the schedule of a journey at a stop, or None."""
        with self._lock:
            return next(
                (schedule for schedule in self.route_schedules or []
                 if schedule.vehicle_journey_id == vj_id and schedule.stop_id == stop_id
                 and schedule.direction == direction),
                None,
            )

    def init_context(self, files_uri, external_uri, external_token, navitia_uri, navitia_token,
                     load_external_refresh, occupancy_clean_vj, occupancy_clean_vo,
                     connection_timeout, location, occupancy_active):
        """Create the store and load every data source once."""
        self.vo_context = VehicleOccupanciesContext()
        self.vo_context.manage_vehicle_occupancy_status(occupancy_active)
        self.vo_context.set_refresh_time(load_external_refresh)
        try:
            load_all_for_vehicle_occupancies(self, str(files_uri), str(navitia_uri),
                                             str(external_uri), navitia_token, external_token,
                                             connection_timeout, location)
        except Exception as exc:
            logger.error("Impossible to load data at startup: %s", exc)

    def _referential_missing(self):
        return not self.courses or not self.stop_points

    def refresh_vehicle_occupancies_loop(self, external_uri, external_token, navitia_uri,
                                         navitia_token, load_external_refresh,
                                         occupancy_clean_vj, occupancy_clean_vo,
                                         connection_timeout, location):
        """Reload predictions forever, unless disabled or referential data is missing."""
        if not str(external_uri) or _seconds(load_external_refresh) <= 0:
            logger.debug("VehicleOccupancy data refreshing is disabled")
            return
        if self._referential_missing():
            logger.error("VEHICLE_OCCUPANCIES: routine Vehicle_occupancies stopped, "
                         "no stopPoints or courses loaded at start")
            return
        time.sleep(_STARTUP_DELAY)
        while True:
            try:
                refresh_vehicle_occupancies(self, str(external_uri), external_token,
                                            connection_timeout, location)
            except Exception as exc:
                logger.error("Error while reloading VehicleOccupancy data: %s", exc)
            else:
                logger.debug("vehicle_occupancies data updated")
            time.sleep(_seconds(load_external_refresh))

    def refresh_data_from_navitia(self, navitia_uri, navitia_token, route_schedule_refresh,
                                  connection_timeout, location):
        """Reload route schedules forever, unless disabled or referential data is missing."""
        if not str(navitia_uri) or _seconds(route_schedule_refresh) <= 0:
            logger.debug("RouteSchedule data refreshing is disabled")
            return
        if self._referential_missing():
            logger.error("VEHICLE_OCCUPANCIES: routine Route_schedule stopped, "
                         "no stopPoints or courses loaded at start")
            return
        while True:
            try:
                load_routes_for_all_lines(self, str(navitia_uri), navitia_token,
                                          connection_timeout, location)
            except Exception as exc:
                logger.error("Error while reloading RouteSchedule data: %s", exc)
            else:
                logger.debug("RouteSchedule data updated")
            time.sleep(_seconds(route_schedule_refresh))

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