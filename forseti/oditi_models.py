"""Records read from ODITI referential files, predictions and Navitia schedules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time

from forseti.gtfsrt import OccupancyStatus, occupancy_status_name
from forseti.locations_store import ZERO_TIME

_INTEGER = re.compile(r"[+-]?\d+")
_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_CLOCK = re.compile(r"(\d{1,2}):(\d{2}):(\d{2})(?:[.,](\d+))?")
_PREDICTION_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})")
_COMPACT_DATE_TIME = re.compile(r"(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})")

# Bounds of the occupancy ranges, starting at MANY_SEATS_AVAILABLE.
ODITI_MATCH_MATRIX = ((0, 25), (25, 50), (50, 75), (75, 99))


def _atoi(text):
    if not _INTEGER.fullmatch(text or ""):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def _parse(pattern, text, location, what):
    match = pattern.fullmatch(text or "")
    if not match:
        raise ValueError(f"cannot parse {what}: {text!r}")
    try:
        return datetime(*(int(part) for part in match.groups()), tzinfo=location)
    except ValueError as exc:
        raise ValueError(f"cannot parse {what}: {text!r}") from exc


def _parse_clock(text):
    match = _CLOCK.fullmatch(text or "")
    if not match:
        raise ValueError(f"cannot parse time: {text!r}")
    hour, minute, second, fraction = match.groups()
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    try:
        return time(int(hour), int(minute), int(second), micro)
    except ValueError as exc:
        raise ValueError(f"cannot parse time: {text!r}") from exc


@dataclass(frozen=True)
class StopPoint:
    """A Navitia stop point, one per stop name and direction (0 or 1)."""

    id: str
    name: str
    direction: int

    @property
    def key(self):
        return f"{self.name}{self.direction}"


@dataclass(frozen=True)
class Course:
    """A scheduled course of a line on a day of the week."""

    line_code: str
    course: str
    day_of_week: int
    first_date: datetime
    first_time: time


@dataclass(frozen=True)
class Prediction:
    """A predicted load of a course at a stop."""

    line_code: str = ""
    order: int = 0
    direction: int = 0
    date: datetime = ZERO_TIME
    course: str = ""
    stop_name: str = ""
    occupancy: int = 0
    created_at: datetime = ZERO_TIME


@dataclass(frozen=True)
class RouteSchedule:
    """A scheduled passage of a vehicle journey at a stop."""

    id: int
    line_code: str
    vehicle_journey_id: str
    stop_id: str
    direction: int
    departure: bool
    date_time: datetime


def new_stop_point(record):
    """Build a StopPoint from a mapping_stops CSV record."""
    if len(record) < 4:
        raise ValueError("missing field in StopPoint record")
    direction = _atoi(record[3])
    if direction not in (0, 1):
        raise ValueError("only 0 or 1 is permitted as sens ")
    return StopPoint(id=f"stop_point:{record[2]}", name=record[1], direction=direction)


def new_course(record, location):
    """Build a Course from an extraction_courses CSV record."""
    if len(record) < 9:
        raise ValueError("missing field in Course record")
    day_of_week = _atoi(record[2])
    first_date = _parse(_DATE, record[6], location, "date")
    first_time = _parse_clock(record[3])
    return Course(
        line_code=record[0],
        course=record[1],
        day_of_week=day_of_week,
        first_date=first_date,
        first_time=first_time,
    )


def new_prediction(node, location):
    """Build a Prediction from one prediction record.

    The record is a mapping with the keys line, sens, date, course, order,
    stop_name and charge. An unreadable date gives an empty Prediction.
    """
    try:
        date = _parse(_PREDICTION_DATE, node.get("date", ""), location, "date")
    except ValueError:
        return Prediction()
    return Prediction(
        line_code=node.get("line", ""),
        order=int(node.get("order", 0)),
        direction=int(node.get("sens", 0)),
        date=date,
        course=node.get("course", ""),
        stop_name=node.get("stop_name", ""),
        occupancy=int(node.get("charge", 0)),
    )


def new_route_schedule(line_code, stop_id, vj_id, date_time, direction, rs_id, departure,
                       location):
    """Build a RouteSchedule from a Navitia date time such as 20210222T054500."""
    return RouteSchedule(
        id=rs_id,
        line_code=line_code,
        vehicle_journey_id=vj_id,
        stop_id=stop_id,
        direction=direction,
        departure=departure,
        date_time=_parse(_COMPACT_DATE_TIME, date_time, location, "date time"),
    )


def load_predictions_data(prediction_data, location):
    """Build the predictions of every record, in order."""
    return [new_prediction(node, location) for node in prediction_data]


def in_between(charge, low, high):
    """Tell whether `charge` lies in the half-open range (low, high]."""
    return low < charge <= high


def occupancy_status_for_oditi(charge):
    """Map an ODITI load percentage to a GTFS-realtime occupancy status name."""
    if charge == 0:
        return occupancy_status_name(OccupancyStatus.EMPTY)
    if charge >= 100:
        return occupancy_status_name(OccupancyStatus.FULL)
    status = OccupancyStatus.MANY_SEATS_AVAILABLE
    for offset, (low, high) in enumerate(ODITI_MATCH_MATRIX):
        if in_between(charge, low, high):
            status = OccupancyStatus.MANY_SEATS_AVAILABLE + offset
            break
    return occupancy_status_name(status)