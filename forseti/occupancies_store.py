"""In-memory store of vehicle occupancies and the filters applied to it."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from forseti.locations_context import _format_duration
from forseti.locations_store import ZERO_TIME

logger = logging.getLogger(__name__)


@dataclass
class VehicleOccupancy:
    """The occupancy of a vehicle journey at one stop."""

    id: int = 0
    line_code: str = ""
    vehicle_journey_id: str = ""
    stop_id: str = ""
    direction: int = 0
    date_time: datetime = ZERO_TIME
    occupancy: str = ""
    source_code: str = ""

    def to_json(self):
        """Return the JSON-ready mapping served by the API."""
        data = {"_": self.id, "LineCode": self.line_code}
        if self.vehicle_journey_id:
            data["vehiclejourney_id"] = self.vehicle_journey_id
        if self.stop_id:
            data["stop_id"] = self.stop_id
        data["Direction"] = self.direction
        data["date_time"] = self.date_time.isoformat()
        data["occupancy"] = self.occupancy
        data["SourceCode"] = self.source_code
        return data


@dataclass
class VehicleOccupancyRequestParameter:
    """Filters of a vehicle occupancies request."""

    stop_id: str = ""
    vehicle_journey_id: str = ""
    date: datetime = ZERO_TIME


def _duration(value):
    return value if isinstance(value, timedelta) else timedelta(seconds=value)


class VehicleOccupanciesContext:
    """Thread-safe collection of vehicle occupancies keyed by id."""

    def __init__(self):
        self.vehicle_occupancies = None
        self._last_update = ZERO_TIME
        self._load_data = False
        self._refresh_time = timedelta(0)
        self._lock = threading.RLock()

    def manage_vehicle_occupancy_status(self, activate):
        """Switch the loading of occupancy data on or off."""
        with self._lock:
            self._load_data = activate

    def load_occupancy_data(self):
        """Tell whether occupancy data loading is active."""
        with self._lock:
            return self._load_data

    def update_vehicle_occupancies(self, vehicle_occupancies):
        """Replace every stored occupancy with the given mapping."""
        with self._lock:
            self.vehicle_occupancies = vehicle_occupancies
            logger.info("*** vehicleOccupancies size: %d", len(vehicle_occupancies or {}))
            self._last_update = datetime.now(timezone.utc)

    def clean(self):
        """Remove every stored occupancy, keeping the store initialised."""
        with self._lock:
            if self.vehicle_occupancies is not None:
                self.vehicle_occupancies.clear()
        logger.info("*** Clean list VehicleOccupancies")

    def add_vehicle_occupancy(self, vehicle_occupancy):
        """Store an occupancy under its id, replacing any previous one."""
        with self._lock:
            if self.vehicle_occupancies is None:
                self.vehicle_occupancies = {}
            self.vehicle_occupancies[vehicle_occupancy.id] = vehicle_occupancy

    def last_update(self):
        """Return when the store was last replaced."""
        with self._lock:
            return self._last_update

    def get_vehicles_occupancies(self):
        """Return the stored mapping itself, or None when nothing was loaded."""
        with self._lock:
            return self.vehicle_occupancies

    def get_vehicle_occupancies(self, param):
        """Return copies of the occupancies matching the request filters."""
        with self._lock:
            if self.vehicle_occupancies is None:
                raise LookupError("no vehicle_occupancies in the data")
            return [
                replace(occupancy)
                for occupancy in self.vehicle_occupancies.values()
                if not (param.stop_id and param.stop_id != occupancy.stop_id)
                and not (param.vehicle_journey_id
                         and param.vehicle_journey_id != occupancy.vehicle_journey_id)
                and not occupancy.date_time < param.date
            ]

    def refresh_time(self):
        """Return the refresh period written as a duration such as "5m0s"."""
        with self._lock:
            return _format_duration(self._refresh_time)

    def set_refresh_time(self, refresh_time):
        """Set the refresh period, as a timedelta or a number of seconds."""
        with self._lock:
            self._refresh_time = _duration(refresh_time)