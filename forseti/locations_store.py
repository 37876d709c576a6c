"""In-memory store of vehicle locations and the filters applied to it."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_INTEGER = re.compile(r"[+-]?\d+")


def _trip_id(trip):
    """Read a GTFS-realtime trip id as an integer key, 0 when it is not numeric."""
    return int(trip) if _INTEGER.fullmatch(trip or "") else 0


@dataclass
class VehicleLocation:
    """The last known position of a vehicle running a journey."""

    id: int = 0
    vehicle_journey_id: str = ""
    date_time: datetime = ZERO_TIME
    latitude: float = 0.0
    longitude: float = 0.0
    bearing: float = 0.0
    speed: float = 0.0

    def to_json(self):
        """Return the JSON-ready mapping served by the API."""
        data = {"_": self.id}
        if self.vehicle_journey_id:
            data["vehiclejourney_id"] = self.vehicle_journey_id
        data["date_time"] = self.date_time.isoformat()
        data["latitude"] = self.latitude
        data["longitude"] = self.longitude
        data["bearing"] = self.bearing
        data["speed"] = self.speed
        return data


@dataclass
class VehicleLocationRequestParameter:
    """Filters of a vehicle locations request."""

    vehicle_journey_id: str = ""
    date: datetime = ZERO_TIME


class VehicleLocations:
    """Thread-safe collection of vehicle locations keyed by trip id."""

    def __init__(self):
        self._locations = None
        self._last_update = ZERO_TIME
        self._load_data = False
        self._lock = threading.RLock()

    def __len__(self):
        with self._lock:
            return len(self._locations or {})

    def __contains__(self, location_id):
        with self._lock:
            return self._locations is not None and location_id in self._locations

    def _touch(self):
        with self._lock:
            self._last_update = datetime.now(timezone.utc)

    def manage_status(self, activate):
        """Switch the loading of location data on or off."""
        with self._lock:
            self._load_data = activate

    def clean(self):
        """Remove every stored location, keeping the store initialised."""
        with self._lock:
            if self._locations is not None:
                self._locations.clear()
        logger.info("*** Clean list VehicleLocations")

    def add(self, vehicle_location):
        """Store a location under its id, replacing any previous one."""
        with self._lock:
            if self._locations is None:
                self._locations = {}
            self._locations[vehicle_location.id] = vehicle_location
            logger.debug("*** Vehicle Locations size: %d", len(self._locations))
            self._last_update = datetime.now(timezone.utc)

    def update(self, vehicle, location=None):
        """Refresh position, bearing and speed of the location for a feed vehicle."""
        with self._lock:
            if self._locations is None:
                return
            stored = self._locations[_trip_id(vehicle.trip)]
            stored.latitude = vehicle.latitude
            stored.longitude = vehicle.longitude
            stored.bearing = vehicle.bearing
            stored.speed = vehicle.speed
            self._last_update = datetime.now(timezone.utc)

    def get_vehicle_locations(self, param):
        """Return copies of the locations matching the request filters."""
        with self._lock:
            if self._locations is None:
                raise LookupError("no vehicle_locations in the data")
            return [
                replace(location)
                for location in self._locations.values()
                if not (param.vehicle_journey_id
                        and param.vehicle_journey_id != location.vehicle_journey_id)
                and not location.date_time < param.date
            ]

    def last_update(self):
        """Return when the store was last changed."""
        with self._lock:
            return self._last_update

    def load_locations_data(self):
        """Tell whether location data loading is active."""
        with self._lock:
            return self._load_data