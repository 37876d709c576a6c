"""Creation of vehicle occupancies contexts by connector type."""

from __future__ import annotations

from forseti.occupancies_gtfsrt import VehicleOccupanciesGtfsRtContext
from forseti.occupancies_oditi import VehicleOccupanciesOditiContext
from forseti.sources import ConnectorType


def vehicle_occupancy_factory(kind):
    """Create the vehicle occupancies context for a connector type."""
    if kind == ConnectorType.GTFS_RT.value:
        return VehicleOccupanciesGtfsRtContext()
    if kind == ConnectorType.ODITI.value:
        return VehicleOccupanciesOditiContext()
    raise ValueError("Wrong vehicleoccupancy type passed")