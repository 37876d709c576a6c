"""Decoding of GTFS-realtime vehicle position feeds."""

from __future__ import annotations

import struct
from collections import defaultdict
from dataclasses import dataclass, field
from enum import IntEnum

_U64 = (1 << 64) - 1
_U32 = (1 << 32) - 1

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5


class GtfsRtError(ValueError):
    """Raised when a GTFS-realtime payload cannot be decoded."""


class OccupancyStatus(IntEnum):
    """Occupancy levels defined by the GTFS-realtime specification."""

    EMPTY = 0
    MANY_SEATS_AVAILABLE = 1
    FEW_SEATS_AVAILABLE = 2
    STANDING_ROOM_ONLY = 3
    CRUSHED_STANDING_ROOM_ONLY = 4
    FULL = 5
    NOT_ACCEPTING_PASSENGERS = 6
    NO_DATA_AVAILABLE = 7
    NOT_BOARDABLE = 8


def occupancy_status_name(value):
    """Return the name of an occupancy status value, or "" if it is unknown."""
    try:
        return OccupancyStatus(value).name
    except ValueError:
        return ""


@dataclass(frozen=True)
class VehicleGtfsRt:
    """One vehicle position read from a GTFS-realtime feed."""

    vehicle_id: str = ""
    stop_id: str = ""
    label: str = ""
    time: int = 0
    speed: float = 0.0
    bearing: float = 0.0
    route: str = ""
    trip: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    occupancy: int = 0


@dataclass
class GtfsRt:
    """A decoded feed: its header timestamp and its vehicles."""

    timestamp: str
    vehicles: list[VehicleGtfsRt] = field(default_factory=list)


def _read_varint(data, pos):
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise GtfsRtError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _U64, pos
        shift += 7
        if shift >= 70:
            raise GtfsRtError("varint too long")


def _take(data, pos, size):
    end = pos + size
    if end > len(data):
        raise GtfsRtError("truncated field")
    return data[pos:end], end


class _Message:
    """Raw protobuf fields of one message, grouped by field number."""

    def __init__(self, data=b""):
        self._fields = defaultdict(list)
        pos = 0
        while pos < len(data):
            key, pos = _read_varint(data, pos)
            number, wire = key >> 3, key & 7
            if number == 0:
                raise GtfsRtError("invalid field number 0")
            if wire == _WIRE_VARINT:
                value, pos = _read_varint(data, pos)
            elif wire == _WIRE_FIXED64:
                value, pos = _take(data, pos, 8)
            elif wire == _WIRE_BYTES:
                length, pos = _read_varint(data, pos)
                value, pos = _take(data, pos, length)
            elif wire == _WIRE_FIXED32:
                value, pos = _take(data, pos, 4)
            else:
                raise GtfsRtError(f"unsupported wire type {wire}")
            self._fields[number].append((wire, value))

    def _values(self, number, wire):
        return [value for kind, value in self._fields.get(number, ()) if kind == wire]

    def has(self, number, wire):
        return bool(self._values(number, wire))

    def message(self, number):
        # Repeated occurrences of a singular message field are merged.
        return _Message(b"".join(self._values(number, _WIRE_BYTES)))

    def messages(self, number):
        return [_Message(chunk) for chunk in self._values(number, _WIRE_BYTES)]

    def string(self, number):
        values = self._values(number, _WIRE_BYTES)
        return values[-1].decode("utf-8", errors="replace") if values else ""

    def uint(self, number):
        values = self._values(number, _WIRE_VARINT)
        return values[-1] if values else 0

    def enum(self, number, known):
        result = 0
        for value in self._values(number, _WIRE_VARINT):
            value &= _U32
            if value in known:
                result = value
        return result

    def float32(self, number):
        values = self._values(number, _WIRE_FIXED32)
        return struct.unpack("<f", values[-1])[0] if values else 0.0


_KNOWN_OCCUPANCY = frozenset(int(status) for status in OccupancyStatus)


def _vehicle_from_entity(entity):
    if not entity.has(1, _WIRE_BYTES):
        raise GtfsRtError("required field FeedEntity.id not set")
    vehicle_position = entity.message(4)
    if vehicle_position.has(2, _WIRE_BYTES):
        position = vehicle_position.message(2)
        if not (position.has(1, _WIRE_FIXED32) and position.has(2, _WIRE_FIXED32)):
            raise GtfsRtError("required field Position.latitude or Position.longitude not set")
    else:
        position = _Message()
    trip = vehicle_position.message(1)
    descriptor = vehicle_position.message(8)
    return VehicleGtfsRt(
        vehicle_id=descriptor.string(1),
        stop_id=vehicle_position.string(7),
        label=descriptor.string(2),
        time=vehicle_position.uint(5),
        speed=position.float32(5),
        bearing=position.float32(3),
        route=trip.string(5),
        trip=trip.string(1),
        latitude=position.float32(1),
        longitude=position.float32(2),
        occupancy=vehicle_position.enum(9, _KNOWN_OCCUPANCY),
    )


def parse_vehicles_response(data):
    """Decode a GTFS-realtime FeedMessage into a GtfsRt of vehicle positions."""
    feed = _Message(bytes(data))
    if not feed.has(1, _WIRE_BYTES):
        raise GtfsRtError("required field FeedMessage.header not set")
    header = feed.message(1)
    if not header.has(1, _WIRE_BYTES):
        raise GtfsRtError("required field FeedHeader.gtfs_realtime_version not set")
    vehicles = [_vehicle_from_entity(entity) for entity in feed.messages(2)]
    return GtfsRt(timestamp=str(header.uint(3)), vehicles=vehicles)