import json
import struct
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
import requests

from forseti import metrics
from forseti.gtfsrt import VehicleGtfsRt
from forseti.httpclient import HttpError
from forseti.occupancies_gtfsrt import (
    VehicleOccupanciesGtfsRtContext,
    create_occupancy_from_data_source,
    load_data_external_source,
)
from forseti.occupancies_navitia import StopPointVj, VehicleJourney
from forseti.occupancies_store import VehicleOccupancy, VehicleOccupancyRequestParameter

PARIS_SUMMER = timezone(timedelta(hours=2))


def _map_vj():
    now = datetime.now(timezone.utc)
    stops = [StopPointVj("stop_point:STS:SP:1280", "1280"),
             StopPointVj("stop_point:STS:SP:1560", "1560")]
    return {
        "651969": [
            VehicleJourney("vehicle_journey:STS:651969-1", "651969", list(stops),
                           now - timedelta(hours=2)),
            VehicleJourney("vehicle_journey:STS:651969-2", "651969", list(stops),
                           now - timedelta(hours=2)),
        ],
        "652005": [VehicleJourney(
            "vehicle_journey:STS:652005-1", "652005",
            [StopPointVj("stop_point:STS:SP:299", "299"),
             StopPointVj("stop_point:STS:SP:600", "600")],
            now - timedelta(hours=2))],
        "652373": [VehicleJourney(
            "vehicle_journey:STS:652373-1", "652373",
            [StopPointVj("stop_point:STS:SP:814", "814"),
             StopPointVj("stop_point:STS:SP:900", "900")],
            now)],
    }


def _occupancies_map():
    now = datetime.now(timezone.utc)
    return {
        0: VehicleOccupancy(156, "40", "vehicle_journey:0:124695149-1",
                            "stop_point:0:SP:80:4029", 0, now, "MANY_SEATS_AVAILABLE"),
        700: VehicleOccupancy(700, "45", "vehicle_journey:0:124695000-1",
                              "stop_point:0:SP:80:4043", 0, now, "FEW_SEATS_AVAILABLE"),
    }


def _journey_263(vehicle_id="vehicle_journey:STS:652517-1"):
    return VehicleJourney(
        vehicle_id, "652517",
        [StopPointVj("stop_point:STS:SP:263", "263"),
         StopPointVj("stop_point:STS:SP:1560", "1560")],
        datetime(2021, 5, 12, tzinfo=timezone.utc))


def _vehicle(occupancy):
    return VehicleGtfsRt("52103", "263", "52103", 1620777600, 11, 274, "1", "652517",
                         45.398613, -71.90111, occupancy)


def test_check_last_load_changed():
    context = VehicleOccupanciesGtfsRtContext()
    context.last_load_navitia = "20210511T090912.579677"
    assert context.check_last_load_changed("20210511T090912.579677") is False
    assert context.check_last_load_changed("20210515T000000.000000") is True
    assert context.last_load_navitia == "20210515T000000.000000"


def test_check_last_load_changed_first_time():
    context = VehicleOccupanciesGtfsRtContext()
    assert context.check_last_load_changed("x") is True
    assert context.check_last_load_changed("x") is False


def test_clean_list_vehicle_occupancies():
    context = VehicleOccupanciesGtfsRtContext()
    store = context.get_vehicle_occupancies_context()
    store.vehicle_occupancies = _occupancies_map()
    context.clean_list_vehicle_occupancies()
    assert len(store.vehicle_occupancies) == 0


def test_add_vehicle_occupancy():
    context = VehicleOccupanciesGtfsRtContext()
    context.get_vehicle_occupancies_context()
    context.add_vehicle_occupancy(VehicleOccupancy(
        200, "40", "vehicle_journey:0:124695149-1", "stop_point:0:SP:80:4029", 0,
        datetime.now(timezone.utc), "MANY_SEATS_AVAILABLE"))
    assert len(context.vo_context.vehicle_occupancies) == 1
    assert context.vo_context.vehicle_occupancies[200].line_code == "40"


def test_clean_list_vehicle_journey():
    context = VehicleOccupanciesGtfsRtContext()
    context.vehicles_journey = _map_vj()
    context.clean_list_vehicle_journey()
    assert context.vehicles_journey is None


def test_clean_list_old_vehicle_journey():
    context = VehicleOccupanciesGtfsRtContext()
    context.vehicles_journey = _map_vj()
    context.clean_list_old_vehicle_journey(1)
    assert list(context.vehicles_journey) == ["652373"]


def test_add_vehicle_journey_appends_per_trip():
    context = VehicleOccupanciesGtfsRtContext()
    journey = VehicleJourney("vehicle_journey:STS:651969-1", "651969",
                             [StopPointVj("stop_point:STS:SP:1280", "1280")],
                             datetime.now(timezone.utc))
    context.add_vehicle_journey(journey)
    assert len(context.vehicles_journey) == 1
    context.add_vehicle_journey(journey)
    assert len(context.vehicles_journey) == 1
    assert len(context.vehicles_journey["651969"]) == 2


def test_update_vehicle_occupancy():
    context = VehicleOccupanciesGtfsRtContext()
    store = context.get_vehicle_occupancies_context()
    vehicle = _vehicle(1)
    occupancy = create_occupancy_from_data_source(0, _journey_263(), vehicle, PARIS_SUMMER)
    context.add_vehicle_occupancy(occupancy)
    assert len(store.vehicle_occupancies) == 1
    context.update_occupancy(store.vehicle_occupancies[0], vehicle, PARIS_SUMMER)
    assert store.vehicle_occupancies[0].occupancy == "MANY_SEATS_AVAILABLE"


def test_update_occupancy_ignores_missing():
    context = VehicleOccupanciesGtfsRtContext()
    context.update_occupancy(None, _vehicle(1), PARIS_SUMMER)
    assert context.vehicles_journey is None


def test_create_occupancy_from_data_source_fields():
    occupancy = create_occupancy_from_data_source(10, _journey_263(), _vehicle(2),
                                                  PARIS_SUMMER)
    assert occupancy.id == 10
    assert occupancy.stop_id == "stop_point:STS:SP:263"
    assert occupancy.direction == -1
    assert occupancy.source_code == "652517"
    assert occupancy.occupancy == "FEW_SEATS_AVAILABLE"
    assert occupancy.date_time == datetime(2021, 5, 12, tzinfo=PARIS_SUMMER)


def test_create_occupancy_unknown_stop_gives_none():
    vehicle = VehicleGtfsRt(stop_id="999", time=1620777600, trip="652517")
    assert create_occupancy_from_data_source(1, _journey_263(), vehicle, PARIS_SUMMER) is None


def test_get_vehicle_occupancies():
    context = VehicleOccupanciesGtfsRtContext()
    store = context.get_vehicle_occupancies_context()
    occupancy = create_occupancy_from_data_source(
        10, _journey_263("vehicle_journey:STS:651969-1"), _vehicle(0), PARIS_SUMMER)
    context.add_vehicle_occupancy(occupancy)
    assert len(store.vehicle_occupancies) == 1
    date = datetime(2021, 2, 22, tzinfo=PARIS_SUMMER)
    found = context.get_vehicle_occupancies(VehicleOccupancyRequestParameter("", "", date))
    assert len(found) == 1
    found = context.get_vehicle_occupancies(
        VehicleOccupancyRequestParameter("stop_point:STS:SP:263", "", date))
    assert len(found) == 1
    store.vehicle_occupancies = None
    with pytest.raises(LookupError, match="no vehicle_occupancies in the data"):
        context.get_vehicle_occupancies(
            VehicleOccupancyRequestParameter("stop_point:STS:SP:263", "", date))


def test_init_context_sets_status_and_refresh():
    context = VehicleOccupanciesGtfsRtContext()
    context.init_context("file:///tmp/", "http://gtfs-rt.example.com/test.pb", "",
                         "http://navitia.example.com", "token", 300, 5000, 5000, 200,
                         PARIS_SUMMER, True)
    assert context.load_occupancy_data() is True
    assert context.refresh_time() == "5m0s"


def test_load_data_external_source_with_token_loads_nothing():
    assert load_data_external_source("http://gtfs-rt.example.com/feed.pb", "token") is None


def test_load_data_external_source_counts_errors():
    before = metrics.OCCUPANCIES_LOADING_ERRORS.value
    with mock.patch("requests.get", side_effect=requests.ConnectionError("down")):
        with pytest.raises(HttpError):
            load_data_external_source("http://gtfs-rt.example.com/feed.pb", "")
    assert metrics.OCCUPANCIES_LOADING_ERRORS.value == before + 1


def _varint(value):
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _bytes_field(number, payload):
    return _varint((number << 3) | 2) + _varint(len(payload)) + payload


def _varint_field(number, value):
    return _varint(number << 3) + _varint(value)


def _float_field(number, value):
    return _varint((number << 3) | 5) + struct.pack("<f", value)


def _feed():
    header = _bytes_field(1, b"2.0") + _varint_field(3, 1620777600)
    trip = _bytes_field(1, b"652517")
    position = _float_field(1, 45.398613) + _float_field(2, -71.90111)
    vehicle_position = (_bytes_field(1, trip) + _bytes_field(2, position)
                        + _varint_field(5, 1620777600) + _bytes_field(7, b"263")
                        + _varint_field(9, 1))
    entity = _bytes_field(1, b"1") + _bytes_field(4, vehicle_position)
    return _bytes_field(1, header) + _bytes_field(2, entity)


class _FakeResponse:
    def __init__(self, content):
        self.status_code = 200
        self.content = content


def _fake_get(url, headers=None, timeout=None):
    if "status" in url:
        return _FakeResponse(json.dumps({"status": {"publication_date": "20210511"}}).encode())
    if "vehicle_journeys" in url:
        body = {"vehicle_journeys": [{
            "id": "vehicle_journey:STS:652517-1",
            "stop_times": [{"stop_point": {
                "id": "stop_point:STS:SP:263",
                "codes": [{"type": "gtfs_stop_code", "value": "263"}]}}],
        }]}
        return _FakeResponse(json.dumps(body).encode())
    return _FakeResponse(_feed())


def test_refresh_creates_occupancies_from_feed():
    context = VehicleOccupanciesGtfsRtContext()
    context.init_context("file:///tmp/", "http://gtfs-rt.example.com/feed.pb", "",
                         "http://navitia.example.com", "token", 30, 5000, 5000, 10,
                         PARIS_SUMMER, True)
    with mock.patch("requests.get", side_effect=_fake_get):
        context.refresh("http://gtfs-rt.example.com/feed.pb", "",
                        "http://navitia.example.com", "token", 5000, 5000, 10,
                        PARIS_SUMMER)
        context.refresh("http://gtfs-rt.example.com/feed.pb", "",
                        "http://navitia.example.com", "token", 5000, 5000, 10,
                        PARIS_SUMMER)
    stored = context.get_vehicle_occupancies_context().get_vehicles_occupancies()
    assert list(stored) == [-1]
    assert stored[-1].vehicle_journey_id == "vehicle_journey:STS:652517-1"
    assert stored[-1].occupancy == "MANY_SEATS_AVAILABLE"
    assert list(context.vehicles_journey) == ["652517"]
    assert context.last_load_navitia == "20210511"


def test_refresh_with_token_source_raises():
    context = VehicleOccupanciesGtfsRtContext()
    with pytest.raises(RuntimeError, match="no data to load from GTFS-RT"):
        context.refresh("http://gtfs-rt.example.com/feed.pb", "token",
                        "http://navitia.example.com", "token", 1, 1, 10, PARIS_SUMMER)