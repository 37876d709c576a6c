import json
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from forseti.httpclient import HttpError
from forseti.locations_navitia import (
    Navitia,
    StopPointVj,
    VehicleJourney,
    create_vehicle_journey,
    get_status_publication_date,
    get_vehicle_journey,
)

NAVITIA_VJ = {
    "vehicle_journeys": [
        {
            "id": "vehicle_journey:STS:652187-1",
            "codes": [{"type": "source", "value": "652187"}],
            "stop_times": [
                {"stop_point": {"id": "stop_point:STS:SP:7002",
                                "codes": [{"type": "source", "value": "x"},
                                          {"type": "gtfs_stop_code", "value": "7002"}]}},
                {"stop_point": {"id": "stop_point:STS:SP:169",
                                "codes": [{"type": "gtfs_stop_code", "value": "169"}]}},
            ],
        }
    ]
}

DATE = datetime(2021, 5, 1)


def test_new_vehicle_journey():
    stops = [StopPointVj("stop_point:STS:SP:7002", "7002"), StopPointVj("stop_point:STS:SP:169", "169")]
    got = VehicleJourney("stop_point:STS:SP:7002", "7002", list(stops), DATE)
    assert got == VehicleJourney(
        vehicle_id="stop_point:STS:SP:7002",
        codes_source="7002",
        stop_points=[StopPointVj("stop_point:STS:SP:7002", "7002"),
                     StopPointVj("stop_point:STS:SP:169", "169")],
        create_date=DATE,
    )


def test_new_stop_point_vj():
    got = StopPointVj("stop_point:STS:SP:7002", "7002")
    assert (got.id, got.gtfs_stop_code) == ("stop_point:STS:SP:7002", "7002")


def test_create_vehicle_journey():
    got = create_vehicle_journey(NAVITIA_VJ, "652187", DATE)
    assert got == VehicleJourney(
        "vehicle_journey:STS:652187-1",
        "652187",
        [StopPointVj("stop_point:STS:SP:7002", "7002"), StopPointVj("stop_point:STS:SP:169", "169")],
        DATE,
    )


def test_stop_time_without_code_repeats_previous():
    data = json.loads(json.dumps(NAVITIA_VJ))
    data["vehicle_journeys"][0]["stop_times"].append({"stop_point": {"id": "sp:none", "codes": []}})
    got = create_vehicle_journey(data, "652187", DATE)
    assert len(got.stop_points) == 3
    assert got.stop_points[2] == got.stop_points[1]


def test_create_vehicle_journey_without_journey():
    with pytest.raises(ValueError):
        create_vehicle_journey({"vehicle_journeys": []}, "652187", DATE)


def test_check_last_load_changed():
    navitia = Navitia("http://navitia", "token", 5)
    assert navitia.check_last_load_changed("20210511T090912.579677") is True
    assert navitia.check_last_load_changed("20210511T090912.579677") is False
    assert navitia.check_last_load_changed("20210515T000000.000000") is True


class _Handler(BaseHTTPRequestHandler):
    paths = []

    def do_GET(self):
        self.paths.append((self.path, self.headers.get("Authorization")))
        if self.path.startswith("/status"):
            body = json.dumps({"status": {"publication_date": "20210511T090912.579677"}})
            self.send_response(200)
        elif self.path.startswith("/vehicle_journeys"):
            body = json.dumps(NAVITIA_VJ)
            self.send_response(200)
        else:
            body = "{}"
            self.send_response(500)
        data = body.encode()
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    _Handler.paths = []
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_port}"
    httpd.shutdown()
    httpd.server_close()


def test_get_status_publication_date(server):
    navitia = Navitia(server, "token", 5)
    assert get_status_publication_date(navitia) == "20210511T090912.579677"
    assert _Handler.paths[-1] == ("/status?", "token")


def test_get_status_publication_date_error(server):
    navitia = Navitia(f"{server}/broken", "token", 5)
    with pytest.raises(HttpError):
        get_status_publication_date(navitia)


def test_get_vehicle_journey(server):
    navitia = Navitia(server, "token", 5)
    before = datetime.now(timezone.utc)
    got = get_vehicle_journey("652187", navitia)
    assert got.vehicle_id == "vehicle_journey:STS:652187-1"
    assert got.codes_source == "652187"
    assert got.create_date >= before
    path, auth = _Handler.paths[-1]
    assert "has_code(source%2C652187)" in path
    assert auth == "token"