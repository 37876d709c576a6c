# forseti

forseti keeps an in-memory picture of a public transport network and serves
it over HTTP through Flask. It holds two kinds of data:

- **vehicle locations**: the position, bearing and speed of each vehicle.
  They are read from a GTFS-realtime vehicle positions feed and matched to
  Navitia vehicle journeys.
- **vehicle occupancies**: how full a vehicle journey is at a stop. They come
  either from the occupancy status of a GTFS-realtime feed, or from ODITI load
  predictions combined with Navitia route schedules.

## Endpoints

`GET /vehicle_locations` takes these query parameters:

- `vehiclejourney_id`: keep only this vehicle journey.
- `date`: keep only entries dated on or after this day. It accepts `YYYYMMDD`
  or `YYYY-MM-DD` and is read in the Europe/Paris time zone. The package
  falls back to UTC when that zone is not available. Without a readable
  date, the filter starts at today's midnight UTC.

`GET /vehicle_occupancies` takes the same parameters, plus `stop_id` to keep
only one stop point.

Both endpoints answer `200` with a JSON object:

- The `vehicle_locations` or `vehicle_occupancies` key holds the matching
  entries. The key is left out when nothing matches.
- A location has the keys `_`, `vehiclejourney_id`, `date_time`, `latitude`,
  `longitude`, `bearing` and `speed`.
- An occupancy has the keys `_`, `LineCode`, `vehiclejourney_id`, `stop_id`,
  `Direction`, `date_time`, `occupancy` and `SourceCode`.

While a store has never received data, the endpoint answers `503` with
`{"error": "No data loaded"}`.

## Vehicle locations

```python
import threading
from zoneinfo import ZoneInfo

from forseti.locations_api import create_app
from forseti.locations_context import connector_factory

context = connector_factory("gtfsrt")
context.init_context(
    "file:///srv/forseti/",                           # files URI
    "https://feed.example.com/vehicle_positions.pb",  # GTFS-realtime feed
    "token",                                          # sent as Authorization
    "https://navitia.example.com/v1/coverage/test",   # Navitia coverage
    "token",
    30,        # refresh period, seconds or timedelta
    24,        # drop vehicle journeys older than this many hours
    24,        # clear all locations every this many hours
    10,        # connection timeout, seconds or timedelta
    ZoneInfo("Europe/Paris"),
    True,      # reported by context.load_locations_data()
)
threading.Thread(target=context.refresh_vehicle_locations_loop, daemon=True).start()
app = create_app(context)
```

`GtfsRtContext.refresh()` runs one load. It raises `RuntimeError` when the feed
cannot be loaded or holds no vehicle. `refresh_vehicle_locations_loop()` waits
10 seconds and then refreshes forever, logging errors.

`add_vehicle_locations_entry_point(app, context)` adds the route to an existing
Flask application. `vehicle_locations_response(context, args)` returns the body
and status without Flask. `connector_factory` raises `ValueError` for any type
other than `"gtfsrt"`.

## Vehicle occupancies

```python
from forseti.occupancies_api import create_app
from forseti.occupancies_factory import vehicle_occupancy_factory

context = vehicle_occupancy_factory("oditi")  # or "gtfsrt"
app = create_app(context)
```

Both contexts take the same `init_context(files_uri, external_uri,
external_token, navitia_uri, navitia_token, load_external_refresh,
occupancy_clean_vj, occupancy_clean_vo, connection_timeout, location,
occupancy_active)`.

- **`"gtfsrt"`** (`VehicleOccupanciesGtfsRtContext`): `init_context` only
  creates the store. The sources are passed to `refresh(...)` and to
  `refresh_vehicle_occupancies_loop(...)`. The feed is fetched only when no
  external token is given. With a token, nothing is loaded and `refresh`
  raises `RuntimeError`.
- **`"oditi"`** (`VehicleOccupanciesOditiContext`): `init_context` loads
  everything once, in this order:
  1. `mapping_stops.csv` and `extraction_courses.csv` under the files URI.
     They are `;`-separated, their first line is skipped, and the URI can be
     `file://` or `http(s)://`.
  2. The forward and backward Navitia route schedules of lines
     `line:IDFM:C00048` and `line:IDFM:C00051`.
  3. Today's predictions from `<external_uri>/futuredata/getfuturedata`, sent
     with an `Ocp-Apim-Subscription-Key` header.

  Then, in background threads:
  - `refresh_vehicle_occupancies_loop(...)` reloads the predictions.
  - `refresh_data_from_navitia(...)` reloads the schedules.

  Each loop returns at once when refreshing is disabled or when no stop points
  or courses were loaded. Predictions are not reloaded while occupancy loading
  is switched off (`manage_vehicle_occupancy_status(False)`).

ODITI load percentages map to GTFS-realtime statuses through
`forseti.oditi_models.occupancy_status_for_oditi`:

| Load       | Status                       |
|------------|------------------------------|
| 0          | `EMPTY`                      |
| up to 25   | `MANY_SEATS_AVAILABLE`       |
| up to 50   | `FEW_SEATS_AVAILABLE`        |
| up to 75   | `STANDING_ROOM_ONLY`         |
| up to 99   | `CRUSHED_STANDING_ROOM_ONLY` |
| 100 and up | `FULL`                       |

`vehicle_occupancy_factory` raises `ValueError` for an unknown type.

## Other modules

- `forseti.gtfsrt`: `parse_vehicles_response(data)` decodes a GTFS-realtime
  `FeedMessage` into a `GtfsRt` holding `VehicleGtfsRt` records. It raises
  `GtfsRtError` on malformed input.
- `forseti.httpclient`: `fetch`, `fetch_json` and `read_uri`. They raise
  `HttpError` on failed requests and on non-2xx answers.
- `forseti.metrics`: in-process `Counter` and `Histogram` objects that count
  loading errors and durations.

## What this package does not do

- It has no command-line entry point. It does not read configuration on its
  own, and it does not start a web server. You build the context, start its
  refresh loop in a thread, and run the Flask application yourself.
- Metrics are kept in memory only. No endpoint exposes them.
- Data is not persisted. Everything is lost when the process stops.