"""HTTP endpoint serving vehicle locations."""

from __future__ import annotations

from flask import Flask, jsonify, request

from forseti.locations_store import VehicleLocationRequestParameter
from forseti.timeutil import parse_query_date


def parse_request_parameter(args, now=None):
    """Build request filters from query arguments."""
    return VehicleLocationRequestParameter(
        vehicle_journey_id=args.get("vehiclejourney_id", "") or "",
        date=parse_query_date(args.get("date", "") or "", now=now),
    )


def vehicle_locations_response(context, args):
    """Return the JSON body and status code answering a locations request."""
    param = parse_request_parameter(args)
    try:
        locations = context.get_vehicle_locations(param)
    except LookupError:
        return {"error": "No data loaded"}, 503
    body = {}
    if locations:
        body["vehicle_locations"] = [location.to_json() for location in locations]
    return body, 200


def add_vehicle_locations_entry_point(app, context):
    """Register GET /vehicle_locations on `app`, creating an app when none is given."""
    if app is None:
        app = Flask(__name__)

    def vehicle_locations():
        body, status = vehicle_locations_response(context, request.args)
        return jsonify(body), status

    app.add_url_rule("/vehicle_locations", "vehicle_locations", vehicle_locations,
                     methods=["GET"])
    return app


def create_app(context):
    """Create a Flask application serving the given locations context."""
    return add_vehicle_locations_entry_point(Flask(__name__), context)