"""HTTP endpoint serving vehicle occupancies."""

from __future__ import annotations

from flask import Flask, jsonify, request

from forseti.occupancies_store import VehicleOccupancyRequestParameter
from forseti.timeutil import parse_query_date


def parse_request_parameter(args, now=None):
    """Build request filters from query arguments."""
    return VehicleOccupancyRequestParameter(
        stop_id=args.get("stop_id", "") or "",
        vehicle_journey_id=args.get("vehiclejourney_id", "") or "",
        date=parse_query_date(args.get("date", "") or "", now=now),
    )


def vehicle_occupancies_response(context, args):
    """Return the JSON body and status code answering an occupancies request."""
    param = parse_request_parameter(args)
    try:
        occupancies = context.get_vehicle_occupancies(param)
    except LookupError:
        return {"error": "No data loaded"}, 503
    body = {}
    if occupancies:
        body["vehicle_occupancies"] = [occupancy.to_json() for occupancy in occupancies]
    return body, 200


def add_vehicle_occupancies_entry_point(app, context):
    """Register GET /vehicle_occupancies on `app`, creating an app when none is given."""
    if app is None:
        app = Flask(__name__)

    def vehicle_occupancies():
        body, status = vehicle_occupancies_response(context, request.args)
        return jsonify(body), status

    app.add_url_rule("/vehicle_occupancies", "vehicle_occupancies", vehicle_occupancies,
                     methods=["GET"])
    return app


def create_app(context):
    """Create a Flask application serving the given occupancies context."""
    return add_vehicle_occupancies_entry_point(Flask(__name__), context)