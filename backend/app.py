"""
=============================================================================
VOLT - MAIN FLASK APPLICATION
=============================================================================

REST API over the Volt billing core:
- Price a unit consumption (or a pair of meter readings) with the slab tariff
- Project the end-of-month bill from month-to-date usage
- Store meter readings (DynamoDB, or a local JSONL file as fallback)
- Monitor a monthly budget
- Send slab / budget alerts via email (SNS)

How to run:
    python -m backend.app

Then visit: http://127.0.0.1:5000/health
=============================================================================
"""

import json
import math
import os
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Must run before any environment variable is read
load_dotenv()

from backend.lib.logger import get_logger
from backend.lib.volt_core.budget import monitor_budget
from backend.lib.volt_core.config import tariff_from_env
from backend.lib.volt_core.errors import VoltError
from backend.lib.volt_core.forecast import ForecastEngine
from backend.lib.volt_core.io import parse_csv_string, parse_timestamp, to_naive_utc
from backend.lib.volt_core.models import MeterReading, ReferencePeriod
from backend.lib.volt_core.tariff import TariffEngine
from backend.lib.volt_core.usage import ReadingAnalyzer, consumed_units, period_progress

logger = get_logger(__name__)

# =============================================================================
# BILLING CORE
# =============================================================================
# The tariff is loaded once here and never changed while the process runs.
# Point VOLT_TARIFF_FILE at a JSON tariff to bill with a different schedule.

TARIFF = tariff_from_env()
tariff_engine = TariffEngine(TARIFF)
forecast_engine = ForecastEngine(tariff_engine)
logger.info("Billing with tariff '%s' (%d slabs)", TARIFF.name, len(TARIFF.slabs))

# =============================================================================
# AWS SERVICE INITIALIZATION
# =============================================================================
# Each service is switched on by an environment variable so the app also
# runs without AWS (readings in a local file, no notifications).

USE_DYNAMODB = os.getenv('USE_DYNAMODB', 'false').lower() == 'true'
dynamodb_service = None

if USE_DYNAMODB:
    try:
        from backend.lib.dynamodb_service import DynamoDBService
        dynamodb_service = DynamoDBService()
        dynamodb_service.create_table_if_not_exists()
        logger.info("DynamoDB storage enabled")
    except Exception as e:
        logger.warning("DynamoDB initialization failed: %s. Using local storage.", e)
        USE_DYNAMODB = False

USE_SNS = os.getenv('USE_SNS', 'false').lower() == 'true'
sns_service = None

if USE_SNS:
    try:
        from backend.lib.sns_service import SNSService
        sns_service = SNSService()
        if not sns_service.topic_arn:
            sns_service.create_topic_if_not_exists()
        logger.info("SNS notifications enabled")
    except Exception as e:
        logger.warning("SNS initialization failed: %s. Notifications disabled.", e)
        USE_SNS = False

# =============================================================================
# FLASK APPLICATION
# =============================================================================

app = Flask(__name__)

# Local fallback storage: one JSON object per line
DATA_DIR = Path(os.getenv("VOLT_DATA_DIR", "backend/data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
READINGS_FILE = DATA_DIR / "readings.jsonl"


@app.errorhandler(VoltError)
def handle_validation_error(e):
    return jsonify({"error": str(e), "type": type(e).__name__}), 400


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _number_arg(source, name: str, default=None, cast=float):
    """
    Read a numeric parameter from request.args or a JSON body.

    Missing required values, unparsable numbers, NaN and infinities raise
    VoltError, which the error handler turns into a 400 response.
    """
    raw = source.get(name) if source else None
    if raw is None or raw == "":
        if default is None:
            raise VoltError(f"{name} required")
        return default
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise VoltError(f"{name} must be a number")
    if not math.isfinite(value):
        raise VoltError(f"{name} must be a finite number")
    return value


def store_readings(readings: List[MeterReading]) -> int:
    """Persist readings to DynamoDB, or append them to the local JSONL file."""
    if USE_DYNAMODB and dynamodb_service:
        return dynamodb_service.put_readings_batch([
            {
                "meter_id": r.meter_id,
                "timestamp": to_naive_utc(r.timestamp).isoformat(),
                "reading": r.reading
            }
            for r in readings
        ])

    with READINGS_FILE.open("a", encoding="utf-8") as f:
        for r in readings:
            f.write(json.dumps({
                "meter_id": r.meter_id,
                "timestamp": to_naive_utc(r.timestamp).isoformat(),
                "reading": r.reading
            }) + "\n")
    return len(readings)


def load_readings_for_meter(meter_id: str) -> List[MeterReading]:
    """
    All readings of a meter in time order, timestamps as naive UTC.

    Reads DynamoDB when enabled, otherwise the local JSONL file. In the file a
    later line with the same (meter_id, timestamp) replaces an earlier one.
    """
    if USE_DYNAMODB and dynamodb_service:
        rows = dynamodb_service.get_readings_for_meter(meter_id)
    elif READINGS_FILE.exists():
        seen = {}
        with READINGS_FILE.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                obj = json.loads(line)
                if obj.get("meter_id") == meter_id:
                    seen[obj["timestamp"]] = obj
        rows = list(seen.values())
    else:
        rows = []

    readings = [
        MeterReading(
            meter_id=row["meter_id"],
            timestamp=to_naive_utc(datetime.fromisoformat(row["timestamp"])),
            reading=float(row["reading"])
        )
        for row in rows
    ]
    return sorted(readings, key=lambda r: r.timestamp)


# =============================================================================
# API ROUTES - BILLING
# =============================================================================

@app.route("/health")
def health():
    return jsonify({
        "status": "ok",
        "tariff": TARIFF.name,
        "dynamodb_enabled": USE_DYNAMODB,
        "sns_enabled": USE_SNS
    })


@app.route("/tariff", methods=["GET"])
def tariff():
    """The slab table and per-period charges currently used for billing."""
    return jsonify(TARIFF.to_dict())


@app.route("/estimate", methods=["GET"])
def estimate():
    """
    Price a consumption figure.

    Query Parameters (one of):
        units: Units (kWh) consumed in the billing period
        current & previous: Two cumulative meter readings

    Example:
        GET /estimate?previous=1000&current=1150
        -> {"consumed_units": 150.0, "breakdown": {..., "total_cost": 2378.51}}
    """
    if request.args.get("units") not in (None, ""):
        units = _number_arg(request.args, "units")
    else:
        current = _number_arg(request.args, "current")
        previous = _number_arg(request.args, "previous")
        units = consumed_units(current, previous)

    breakdown = tariff_engine.price_usage(units)
    return jsonify({
        "consumed_units": breakdown.units,
        "breakdown": breakdown.to_dict()
    })


@app.route("/forecast", methods=["GET"])
def forecast():
    """
    Project the end-of-period bill from usage so far.

    Query Parameters:
        usage (required): Units consumed so far in the period
        days_elapsed (required): Days of the period that have passed
        days_in_period (required): Length of the period in days
        reference_usage, reference_cost (optional): Last period's actuals
        savings (optional): 'true' to include 10% / 20% reduction scenarios
    """
    args = request.args
    usage = _number_arg(args, "usage")
    days_elapsed = _number_arg(args, "days_elapsed", cast=int)
    days_in_period = _number_arg(args, "days_in_period", cast=int)

    reference = None
    if args.get("reference_usage") and args.get("reference_cost"):
        reference = ReferencePeriod(
            usage_units=_number_arg(args, "reference_usage"),
            total_cost=_number_arg(args, "reference_cost")
        )

    result = forecast_engine.project_period(usage, days_elapsed, days_in_period, reference)
    body = result.to_dict()

    if args.get("savings", "false").lower() == "true":
        body["savings"] = [
            s.to_dict() for s in forecast_engine.savings_scenarios(result.projected_usage_units)
        ]
    return jsonify(body)


@app.route("/meters/<meter_id>/bill", methods=["GET"])
def meter_bill(meter_id):
    """
    Month-to-date bill and end-of-month forecast for a stored meter.

    Query Parameters:
        date (optional): YYYY-MM-DD to bill up to (default: today, UTC)
        notify (optional): 'true' to email a slab warning for the projection

    Last month's usage, priced with the same tariff, is the comparison baseline.
    """
    date_arg = request.args.get("date")
    try:
        on = date.fromisoformat(date_arg) if date_arg else datetime.now(timezone.utc).date()
    except ValueError:
        raise VoltError("date must be YYYY-MM-DD")

    readings = load_readings_for_meter(meter_id)
    if not readings:
        return jsonify({"error": f"No readings for meter {meter_id}"}), 404

    analyzer = ReadingAnalyzer(readings)
    end_of_day = datetime.combine(on, time.max)
    mtd_units = analyzer.month_to_date(end_of_day)
    days_elapsed, days_in_period = period_progress(on)

    month_start = datetime.combine(on.replace(day=1), time.min)
    prev_month_end = month_start - timedelta(microseconds=1)
    prev_month_start = datetime.combine(prev_month_end.date().replace(day=1), time.min)
    prev_units = analyzer.usage_between(prev_month_start, prev_month_end)
    reference = None
    if prev_units > 0:
        reference = ReferencePeriod(
            usage_units=prev_units,
            total_cost=tariff_engine.price_usage(prev_units).total_cost
        )

    current = tariff_engine.price_usage(mtd_units)
    projection = forecast_engine.project_period(mtd_units, days_elapsed, days_in_period, reference)

    response = {
        "meter_id": meter_id,
        "date": on.isoformat(),
        "month_to_date": current.to_dict(),
        "forecast": projection.to_dict()
    }

    if request.args.get("notify", "false").lower() == "true" and USE_SNS and sns_service:
        response["alert_sent"] = sns_service.send_slab_warning(
            meter_id, projection.projected_cost, projected=True
        )

    return jsonify(response)


@app.route("/budget/monitor", methods=["POST"])
def budget_monitor():
    """
    Check costs against a monthly budget.

    Request Body (JSON):
        {
            "budget": 5000,
            "current_cost": 2378.51,
            "projected_cost": 5206.35,
            "days_elapsed": 15,
            "days_in_period": 30,
            "meter_id": "meter-home-1"   (optional, emails alerts if SNS is on)
        }
    """
    data = request.get_json(silent=True) or {}
    alerts = monitor_budget(
        current_cost=_number_arg(data, "current_cost"),
        projected_cost=_number_arg(data, "projected_cost"),
        budget=_number_arg(data, "budget"),
        days_elapsed=_number_arg(data, "days_elapsed", cast=int),
        days_in_period=_number_arg(data, "days_in_period", cast=int)
    )

    alerts_sent = 0
    meter_id = data.get("meter_id")
    if meter_id and USE_SNS and sns_service:
        for alert in alerts:
            if alert.action_required and sns_service.send_budget_alert(meter_id, alert, TARIFF.currency):
                alerts_sent += 1

    return jsonify({
        "alerts": [a.to_dict() for a in alerts],
        "alerts_sent": alerts_sent
    })


# =============================================================================
# API ROUTES - METER READINGS
# =============================================================================

@app.route("/readings/upload", methods=["POST"])
def upload_readings():
    """
    Import meter readings from a CSV file (multipart field 'file').

    Expected CSV format:
        meter_id,timestamp,reading
        meter-home-1,2025-11-01T08:00:00Z,1000
    """
    if "file" not in request.files:
        return jsonify({"error": "No file uploaded"}), 400

    file = request.files["file"]
    try:
        readings = parse_csv_string(file.read().decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    stored = store_readings(readings)
    return jsonify({
        "upload_id": file.filename,
        "processed_count": len(readings),
        "stored_count": stored
    }), 202


@app.route("/readings", methods=["POST"])
def add_reading():
    """
    Record one reading.

    Request Body (JSON):
        {"meter_id": "meter-home-1", "timestamp": "2025-11-15T08:00:00Z", "reading": 1150}

    Returns the units consumed since the meter's previous reading.
    """
    data = request.get_json(silent=True) or {}
    meter_id = data.get("meter_id")
    if not meter_id:
        return jsonify({"error": "meter_id required"}), 400

    value = _number_arg(data, "reading")
    if value < 0:
        raise VoltError("reading must be >= 0")
    try:
        ts_text = data.get("timestamp") or datetime.now(timezone.utc).isoformat()
        timestamp = parse_timestamp(ts_text)
    except (AttributeError, ValueError):
        raise VoltError("timestamp must be ISO8601")

    earlier = [r for r in load_readings_for_meter(meter_id) if r.timestamp < timestamp]
    reading = MeterReading(meter_id=meter_id, timestamp=timestamp, reading=value)
    store_readings([reading])

    usage = consumed_units(value, earlier[-1].reading) if earlier else None
    return jsonify({
        "meter_id": meter_id,
        "timestamp": timestamp.isoformat(),
        "reading": value,
        "consumed_units": usage
    }), 201


@app.route("/readings", methods=["GET"])
def get_readings():
    """Raw readings of one meter (?meter_id=...) in time order."""
    meter_id = request.args.get("meter_id")
    if not meter_id:
        return jsonify({"error": "meter_id required"}), 400

    readings = load_readings_for_meter(meter_id)
    return jsonify({
        "meter_id": meter_id,
        "readings": [
            {"timestamp": r.timestamp.isoformat(), "reading": r.reading}
            for r in readings
        ]
    })


@app.route("/usage", methods=["GET"])
def usage():
    """
    Consumption per day or per month, derived from consecutive readings.

    Query Parameters:
        meter_id (required)
        period (optional): 'day' or 'month' (default: 'day')
    """
    meter_id = request.args.get("meter_id")
    period = request.args.get("period", "day").lower()

    if not meter_id:
        return jsonify({"error": "meter_id required"}), 400
    if period not in ("day", "month"):
        return jsonify({"error": "period must be 'day' or 'month'"}), 400

    analyzer = ReadingAnalyzer(load_readings_for_meter(meter_id))
    data = analyzer.daily_usage() if period == "day" else analyzer.monthly_usage()

    return jsonify({
        "meter_id": meter_id,
        "period": period,
        "data": [{"period": k, "units": round(v, 4)} for k, v in sorted(data.items())]
    })


@app.route("/anomalies", methods=["GET"])
def anomalies():
    """
    Days whose consumption rose more than threshold_pct over the previous day.

    Query Parameters:
        meter_id (required)
        threshold_pct (optional): default 50.0
    """
    meter_id = request.args.get("meter_id")
    if not meter_id:
        return jsonify({"error": "meter_id required"}), 400
    threshold = _number_arg(request.args, "threshold_pct", default=50.0)

    analyzer = ReadingAnalyzer(load_readings_for_meter(meter_id))
    spikes = analyzer.detect_spikes(threshold_pct=threshold)

    return jsonify({
        "meter_id": meter_id,
        "threshold_pct": threshold,
        "spikes": [{"date": d, "prev_units": p, "curr_units": c} for d, p, c in spikes]
    })


# =============================================================================
# API ROUTES - DYNAMODB
# =============================================================================

@app.route("/dynamodb/status", methods=["GET"])
def dynamodb_status():
    return jsonify({
        "dynamodb_enabled": USE_DYNAMODB,
        "table_name": dynamodb_service.table_name if dynamodb_service else None
    })


@app.route("/dynamodb/meters", methods=["GET"])
def list_meters():
    if not USE_DYNAMODB or not dynamodb_service:
        return jsonify({"error": "DynamoDB not enabled"}), 400

    return jsonify({"meters": dynamodb_service.get_all_meters()})


# =============================================================================
# API ROUTES - SNS (Email Notifications)
# =============================================================================

@app.route("/sns/status", methods=["GET"])
def sns_status():
    return jsonify({
        "sns_enabled": USE_SNS,
        "topic_arn": sns_service.topic_arn if sns_service else None
    })


@app.route("/sns/subscribe", methods=["POST"])
def sns_subscribe():
    """
    Subscribe an email address to alerts. Request Body: {"email": "..."}

    AWS mails a confirmation link that must be clicked before delivery starts.
    """
    if not USE_SNS or not sns_service:
        return jsonify({"error": "SNS not enabled"}), 400

    data = request.get_json(silent=True)
    if not data or not data.get("email"):
        return jsonify({"error": "email required"}), 400

    email = data["email"]
    subscription_arn = sns_service.subscribe_email(email)
    if not subscription_arn:
        return jsonify({"error": "Failed to subscribe"}), 500

    return jsonify({
        "message": f"Subscription pending. Check {email} for confirmation link.",
        "subscription_arn": subscription_arn
    })


@app.route("/sns/alert/slab", methods=["POST"])
def sns_slab_alert():
    """
    Price a usage figure and email a warning if it is close to the next slab.

    Request Body (JSON):
        {"meter_id": "meter-home-1", "units": 90, "projected": false}
    """
    if not USE_SNS or not sns_service:
        return jsonify({"error": "SNS not enabled"}), 400

    data = request.get_json(silent=True) or {}
    meter_id = data.get("meter_id")
    if not meter_id:
        return jsonify({"error": "meter_id required"}), 400

    breakdown = tariff_engine.price_usage(_number_arg(data, "units"))
    sent = sns_service.send_slab_warning(meter_id, breakdown, projected=bool(data.get("projected")))

    return jsonify({
        "meter_id": meter_id,
        "approaching_next_slab": breakdown.approaching_next_slab,
        "next_slab_threshold_units": breakdown.next_slab_threshold_units,
        "alert_sent": sent
    })


# =============================================================================
# RUN THE SERVER
# =============================================================================

if __name__ == "__main__":
    # debug=True only for local development
    app.run(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true")
