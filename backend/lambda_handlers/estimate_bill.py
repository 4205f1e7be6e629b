# backend/lambda_handlers/estimate_bill.py
"""
Lambda function to price electricity usage with the slab tariff
Triggered by API Gateway
"""
import json

from backend.lib.logger import get_logger
from backend.lib.volt_core.config import tariff_from_env
from backend.lib.volt_core.errors import VoltError
from backend.lib.volt_core.forecast import ForecastEngine
from backend.lib.volt_core.tariff import TariffEngine
from backend.lib.volt_core.usage import consumed_units

logger = get_logger(__name__)

# Loaded once per container, reused across invocations
tariff_engine = TariffEngine(tariff_from_env())
forecast_engine = ForecastEngine(tariff_engine)


def lambda_handler(event, context):
    """
    Estimate the bill for a billing period.

    Query parameters:
    - units: Units consumed, or
    - current / previous: Two cumulative meter readings
    - days_elapsed / days_in_period (optional): also return the end-of-period forecast
    """
    logger.info("Received event: %s", json.dumps(event))
    params = event.get('queryStringParameters') or {}

    try:
        if params.get('units') is not None:
            units = float(params['units'])
        elif params.get('current') is not None and params.get('previous') is not None:
            units = consumed_units(float(params['current']), float(params['previous']))
        else:
            return response(400, {'error': 'units or current and previous are required'})

        body = {
            'consumed_units': units,
            'breakdown': tariff_engine.price_usage(units).to_dict()
        }

        if params.get('days_elapsed') is not None and params.get('days_in_period') is not None:
            forecast = forecast_engine.project_period(
                units, int(params['days_elapsed']), int(params['days_in_period'])
            )
            body['forecast'] = forecast.to_dict()

        return response(200, body)

    except VoltError as e:
        return response(400, {'error': str(e), 'type': type(e).__name__})
    except ValueError as e:
        return response(400, {'error': f'Invalid number: {e}'})


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET,POST,OPTIONS',
            'Access-Control-Allow-Headers': 'Content-Type'
        },
        'body': json.dumps(body)
    }
