import json

from backend.lambda_handlers.estimate_bill import lambda_handler


def call(params):
    res = lambda_handler({"queryStringParameters": params}, None)
    return res["statusCode"], json.loads(res["body"])


def test_price_units():
    status, body = call({"units": "150"})
    assert status == 200
    assert body["breakdown"]["total_cost"] == 2378.51


def test_price_reading_pair_with_forecast():
    status, body = call({"previous": "1000", "current": "1150", "days_elapsed": "15", "days_in_period": "30"})
    assert status == 200
    assert body["consumed_units"] == 150
    assert body["forecast"]["projected_usage_units"] == 300


def test_missing_parameters():
    status, _ = call(None)
    assert status == 400


def test_invalid_values():
    assert call({"units": "-3"})[0] == 400
    assert call({"units": "lots"})[0] == 400
    assert call({"units": "10", "days_elapsed": "0", "days_in_period": "30"})[0] == 400


def test_forecast_includes_range():
    _, body = call({"units": "200", "days_elapsed": "10", "days_in_period": "30"})
    band = body["forecast"]["projection_range"]
    assert band["low_usage_units"] == 540
    assert band["high_usage_units"] == 660
