import io
import pathlib
from unittest.mock import MagicMock

import pytest

import backend.app as app_module

SAMPLE_CSV = (pathlib.Path(__file__).parent / "sample.csv").read_bytes()


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(app_module, "READINGS_FILE", tmp_path / "readings.jsonl")
    monkeypatch.setattr(app_module, "USE_DYNAMODB", False)
    monkeypatch.setattr(app_module, "USE_SNS", False)
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


def upload_sample(client):
    return client.post(
        "/readings/upload",
        data={"file": (io.BytesIO(SAMPLE_CSV), "sample.csv")},
        content_type="multipart/form-data",
    )


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_tariff(client):
    body = client.get("/tariff").get_json()
    assert len(body["slabs"]) == 6
    assert body["slabs"][-1] == {"min": 701, "max": None, "rate": 28.3}


def test_estimate_from_units(client):
    body = client.get("/estimate?units=150").get_json()
    assert body["breakdown"]["total_cost"] == 2378.51
    assert len(body["breakdown"]["line_items"]) == 3


def test_estimate_from_reading_pair(client):
    body = client.get("/estimate?previous=1000&current=1150").get_json()
    assert body["consumed_units"] == 150
    assert body["breakdown"]["base_cost"] == 1087.5


def test_estimate_regressed_readings_price_zero_units(client):
    body = client.get("/estimate?previous=100&current=80").get_json()
    assert body["consumed_units"] == 0


@pytest.mark.parametrize("query", ["units=-1", "units=nan", "units=abc", "current=5"])
def test_estimate_bad_input(client, query):
    res = client.get(f"/estimate?{query}")
    assert res.status_code == 400
    assert "error" in res.get_json()


def test_forecast(client):
    body = client.get("/forecast?usage=200&days_elapsed=10&days_in_period=30").get_json()
    assert body["projected_usage_units"] == 600
    assert body["comparison"] is None
    assert "savings" not in body


def test_forecast_with_reference_and_savings(client):
    res = client.get(
        "/forecast?usage=200&days_elapsed=10&days_in_period=30"
        "&reference_usage=500&reference_cost=10000&savings=true"
    )
    body = res.get_json()
    assert body["comparison"]["percentage_change_usage"] == 20.0
    assert [s["reduction_pct"] for s in body["savings"]] == [10.0, 20.0]


@pytest.mark.parametrize("query", [
    "usage=200&days_elapsed=10&days_in_period=30&reference_usage=nan&reference_cost=100",
    "usage=200&days_elapsed=10&days_in_period=30&reference_usage=500&reference_cost=inf",
    "usage=inf&days_elapsed=10&days_in_period=30",
])
def test_forecast_rejects_non_finite_numbers(client, query):
    res = client.get(f"/forecast?{query}")
    assert res.status_code == 400
    assert "finite" in res.get_json()["error"]


def test_forecast_includes_low_and_high_range(client):
    body = client.get("/forecast?usage=200&days_elapsed=10&days_in_period=30").get_json()
    band = body["projection_range"]
    assert band["low_usage_units"] == 540
    assert band["high_usage_units"] == 660
    assert band["low_cost"] < body["projected_cost"]["total_cost"] < band["high_cost"]


def test_forecast_invalid_period(client):
    res = client.get("/forecast?usage=200&days_elapsed=0&days_in_period=30")
    assert res.status_code == 400
    assert res.get_json()["type"] == "InvalidPeriodError"


def test_upload_and_list_readings(client):
    res = upload_sample(client)
    assert res.status_code == 202
    assert res.get_json()["processed_count"] == 3

    body = client.get("/readings?meter_id=meter-home-1").get_json()
    assert [r["reading"] for r in body["readings"]] == [1000, 1070.5, 1150]
    assert body["readings"][0]["timestamp"] == "2025-11-01T08:00:00"


def test_upload_bad_csv(client):
    res = client.post(
        "/readings/upload",
        data={"file": (io.BytesIO(b"meter_id,timestamp\nm1,x\n"), "bad.csv")},
        content_type="multipart/form-data",
    )
    assert res.status_code == 400


def test_add_reading_reports_consumption(client):
    upload_sample(client)
    res = client.post("/readings", json={
        "meter_id": "meter-home-1",
        "timestamp": "2025-11-20T08:00:00Z",
        "reading": 1200,
    })
    assert res.status_code == 201
    assert res.get_json()["consumed_units"] == 50


def test_add_reading_requires_meter(client):
    res = client.post("/readings", json={"reading": 10})
    assert res.status_code == 400


def test_meter_bill(client):
    upload_sample(client)
    body = client.get("/meters/meter-home-1/bill?date=2025-11-15").get_json()
    assert body["month_to_date"]["units"] == 150
    assert body["month_to_date"]["total_cost"] == 2378.51
    # 150 units over 15 of 30 days
    assert body["forecast"]["projected_usage_units"] == 300
    assert body["forecast"]["comparison"] is None
    assert body["forecast"]["projection_range"]["low_usage_units"] == 270
    assert body["forecast"]["projection_range"]["high_usage_units"] == 330


def test_meter_bill_compares_with_last_month(client):
    upload_sample(client)
    client.post("/readings", json={
        "meter_id": "meter-home-1", "timestamp": "2025-10-01T08:00:00Z", "reading": 800,
    })
    body = client.get("/meters/meter-home-1/bill?date=2025-11-15").get_json()
    # a single October reading gives no October consumption
    assert body["forecast"]["comparison"] is None

    client.post("/readings", json={
        "meter_id": "meter-home-1", "timestamp": "2025-10-31T20:00:00Z", "reading": 990,
    })
    body = client.get("/meters/meter-home-1/bill?date=2025-11-15").get_json()
    # October 800 -> 990 = 190 units; November 990 -> 1150 = 160 units so far
    assert body["month_to_date"]["units"] == 160
    assert body["forecast"]["comparison"]["percentage_change_usage"] == pytest.approx(
        (320 - 190) / 190 * 100, abs=0.01
    )


def test_meter_bill_unknown_meter(client):
    assert client.get("/meters/nope/bill").status_code == 404


def test_usage_per_day(client):
    upload_sample(client)
    body = client.get("/usage?meter_id=meter-home-1&period=day").get_json()
    assert body["data"] == [
        {"period": "2025-11-08", "units": 70.5},
        {"period": "2025-11-15", "units": 79.5},
    ]


def test_usage_bad_period(client):
    assert client.get("/usage?meter_id=m1&period=year").status_code == 400


def test_budget_monitor(client):
    res = client.post("/budget/monitor", json={
        "budget": 5000,
        "current_cost": 2378.51,
        "projected_cost": 6000,
        "days_elapsed": 15,
        "days_in_period": 30,
    })
    body = res.get_json()
    assert res.status_code == 200
    assert [a["kind"] for a in body["alerts"]] == ["projection_warning"]
    assert body["alerts_sent"] == 0


@pytest.mark.parametrize("field", ["budget", "current_cost", "projected_cost"])
def test_budget_monitor_rejects_non_finite_numbers(client, field):
    payload = {
        "budget": "5000",
        "current_cost": "2378.51",
        "projected_cost": "6000",
        "days_elapsed": 15,
        "days_in_period": 30,
    }
    payload[field] = "NaN"
    res = client.post("/budget/monitor", json=payload)
    assert res.status_code == 400
    assert "finite" in res.get_json()["error"]


def test_budget_monitor_requires_budget(client):
    res = client.post("/budget/monitor", json={"current_cost": 1})
    assert res.status_code == 400


def test_sns_endpoints_disabled(client):
    assert client.post("/sns/alert/slab", json={"meter_id": "m1", "units": 90}).status_code == 400
    assert client.get("/sns/status").get_json()["sns_enabled"] is False


def test_sns_slab_alert(client, monkeypatch):
    sns = MagicMock()
    sns.send_slab_warning.return_value = True
    monkeypatch.setattr(app_module, "USE_SNS", True)
    monkeypatch.setattr(app_module, "sns_service", sns)

    body = client.post("/sns/alert/slab", json={"meter_id": "m1", "units": 90}).get_json()
    assert body["approaching_next_slab"] is True
    assert body["next_slab_threshold_units"] == 10
    assert body["alert_sent"] is True
    meter_id, breakdown = sns.send_slab_warning.call_args.args
    assert meter_id == "m1"
    assert breakdown.units == 90
