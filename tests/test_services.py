from decimal import Decimal
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.sns_service import SNSService
from backend.lib.volt_core.models import BudgetAlert
from backend.lib.volt_core.tariff import price_usage


def client_error(code="InternalError"):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "Operation")


def make_db():
    resource = MagicMock()
    client = MagicMock()
    db = DynamoDBService(table_name="TestReadings", resource=resource, client=client)
    return db, resource.Table.return_value


def test_put_reading_converts_to_decimal():
    db, table = make_db()
    assert db.put_reading("m1", "2025-11-01T08:00:00", 1070.5) is True
    item = table.put_item.call_args.kwargs["Item"]
    assert item["meter_id"] == "m1"
    assert item["reading"] == Decimal("1070.5")


def test_put_reading_failure_returns_false():
    db, table = make_db()
    table.put_item.side_effect = client_error()
    assert db.put_reading("m1", "2025-11-01T08:00:00", 1) is False


def test_get_readings_follows_pagination():
    db, table = make_db()
    table.query.side_effect = [
        {"Items": [{"meter_id": "m1", "timestamp": "t1", "reading": Decimal("1000")}],
         "LastEvaluatedKey": {"meter_id": "m1", "timestamp": "t1"}},
        {"Items": [{"meter_id": "m1", "timestamp": "t2", "reading": Decimal("1150")}]},
    ]
    rows = db.get_readings_for_meter("m1")
    assert [r["reading"] for r in rows] == [1000.0, 1150.0]
    assert table.query.call_count == 2
    assert "ExclusiveStartKey" in table.query.call_args.kwargs


def test_batch_write_counts_items():
    db, table = make_db()
    readings = [{"meter_id": "m1", "timestamp": f"t{i}", "reading": i} for i in range(30)]
    assert db.put_readings_batch(readings) == 30
    writer = table.batch_writer.return_value.__enter__.return_value
    assert writer.put_item.call_count == 30


def test_create_table_when_missing():
    db, _ = make_db()
    db.client.describe_table.side_effect = client_error("ResourceNotFoundException")
    assert db.create_table_if_not_exists() is True
    kwargs = db.dynamodb.create_table.call_args.kwargs
    assert kwargs["KeySchema"][0] == {"AttributeName": "meter_id", "KeyType": "HASH"}


def test_get_all_meters():
    db, table = make_db()
    table.scan.return_value = {"Items": [{"meter_id": "b"}, {"meter_id": "a"}, {"meter_id": "b"}]}
    assert db.get_all_meters() == ["a", "b"]


def test_send_slab_warning():
    client = MagicMock()
    sns = SNSService(topic_arn="arn:aws:sns:us-east-1:123:VoltAlerts", client=client)
    assert sns.send_slab_warning("m1", price_usage(90)) is True
    kwargs = client.publish.call_args.kwargs
    assert "m1" in kwargs["Subject"]
    assert "Units left in current slab: 10.00" in kwargs["Message"]


def test_no_slab_warning_when_not_approaching():
    client = MagicMock()
    sns = SNSService(topic_arn="arn:aws:sns:us-east-1:123:VoltAlerts", client=client)
    assert sns.send_slab_warning("m1", price_usage(140)) is False
    client.publish.assert_not_called()


def test_send_budget_alert():
    client = MagicMock()
    sns = SNSService(topic_arn="arn:aws:sns:us-east-1:123:VoltAlerts", client=client)
    alert = BudgetAlert("exceeded_budget", "critical", "Budget exceeded", 5000, 5500, True)
    assert sns.send_budget_alert("m1", alert) is True
    assert "critical" in client.publish.call_args.kwargs["Subject"]


def test_send_alert_without_topic(monkeypatch):
    monkeypatch.delenv("SNS_TOPIC_ARN", raising=False)
    client = MagicMock()
    sns = SNSService(client=client)
    assert sns.send_alert("subject", "body") is False
    client.publish.assert_not_called()


def test_send_alert_client_error():
    client = MagicMock()
    client.publish.side_effect = client_error()
    sns = SNSService(topic_arn="arn:aws:sns:us-east-1:123:VoltAlerts", client=client)
    assert sns.send_alert("subject", "body") is False
