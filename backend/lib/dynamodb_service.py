"""
=============================================================================
DYNAMODB SERVICE - Meter reading store
=============================================================================

Stores cumulative meter readings so the billing endpoints can work out
consumption between two readings and month-to-date usage.

Table Schema:
-------------
Table: VoltReadings
- meter_id (String)  - Partition Key - Groups readings by meter
- timestamp (String) - Sort Key      - ISO8601, orders readings chronologically
- reading (Number)   - Cumulative register value in kWh
- created_at (String) - When the record was inserted

Example Item:
{
    "meter_id": "meter-home-1",
    "timestamp": "2025-11-15T08:00:00+00:00",
    "reading": 1150,
    "created_at": "2025-11-15T08:01:12"
}

Note: DynamoDB numbers must be Decimal, never float. Values are converted
with Decimal(str(value)) on the way in and back to float on the way out.
=============================================================================
"""

import os
from datetime import datetime
from decimal import Decimal
from typing import Dict, List

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from backend.lib.logger import get_logger

logger = get_logger(__name__)


class DynamoDBService:
    """
    Persistence for MeterReading rows.

    Usage:
        db = DynamoDBService()
        db.create_table_if_not_exists()
        db.put_reading("meter-home-1", "2025-11-01T08:00:00+00:00", 1000)
        rows = db.get_readings_for_meter("meter-home-1")
    """

    def __init__(self, table_name: str = None, resource=None, client=None):
        """
        Args:
            table_name: Defaults to DYNAMODB_TABLE_NAME or 'VoltReadings'.
            resource / client: Pre-built boto3 objects (tests inject mocks).

        Environment Variables Used:
        - DYNAMODB_TABLE_NAME, AWS_REGION
        - AWS credentials (ACCESS_KEY, SECRET_KEY, SESSION_TOKEN)
        """
        self.table_name = table_name or os.getenv('DYNAMODB_TABLE_NAME', 'VoltReadings')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        session_token = os.getenv('AWS_SESSION_TOKEN')
        credentials = dict(
            region_name=self.region,
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            aws_session_token=session_token if session_token else None
        )

        # Resource for Table objects, client for describe_table
        self.dynamodb = resource or boto3.resource('dynamodb', **credentials)
        self.client = client or boto3.client('dynamodb', **credentials)

        self.table = None

    def _get_table(self):
        if not self.table:
            self.table = self.dynamodb.Table(self.table_name)
        return self.table

    def create_table_if_not_exists(self) -> bool:
        """
        Create the readings table (on-demand billing) unless it exists.

        Returns:
            bool: True if the table exists or was created
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            self.table = self.dynamodb.Table(self.table_name)
            logger.info("DynamoDB table '%s' exists", self.table_name)
            return True

        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                logger.error("Error checking table: %s", e)
                return False

        try:
            table = self.dynamodb.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {'AttributeName': 'meter_id', 'KeyType': 'HASH'},
                    {'AttributeName': 'timestamp', 'KeyType': 'RANGE'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'meter_id', 'AttributeType': 'S'},
                    {'AttributeName': 'timestamp', 'AttributeType': 'S'}
                ],
                BillingMode='PAY_PER_REQUEST'
            )
            table.wait_until_exists()
            self.table = table
            logger.info("Created DynamoDB table '%s'", self.table_name)
            return True

        except ClientError as e:
            logger.error("Failed to create table: %s", e)
            return False

    @staticmethod
    def _item(meter_id: str, timestamp: str, reading: float) -> Dict:
        return {
            'meter_id': meter_id,
            'timestamp': timestamp,
            'reading': Decimal(str(reading)),
            'created_at': datetime.utcnow().isoformat()
        }

    def put_reading(self, meter_id: str, timestamp: str, reading: float) -> bool:
        """
        Store a single meter reading.

        Writing the same (meter_id, timestamp) twice replaces the earlier value.

        Returns:
            bool: True if successful, False otherwise
        """
        try:
            self._get_table().put_item(Item=self._item(meter_id, timestamp, reading))
            return True

        except ClientError as e:
            logger.error("Failed to put reading: %s", e)
            return False

    def put_readings_batch(self, readings: List[Dict]) -> int:
        """
        Store many readings with the batch writer, 25 items per chunk.

        Args:
            readings: List of dicts with meter_id, timestamp, reading

        Returns:
            int: Number of successfully written items
        """
        table = self._get_table()
        success_count = 0
        batch_size = 25

        for i in range(0, len(readings), batch_size):
            batch = readings[i:i + batch_size]
            try:
                with table.batch_writer() as writer:
                    for r in batch:
                        writer.put_item(Item=self._item(r['meter_id'], r['timestamp'], r['reading']))
                success_count += len(batch)

            except ClientError as e:
                logger.error("Batch write error: %s", e)

        return success_count

    def get_readings_for_meter(self, meter_id: str) -> List[Dict]:
        """
        All readings of one meter in timestamp order, following pagination.

        Returns:
            list: dicts with meter_id, timestamp, reading (float), created_at
        """
        table = self._get_table()
        readings = []
        query = {'KeyConditionExpression': Key('meter_id').eq(meter_id)}

        try:
            while True:
                response = table.query(**query)
                for item in response.get('Items', []):
                    readings.append({
                        'meter_id': item['meter_id'],
                        'timestamp': item['timestamp'],
                        'reading': float(item['reading']),
                        'created_at': item.get('created_at')
                    })
                if 'LastEvaluatedKey' not in response:
                    break
                query['ExclusiveStartKey'] = response['LastEvaluatedKey']

        except ClientError as e:
            logger.error("Failed to get readings: %s", e)
            return []

        return readings

    def delete_reading(self, meter_id: str, timestamp: str) -> bool:
        """Delete one reading by its full primary key."""
        try:
            self._get_table().delete_item(
                Key={'meter_id': meter_id, 'timestamp': timestamp}
            )
            return True

        except ClientError as e:
            logger.error("Failed to delete reading: %s", e)
            return False

    def get_all_meters(self) -> List[str]:
        """
        Unique meter IDs in the table.

        Uses a Scan, which reads the whole table. Fine for a household
        dataset; a larger deployment would want a GSI instead.
        """
        table = self._get_table()
        meters = set()
        scan = {'ProjectionExpression': 'meter_id'}

        try:
            while True:
                response = table.scan(**scan)
                for item in response.get('Items', []):
                    meters.add(item['meter_id'])
                if 'LastEvaluatedKey' not in response:
                    break
                scan['ExclusiveStartKey'] = response['LastEvaluatedKey']

        except ClientError as e:
            logger.error("Failed to get meters: %s", e)
            return []

        return sorted(meters)
