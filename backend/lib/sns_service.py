"""
=============================================================================
SNS SERVICE - Billing alerts over Amazon SNS
=============================================================================

Subscribers of the alert topic (usually an email address) receive:
- Slab warnings: the month's usage, actual or projected, is about to cross
  into a more expensive tariff slab
- Budget alerts: the bill has exceeded, or is projected to exceed, the
  user's monthly budget

Flow:
-----
[Volt backend] --> [SNS Topic: VoltAlerts] --> [Email subscriber(s)]

Email subscriptions stay "PendingConfirmation" until the recipient clicks
the link in the confirmation mail AWS sends.
=============================================================================
"""

import os
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from backend.lib.logger import get_logger
from backend.lib.volt_core.models import BudgetAlert, CostBreakdown

logger = get_logger(__name__)


class SNSService:
    """
    Usage:
        sns = SNSService()
        sns.create_topic_if_not_exists()
        sns.subscribe_email("user@example.com")
        sns.send_slab_warning("meter-home-1", breakdown)
    """

    def __init__(self, topic_arn: str = None, client=None):
        """
        Args:
            topic_arn: Existing topic ARN. Falls back to SNS_TOPIC_ARN; if
                       neither is set, create_topic_if_not_exists() fills it.
            client: Pre-built boto3 SNS client (tests inject a mock).
        """
        self.topic_arn = topic_arn or os.getenv('SNS_TOPIC_ARN')
        self.topic_name = os.getenv('SNS_TOPIC_NAME', 'VoltAlerts')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        session_token = os.getenv('AWS_SESSION_TOKEN')
        self.sns_client = client or boto3.client(
            'sns',
            region_name=self.region,
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            aws_session_token=session_token if session_token else None
        )

    def create_topic_if_not_exists(self) -> Optional[str]:
        """
        create_topic is idempotent: an existing topic's ARN is returned as-is.

        Returns:
            str: The topic ARN, or None if creation failed
        """
        try:
            response = self.sns_client.create_topic(Name=self.topic_name)
            self.topic_arn = response['TopicArn']
            logger.info("SNS topic ready: %s", self.topic_arn)
            return self.topic_arn

        except ClientError as e:
            logger.error("Failed to create SNS topic: %s", e)
            return None

    def subscribe_email(self, email: str) -> Optional[str]:
        """
        Returns:
            str: The subscription ARN ('pending confirmation' until confirmed)
        """
        if not self.topic_arn:
            logger.warning("No topic ARN configured")
            return None

        try:
            response = self.sns_client.subscribe(
                TopicArn=self.topic_arn,
                Protocol='email',
                Endpoint=email
            )
            return response['SubscriptionArn']

        except ClientError as e:
            logger.error("Failed to subscribe email: %s", e)
            return None

    def list_subscriptions(self) -> List[Dict]:
        if not self.topic_arn:
            return []

        try:
            response = self.sns_client.list_subscriptions_by_topic(
                TopicArn=self.topic_arn
            )
            return response.get('Subscriptions', [])

        except ClientError as e:
            logger.error("Failed to list subscriptions: %s", e)
            return []

    def send_alert(self, subject: str, message: str) -> bool:
        """
        Publish a message to every topic subscriber.

        Args:
            subject: Email subject line (SNS caps it at 100 characters)
            message: The message body

        Returns:
            bool: True if the message was published
        """
        if not self.topic_arn:
            logger.warning("No topic ARN configured")
            return False

        try:
            self.sns_client.publish(
                TopicArn=self.topic_arn,
                Subject=subject[:100],
                Message=message
            )
            return True

        except ClientError as e:
            logger.error("Failed to send alert: %s", e)
            return False

    def send_slab_warning(self, meter_id: str, breakdown: CostBreakdown,
                          projected: bool = False) -> bool:
        """
        Warn that usage is within a few units of the next tariff slab.

        Does nothing (returns False) when the breakdown carries no warning.
        """
        if not breakdown.approaching_next_slab:
            return False

        basis = "Projected usage" if projected else "Usage so far"
        subject = f"Approaching next tariff slab - {meter_id}"
        message = f"""
Tariff Slab Warning

Meter ID: {meter_id}
{basis}: {breakdown.units:.2f} kWh
Units left in current slab: {breakdown.next_slab_threshold_units:.2f}
Estimated bill: {breakdown.total_cost:,.2f} {breakdown.currency}

Units beyond the current slab are billed at a higher rate.

---
Volt
        """.strip()

        return self.send_alert(subject, message)

    def send_budget_alert(self, meter_id: str, alert: BudgetAlert,
                          currency: str = "PKR") -> bool:
        subject = f"Budget alert ({alert.severity}) - {meter_id}"
        message = f"""
Budget Alert

Meter ID: {meter_id}
{alert.message}
Current value: {alert.current_value:,.2f}
Threshold: {alert.threshold:,.2f}
Currency: {currency}

---
Volt
        """.strip()

        return self.send_alert(subject, message)
