import os
import json
from datetime import datetime

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .currency import format_inr

AWS_REGION = os.environ.get("AWS_REGION", "ap-south-1")
SQS_QUEUE_URL = os.environ.get("SQS_QUEUE_URL")
SNS_TOPIC_ARN = os.environ.get("SNS_TOPIC_ARN")


def get_sqs_client():
    """
    Return a boto3 SQS client.
    """
    return boto3.client("sqs", region_name=AWS_REGION)


def get_sns_client():
    """
    Return a boto3 SNS client.
    """
    return boto3.client("sns", region_name=AWS_REGION)


def send_order_event_to_sqs(event: str, order: dict, items: list):
    """
    Send an order lifecycle event message to SQS.

    event is one of "order.placed", "order.status_changed" or
    "order.cancelled". items is a list of dicts such as:
        [{"product_id": 1, "title": "...", "quantity": 2, "price": 250.0}, ...]
    """
    if not SQS_QUEUE_URL:
        raise RuntimeError("SQS_QUEUE_URL environment variable is not set.")

    sqs = get_sqs_client()

    payload = {
        "event": event,
        "order_id": order["id"],
        "order_number": order["order_number"],
        "user_id": order["user_id"],
        "status": order["status"],
        "total": order["total"],
        "items": items,
        "created_at": datetime.utcnow().isoformat(timespec="seconds"),
        "source": "rg-publication-store",
    }

    try:
        sqs.send_message(
            QueueUrl=SQS_QUEUE_URL,
            MessageBody=json.dumps(payload),
        )
    except (BotoCoreError, ClientError) as e:
        raise RuntimeError(f"Failed to send order event to SQS: {e}") from e


def notify_order_via_sns(order: dict, user_email: str):
    """
    Publish a simple notification to SNS when an order is placed.
    """
    if not SNS_TOPIC_ARN:
        raise RuntimeError("SNS_TOPIC_ARN environment variable is not set.")

    sns = get_sns_client()

    subject = f"New RG Publication Order {order['order_number']}"
    message = (
        f"A new order has been placed.\n\n"
        f"Order: {order['order_number']}\n"
        f"Customer: {user_email}\n"
        f"Payment: {order['payment_method']}\n"
        f"Total: {format_inr(order['total'])}\n"
        f"Time (UTC): {datetime.utcnow().isoformat(timespec='seconds')}\n"
    )

    try:
        sns.publish(
            TopicArn=SNS_TOPIC_ARN,
            Subject=subject,
            Message=message,
        )
    except (BotoCoreError, ClientError) as e:
        raise RuntimeError(f"Failed to publish order notification to SNS: {e}") from e
