import argparse
import json
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

load_dotenv()

AWS_REGION = os.environ.get("AWS_REGION", "ap-south-1")
SQS_QUEUE_URL = os.environ.get("SQS_QUEUE_URL")


def format_event(body: str) -> str:
    try:
        event = json.loads(body)
    except ValueError:
        return body
    if not isinstance(event, dict):
        return json.dumps(event, indent=4)

    header = f"{event.get('event', 'unknown')} {event.get('order_number', '')} ({event.get('status', '-')})"
    return header.strip() + "\n" + json.dumps(event, indent=4)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Print order events waiting in the SQS queue.")
    parser.add_argument("-n", "--count", type=int, default=1, choices=range(1, 11),
                        metavar="N", help="messages to receive (1-10)")
    parser.add_argument("--delete", action="store_true",
                        help="delete messages after printing them")
    args = parser.parse_args(argv)

    if not SQS_QUEUE_URL:
        print("Missing SQS_QUEUE_URL")
        return 1

    sqs = boto3.client("sqs", region_name=AWS_REGION)

    try:
        response = sqs.receive_message(
            QueueUrl=SQS_QUEUE_URL,
            MaxNumberOfMessages=args.count,
            WaitTimeSeconds=2
        )
    except (BotoCoreError, ClientError) as e:
        print(f"Failed to read from SQS: {e}")
        return 1

    messages = response.get("Messages", [])
    if not messages:
        print("No messages available.")
        return 0

    for msg in messages:
        print("Message:")
        print(format_event(msg["Body"]))
        if args.delete:
            sqs.delete_message(QueueUrl=SQS_QUEUE_URL, ReceiptHandle=msg["ReceiptHandle"])
            print("Deleted.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
