#!/usr/bin/env python3
"""Monitor workflow notifications by subscribing a temporary queue to the topic."""

import os
import sys
import json
import time
from datetime import datetime

import boto3

# Colors for terminal output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
CYAN = "\033[0;36m"
RED = "\033[0;31m"
BOLD = "\033[1m"
NC = "\033[0m"  # No Color

TOPIC_NAME = os.environ.get("ORDER_TOPIC_NAME", "orderConfirmation")
DLQ_NAME = os.environ.get("ORDER_DLQ_NAME", "order-routing-dlq")

FAILURE_MARKER = "failed"


def get_topic_arn() -> str:
    """Build the topic ARN for the current account and region."""
    session = boto3.session.Session()
    account = boto3.client("sts").get_caller_identity()["Account"]
    return f"arn:aws:sns:{session.region_name}:{account}:{TOPIC_NAME}"


def queue_policy(queue_arn: str, topic_arn: str) -> str:
    """Allow the topic to deliver into the temporary queue."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": "sns.amazonaws.com"},
                    "Action": "sqs:SendMessage",
                    "Resource": queue_arn,
                    "Condition": {"ArnEquals": {"aws:SourceArn": topic_arn}},
                }
            ],
        }
    )


def notification_text(body: str) -> str:
    """Extract the published message from an SNS-to-SQS envelope."""
    try:
        envelope = json.loads(body)
    except json.JSONDecodeError:
        return body
    return envelope.get("Message", body) if isinstance(envelope, dict) else body


def setup_subscription(topic_arn: str):
    """
    Create a temporary SQS queue and subscribe it to the SNS topic.
    Returns (queue_url, subscription_arn, queue_name).
    """
    sqs = boto3.client("sqs")
    sns = boto3.client("sns")

    print(f"{BLUE} Creating temporary queue for SNS notifications...{NC}")
    queue_name = f"order-notification-monitor-{int(time.time())}"
    queue_url = sqs.create_queue(QueueName=queue_name)["QueueUrl"]

    attrs = sqs.get_queue_attributes(QueueUrl=queue_url, AttributeNames=["QueueArn"])
    queue_arn = attrs["Attributes"]["QueueArn"]
    sqs.set_queue_attributes(
        QueueUrl=queue_url, Attributes={"Policy": queue_policy(queue_arn, topic_arn)}
    )

    print(f"{GREEN}[OK] Queue created: {queue_name}{NC}")

    print(f"{BLUE} Subscribing to SNS topic...{NC}")
    subscription = sns.subscribe(TopicArn=topic_arn, Protocol="sqs", Endpoint=queue_arn)

    print(f"{GREEN}[OK] Subscribed to {topic_arn}{NC}\n")

    return queue_url, subscription["SubscriptionArn"], queue_name


def monitor_notifications(queue_url: str):
    """Poll SQS queue for SNS notifications."""
    sqs = boto3.client("sqs")

    print(f"{BOLD}{CYAN}{'=' * 80}{NC}")
    print(f"{BOLD}{BLUE} Monitoring order notifications{NC}")
    print(f"{CYAN}Topic: {TOPIC_NAME}{NC}")
    print(f"{CYAN}Press Ctrl+C to stop{NC}")
    print(f"{BOLD}{CYAN}{'=' * 80}{NC}\n")

    message_count = 0

    try:
        while True:
            # Long poll for messages (wait up to 5 seconds)
            response = sqs.receive_message(
                QueueUrl=queue_url, MaxNumberOfMessages=10, WaitTimeSeconds=5
            )

            messages = response.get("Messages", [])

            for message in messages:
                message_count += 1
                text = notification_text(message["Body"])
                color = RED if FAILURE_MARKER in text else GREEN
                timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

                print(f"{color}{'─' * 80}{NC}")
                print(f"{BOLD} Notification #{message_count} {NC}({timestamp})")
                print(f"{color}{text}{NC}")
                print(f"{color}{'─' * 80}{NC}\n")

                sqs.delete_message(
                    QueueUrl=queue_url, ReceiptHandle=message["ReceiptHandle"]
                )

            if not messages:
                print(
                    f"{CYAN} Waiting for notifications...{NC} (checked at {datetime.now().strftime('%H:%M:%S')})",
                    end="\r",
                )

    except KeyboardInterrupt:
        print(f"\n\n{YELLOW} Monitoring stopped{NC}")
        print(f"{CYAN}Total notifications received: {message_count}{NC}")


def cleanup(queue_url: str, subscription_arn: str, queue_name: str):
    """Clean up temporary resources."""
    print(f"\n{BLUE} Cleaning up...{NC}")

    try:
        boto3.client("sns").unsubscribe(SubscriptionArn=subscription_arn)
        print(f"{GREEN}[OK] Unsubscribed from topic{NC}")
    except Exception as e:
        print(f"{YELLOW}[WARN]  Could not unsubscribe: {str(e)}{NC}")

    try:
        boto3.client("sqs").delete_queue(QueueUrl=queue_url)
        print(f"{GREEN}[OK] Deleted queue: {queue_name}{NC}")
    except Exception as e:
        print(f"{YELLOW}[WARN]  Could not delete queue: {str(e)}{NC}")


def check_dlq():
    """Report how many routed events were dead-lettered."""
    sqs = boto3.client("sqs")

    try:
        dlq_url = sqs.get_queue_url(QueueName=DLQ_NAME)["QueueUrl"]
        attrs = sqs.get_queue_attributes(
            QueueUrl=dlq_url, AttributeNames=["ApproximateNumberOfMessages"]
        )
        message_count = int(attrs["Attributes"]["ApproximateNumberOfMessages"])

        if message_count > 0:
            print(f"{RED}[WARN]  DLQ has {message_count} undeliverable events{NC}\n")
        else:
            print(f"{GREEN}[OK] DLQ is empty (no routing failures){NC}\n")

    except Exception as e:
        print(f"{YELLOW}[WARN]  Could not check DLQ: {str(e)}{NC}\n")


def main():
    """Main entry point."""
    if "--help" in sys.argv or "-h" in sys.argv:
        print(f"{BLUE}Order Notification Monitor{NC}")
        print("\nPrints the success/failure messages published by the order workflow.")
        print("\nUsage:")
        print(f"  {sys.argv[0]}              - Start monitoring notifications")
        print(f"  {sys.argv[0]} --dlq        - Check routing DLQ message count")
        print(f"  {sys.argv[0]} --help|-h    - Show this help")
        print(f"\n{CYAN}Tip: Run this in a separate terminal while creating orders{NC}")
        return

    if "--dlq" in sys.argv:
        check_dlq()
        return

    try:
        topic_arn = get_topic_arn()
    except Exception as e:
        print(f"{RED}[ERROR] Cannot resolve topic ARN: {str(e)}{NC}")
        print(f"{YELLOW}Are AWS credentials configured? (aws sts get-caller-identity){NC}")
        sys.exit(1)

    queue_url, subscription_arn, queue_name = setup_subscription(topic_arn)

    check_dlq()

    try:
        monitor_notifications(queue_url)
    finally:
        cleanup(queue_url, subscription_arn, queue_name)


if __name__ == "__main__":
    main()
