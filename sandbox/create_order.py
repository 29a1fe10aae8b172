#!/usr/bin/env python3
"""Send create/update order operations to the deployed HTTP API."""

import os
import sys
import json
import time
import random
from typing import Any, Dict, List

import boto3
import requests

# Colors for output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
NC = "\033[0m"  # No Color

OPERATIONS = ("create", "update")


def get_api_url(stack_name: str) -> str:
    """Resolve the API URL from ORDER_API_URL or the stack's HttpApiUrl output."""
    url = os.environ.get("ORDER_API_URL")
    if url:
        return url

    cloudformation = boto3.client("cloudformation")
    stack = cloudformation.describe_stacks(StackName=stack_name)["Stacks"][0]
    for output in stack.get("Outputs", []):
        if output["OutputKey"] == "HttpApiUrl":
            return output["OutputValue"]

    raise KeyError(f"Stack {stack_name} has no HttpApiUrl output")


def parse_value(raw: str) -> Any:
    """Interpret a command line value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def build_order_body(operation: str, order_id: str, attributes: List[str]) -> Dict[str, Any]:
    """Build the request body that becomes the event detail.

    Args:
        operation: "create" or "update".
        order_id: Order identifier.
        attributes: Extra attributes as key=value strings.
    """
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation} (expected create or update)")

    body = {"operation": operation, "orderid": order_id}
    for attribute in attributes:
        key, separator, value = attribute.partition("=")
        if not separator or not key:
            raise ValueError(f"Attributes must be key=value, got: {attribute}")
        body[key] = parse_value(value)
    return body


def main():
    """Main entry point."""
    if len(sys.argv) < 2 or sys.argv[1] in ("--help", "-h"):
        print(f"{BLUE}Usage:{NC}")
        print(f"  {sys.argv[0]} create [ORDER_ID] [key=value ...]")
        print(f"  {sys.argv[0]} update ORDER_ID key=value [key=value ...]")
        print(f"\n{BLUE}Environment:{NC}")
        print("  ORDER_API_URL     - API base URL (skips the CloudFormation lookup)")
        print("  ORDER_STACK_NAME  - Stack to read HttpApiUrl from (default OrderProcessingStack)")
        return

    operation = sys.argv[1]
    if len(sys.argv) > 2:
        order_id = sys.argv[2]
    else:
        order_id = f"order-{int(time.time())}-{random.randint(1000, 9999)}"
        print(f"{GREEN}Generated Order ID: {order_id}{NC}")

    try:
        body = build_order_body(operation, order_id, sys.argv[3:])
    except ValueError as e:
        print(f"{RED}[ERROR] {str(e)}{NC}")
        sys.exit(2)

    stack_name = os.environ.get("ORDER_STACK_NAME", "OrderProcessingStack")

    try:
        url = get_api_url(stack_name).rstrip("/") + f"/{operation}"
        print(f"\n{BLUE}POST {url}{NC}")
        print(f"  Body: {json.dumps(body)}\n")

        response = requests.post(url, json=body, timeout=10)
        print(f"{GREEN}[OK] API Response:{NC}")
        print(f"  Status Code: {response.status_code}")
        print(f"  Body: {response.text}\n")

        if response.ok:
            if operation == "create":
                print(f"{BLUE}What happens next:{NC}")
                print("  1. EventBridge routes the event to the order workflow")
                print("  2. The write handler stores the order and calls back")
                print("  3. The confirmation topic receives a success or failure message\n")
            else:
                print(f"{BLUE}The update is applied directly by the write handler (no notification).{NC}\n")
            print(f"Check the order with: {GREEN}python sandbox/view_orders.py {order_id}{NC}")
        else:
            print(f"{YELLOW}[WARN]  Unexpected response{NC}")

    except Exception as e:
        print(f"{RED}[ERROR] Error calling the API: {str(e)}{NC}")
        print(f"\n{BLUE}Troubleshooting:{NC}")
        print("  - Is the stack deployed? (cdk deploy)")
        print("  - Are AWS credentials configured? (aws sts get-caller-identity)")
        sys.exit(1)


if __name__ == "__main__":
    main()
