#!/usr/bin/env python3
"""View orders in the deployed DynamoDB order table."""

import os
import sys
import time
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer

# Colors for terminal output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
CYAN = "\033[0;36m"
RED = "\033[0;31m"
BOLD = "\033[1m"
NC = "\033[0m"  # No Color

TABLE_NAME = os.environ.get("ORDER_TABLE_NAME", "order")

_deserializer = TypeDeserializer()


def get_dynamodb_client():
    """Create a DynamoDB client from the default AWS configuration."""
    return boto3.client("dynamodb")


def format_dynamodb_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert DynamoDB item format to plain Python dict."""
    return {key: _deserializer.deserialize(value) for key, value in item.items()}


def scan_orders() -> List[Dict[str, Any]]:
    """Scan all orders from DynamoDB table."""
    client = get_dynamodb_client()

    try:
        items = []
        for page in client.get_paginator("scan").paginate(TableName=TABLE_NAME):
            items.extend(format_dynamodb_item(item) for item in page.get("Items", []))
        return items
    except Exception as e:
        print(f"{RED}[ERROR] Error scanning DynamoDB: {str(e)}{NC}")
        print(f"{YELLOW}Is the stack deployed and are credentials configured?{NC}")
        sys.exit(1)


def get_order_by_id(order_id: str) -> Optional[Dict[str, Any]]:
    """Get a specific order by ID."""
    client = get_dynamodb_client()

    try:
        response = client.get_item(TableName=TABLE_NAME, Key={"orderid": {"S": order_id}})
    except Exception as e:
        print(f"{RED}[ERROR] Error getting order: {str(e)}{NC}")
        return None

    if "Item" not in response:
        print(f"{RED}[ERROR] Order not found: {order_id}{NC}")
        return None

    return format_dynamodb_item(response["Item"])


def print_order_table(orders: List[Dict[str, Any]]):
    """Print orders newest first."""
    if not orders:
        print(f"{YELLOW} No orders found{NC}")
        print(f"\nCreate an order with: {GREEN}python sandbox/create_order.py create{NC}")
        return

    print(f"\n{BOLD}{BLUE} Orders in {TABLE_NAME}{NC}\n")
    print(f"{CYAN}{'─' * 100}{NC}")
    print(f"{BOLD}{'Order ID':<30} {'Created At':<22} {'Updated At':<22} {'Attributes'}{NC}")
    print(f"{CYAN}{'─' * 100}{NC}")

    for order in sorted(orders, key=lambda o: str(o.get("createdAt", "")), reverse=True):
        created_at = str(order.get("createdAt", "-"))[:19]
        updated_at = str(order.get("updatedAt", "-"))[:19]
        attributes = ", ".join(
            f"{key}={value}"
            for key, value in order.items()
            if key not in ("orderid", "createdAt", "updatedAt")
        )
        print(f"{order.get('orderid', 'N/A'):<30} {created_at:<22} {updated_at:<22} {attributes}")

    print(f"{CYAN}{'─' * 100}{NC}\n")
    print(f"{BOLD} Total orders:{NC} {len(orders)}")


def print_order_details(order: Dict[str, Any]):
    """Print detailed information about a single order."""
    print(f"\n{BOLD}{BLUE} Order Details{NC}\n")
    print(f"{CYAN}{'─' * 60}{NC}")

    for key, value in order.items():
        print(f"{BOLD}{key:20s}{NC}: {value}")

    print(f"{CYAN}{'─' * 60}{NC}\n")


def watch_mode():
    """Continuously watch for order updates."""
    print(f"{BLUE} Watch mode - Press Ctrl+C to exit{NC}\n")

    try:
        while True:
            # Clear screen
            print("\033[H\033[J", end="")
            print_order_table(scan_orders())
            print(f"\n{CYAN}Refreshing in 3 seconds...{NC}")
            time.sleep(3)
    except KeyboardInterrupt:
        print(f"\n{GREEN}[OK] Watch mode stopped{NC}")


def main():
    """Main entry point."""
    if len(sys.argv) > 1:
        if sys.argv[1] in ("--watch", "-w"):
            watch_mode()
        elif sys.argv[1] in ("--help", "-h"):
            print(f"{BLUE}Usage:{NC}")
            print(f"  {sys.argv[0]}              - View all orders")
            print(f"  {sys.argv[0]} ORDER_ID     - View specific order")
            print(f"  {sys.argv[0]} --watch|-w   - Watch mode (auto-refresh)")
            print(f"  {sys.argv[0]} --help|-h    - Show this help")
        else:
            order = get_order_by_id(sys.argv[1])
            if order:
                print_order_details(order)
            else:
                sys.exit(1)
    else:
        print_order_table(scan_orders())


if __name__ == "__main__":
    main()
