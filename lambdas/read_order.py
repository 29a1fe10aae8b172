"""Lambda handler serving GET /get from the order table."""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List

import boto3


# Environment configuration
table_name = os.environ["TABLE_NAME"]


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the DynamoDB table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(table_name)


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def _scan_orders() -> List[Dict[str, Any]]:
    """Read every order, following pagination."""
    table = _get_table()
    response = table.scan()
    items = response.get("Items", [])

    while "LastEvaluatedKey" in response:
        response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"])
        items.extend(response.get("Items", []))

    return items


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Return one order by ?orderid=, or every order when no id is given.

    Args:
        event: API Gateway HTTP API proxy event.
        context: Lambda context object.

    Returns:
        API Gateway proxy response.
    """
    try:
        params = event.get("queryStringParameters") or {}
        order_id = params.get("orderid")

        if not order_id:
            orders = _scan_orders()
            print(f"Returning {len(orders)} orders")
            return _response(200, {"orders": orders})

        item = _get_table().get_item(Key={"orderid": order_id}).get("Item")
        if item is None:
            return _response(404, {"error": f"Order {order_id} not found"})

        return _response(200, item)

    except Exception as e:
        print(f"Error reading orders: {str(e)}")
        return _response(500, {"error": "Internal server error"})
