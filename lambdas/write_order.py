"""Lambda handler for writing orders from the workflow or the update rule."""

import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError


# Environment configuration
table_name = os.environ["TABLE_NAME"]

# Keys that describe the operation rather than the order itself
RESERVED_KEYS = ("orderid", "operation")

# Id of the bus event that created the order
SOURCE_EVENT_KEY = "sourceEventId"


class OrderRejected(Exception):
    """Raised when an order operation is refused for a business reason."""

    def __init__(self, error: str, cause: str, status_code: int = 400) -> None:
        super().__init__(cause)
        self.error = error
        self.cause = cause
        self.status_code = status_code


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the DynamoDB table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(table_name)


@lru_cache(maxsize=1)
def _get_sfn_client():
    """Get or initialise the Step Functions client (cached)."""
    return boto3.client("stepfunctions")


def _parse_detail(event: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the order body from an EventBridge event."""
    detail = event.get("detail")
    if isinstance(detail, str):
        try:
            detail = json.loads(detail)
        except json.JSONDecodeError:
            raise OrderRejected("InvalidOrder", "Event detail is not valid JSON")

    if not isinstance(detail, dict):
        raise OrderRejected("InvalidOrder", "Event detail must be a JSON object")

    order_id = detail.get("orderid")
    if not order_id or not isinstance(order_id, str):
        raise OrderRejected(
            "InvalidOrder", "Missing or invalid orderid (must be a non-empty string)"
        )

    if any(not key for key in detail):
        raise OrderRejected("InvalidOrder", "Attribute names must be non-empty")

    # DynamoDB rejects floats
    return json.loads(json.dumps(detail), parse_float=Decimal)


def _created_by_event(order_id: str, event_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the stored order if the given event already created it."""
    if not event_id:
        return None
    existing = _get_table().get_item(
        Key={"orderid": order_id}, ConsistentRead=True
    ).get("Item")
    if existing and existing.get(SOURCE_EVENT_KEY) == event_id:
        return existing
    return None


def create_order(detail: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
    """Insert a new order, refusing to overwrite an existing one.

    A repeated attempt for the same bus event (a retried workflow task) returns
    the order that event already stored instead of failing.
    """
    now = datetime.now(timezone.utc).isoformat()
    item = {key: value for key, value in detail.items() if key != "operation"}
    item["createdAt"] = now
    item["updatedAt"] = now
    if event_id:
        item[SOURCE_EVENT_KEY] = event_id

    try:
        _get_table().put_item(
            Item=item,
            ConditionExpression="attribute_not_exists(orderid)",
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            existing = _created_by_event(item["orderid"], event_id)
            if existing is not None:
                print(f"Order {item['orderid']} already created by event {event_id}")
                return existing
            raise OrderRejected(
                "OrderAlreadyExists", f"Order {item['orderid']} already exists", 409
            )
        raise

    print(f"Created order {item['orderid']}")
    return item


def update_order(detail: Dict[str, Any]) -> Dict[str, Any]:
    """Set every supplied attribute on an existing order."""
    order_id = detail["orderid"]
    attributes = {
        key: value for key, value in detail.items() if key not in RESERVED_KEYS
    }
    attributes["updatedAt"] = datetime.now(timezone.utc).isoformat()

    names = {}
    values = {}
    assignments = []
    for index, (key, value) in enumerate(attributes.items()):
        names[f"#a{index}"] = key
        values[f":v{index}"] = value
        assignments.append(f"#a{index} = :v{index}")

    try:
        response = _get_table().update_item(
            Key={"orderid": order_id},
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression="attribute_exists(orderid)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            raise OrderRejected("OrderNotFound", f"Order {order_id} does not exist", 404)
        raise

    print(f"Updated order {order_id}")
    return response.get("Attributes", {})


def apply_operation(detail: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
    """Dispatch on detail.operation; anything but update is treated as create."""
    if detail.get("operation") == "update":
        return update_order(detail)
    return create_order(detail, event_id)


def _handle_workflow_task(payload: Dict[str, Any], task_token: str) -> Dict[str, Any]:
    """Write the order and report the outcome to the waiting workflow."""
    sfn = _get_sfn_client()
    try:
        order = apply_operation(_parse_detail(payload), payload.get("id"))
    except OrderRejected as e:
        print(f"Order rejected: {e.error}: {e.cause}")
        sfn.send_task_failure(taskToken=task_token, error=e.error, cause=e.cause)
        return {"statusCode": e.status_code, "error": e.error}
    except Exception as e:
        print(f"Error writing order: {str(e)}")
        sfn.send_task_failure(
            taskToken=task_token, error="OrderWriteFailed", cause=str(e)
        )
        return {"statusCode": 500, "error": "OrderWriteFailed"}

    sfn.send_task_success(taskToken=task_token, output=json.dumps(order, default=str))
    return {"statusCode": 200, "orderid": order["orderid"]}


def _handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Apply an order operation delivered directly by an EventBridge rule."""
    try:
        order = apply_operation(_parse_detail(event))
    except OrderRejected as e:
        # Rejected orders are not retried
        print(f"Order rejected: {e.error}: {e.cause}")
        return {"statusCode": e.status_code, "error": e.error}

    return {"statusCode": 200, "orderid": order.get("orderid")}


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Write an order from either invocation shape.

    The workflow invokes this function with ``{"Payload": <event>, "TaskToken":
    <token>}`` and waits for a callback. The update rule invokes it with the
    bare EventBridge event asynchronously; unexpected errors are re-raised
    there so Lambda retries the invocation and then sends it to the routing
    dead-letter queue.

    Args:
        event: Workflow task input or EventBridge event.
        context: Lambda context object.

    Returns:
        Dict with statusCode and either the orderid or an error code.
    """
    task_token: Optional[str] = event.get("TaskToken")
    if task_token:
        return _handle_workflow_task(event.get("Payload") or {}, task_token)

    return _handle_event(event)
