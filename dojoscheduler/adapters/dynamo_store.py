"""
AWS DynamoDB implementation of the key-value store.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from ..domain.exceptions import ConflictError, TransientStoreError
from ..domain.expressions import Condition, CounterUpdate

logger = logging.getLogger(__name__)

Item = Dict[str, Any]


def render_condition(condition: Condition) -> Tuple[str, Dict[str, str]]:
    """Render a Condition as a DynamoDB condition expression and its names."""
    function = "attribute_exists" if condition.must_exist else "attribute_not_exists"
    return f"{function}(#c)", {"#c": condition.attribute}


def render_update(update: CounterUpdate) -> Tuple[str, Dict[str, str], Dict[str, Dict[str, str]]]:
    """
    Render a CounterUpdate as a DynamoDB ``SET`` expression.

    Fixed field names get ``#f<n>`` placeholders, bucket keys keep the
    placeholders assigned by the CounterUpdate, and every distinct delta
    gets one ``:d<delta>`` value. Example for one availability creation::

        SET #f0 = #f0 + :d1, #f1.#oc0 = #f1.#oc0 + :d1

    Returns:
        (update expression, expression attribute names, expression attribute values)
    """
    if update.is_empty():
        raise ValueError("Cannot render an empty counter update")

    names: Dict[str, str] = dict(update.names)
    values: Dict[str, Dict[str, str]] = {}
    field_placeholders: Dict[str, str] = {}
    clauses: List[str] = []

    for path, delta in update.increments.items():
        parts: List[str] = []
        for part in path.split("."):
            if part.startswith("#"):
                parts.append(part)
                continue
            placeholder = field_placeholders.get(part)
            if placeholder is None:
                placeholder = f"#f{len(field_placeholders)}"
                field_placeholders[part] = placeholder
                names[placeholder] = part
            parts.append(placeholder)

        target = ".".join(parts)
        value = f":d{delta}"
        values[value] = {"N": str(delta)}

        if update.create_missing:
            values[":zero"] = {"N": "0"}
            clauses.append(f"{target} = if_not_exists({target}, :zero) + {value}")
        else:
            clauses.append(f"{target} = {target} + {value}")

    return "SET " + ", ".join(clauses), names, values


def _plain(value: Any) -> Any:
    """Convert deserialized DynamoDB values into plain Python types."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(v) for v in value)
    return value


class DynamoStore:
    """
    Key-value store backed by DynamoDB.

    Uses the low-level client so every request is spelled out explicitly.
    Conditional check failures become ConflictError; anything else the SDK
    raises becomes TransientStoreError.
    """

    BATCH_SIZE = 25
    MAX_BATCH_ATTEMPTS = 5

    def __init__(self, client: Any, backoff_seconds: float = 0.05):
        """
        Initialize the store.

        Args:
            client: A boto3 ``dynamodb`` client
            backoff_seconds: Base delay before re-sending unprocessed batch items
        """
        self.client = client
        self.backoff_seconds = backoff_seconds
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @classmethod
    def create(
        cls,
        region: str,
        endpoint_url: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> "DynamoStore":
        """Build a store with its own boto3 session."""
        session = boto3.session.Session(profile_name=profile, region_name=region)
        return cls(session.client("dynamodb", endpoint_url=endpoint_url))

    def _serialize(self, item: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in item.items() if v is not None}

    def _deserialize(self, item: Mapping[str, Any]) -> Item:
        return {k: _plain(self._deserializer.deserialize(v)) for k, v in item.items()}

    def _translate(self, exc: Exception, action: str) -> Exception:
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            if code == "ConditionalCheckFailedException":
                return ConflictError(
                    "Invalid request: conditional check failed",
                    f"DynamoDB {action} conditional check failed",
                )
        logger.warning("DynamoDB %s failed: %s", action, exc)
        return TransientStoreError(f"DynamoDB {action} failure: {exc}")

    def put(self, table: str, item: Mapping[str, Any], condition: Optional[Condition] = None) -> None:
        request: Dict[str, Any] = {"TableName": table, "Item": self._serialize(item)}
        if condition is not None:
            expression, names = render_condition(condition)
            request["ConditionExpression"] = expression
            request["ExpressionAttributeNames"] = names

        try:
            self.client.put_item(**request)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "PutItem") from exc

    def get(self, table: str, key: Mapping[str, str]) -> Optional[Item]:
        try:
            result = self.client.get_item(TableName=table, Key=self._serialize(key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "GetItem") from exc

        item = result.get("Item")
        if item is None:
            return None
        return self._deserialize(item)

    def delete(self, table: str, key: Mapping[str, str], condition: Optional[Condition] = None) -> None:
        request: Dict[str, Any] = {"TableName": table, "Key": self._serialize(key)}
        if condition is not None:
            expression, names = render_condition(condition)
            request["ConditionExpression"] = expression
            request["ExpressionAttributeNames"] = names

        try:
            self.client.delete_item(**request)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "DeleteItem") from exc

    def increment(self, table: str, key: Mapping[str, str], update: CounterUpdate) -> None:
        expression, names, values = render_update(update)
        logger.debug("UpdateItem %s %s: %s %s", table, dict(key), expression, names)
        try:
            self.client.update_item(
                TableName=table,
                Key=self._serialize(key),
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "UpdateItem") from exc

    def scan(
        self,
        table: str,
        start_key: Optional[Mapping[str, str]] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Item], Optional[Item]]:
        if limit is not None and limit < 1:
            raise ValueError(f"Scan limit must be at least 1, got {limit}")
        request: Dict[str, Any] = {"TableName": table}
        if start_key:
            request["ExclusiveStartKey"] = self._serialize(start_key)
        if limit is not None:
            request["Limit"] = limit

        try:
            result = self.client.scan(**request)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "Scan") from exc

        items = [self._deserialize(item) for item in result.get("Items", [])]
        last_key = result.get("LastEvaluatedKey")
        return items, self._deserialize(last_key) if last_key else None

    def batch_put(self, table: str, items: Sequence[Mapping[str, Any]]) -> None:
        for start in range(0, len(items), self.BATCH_SIZE):
            chunk = items[start:start + self.BATCH_SIZE]
            requests = {table: [{"PutRequest": {"Item": self._serialize(item)}} for item in chunk]}
            self._write_batch(requests)

    def _write_batch(self, requests: Dict[str, List[Dict[str, Any]]]) -> None:
        for attempt in range(self.MAX_BATCH_ATTEMPTS):
            try:
                result = self.client.batch_write_item(RequestItems=requests)
            except (ClientError, BotoCoreError) as exc:
                raise self._translate(exc, "BatchWriteItem") from exc

            requests = result.get("UnprocessedItems") or {}
            if not requests:
                return

            pending = sum(len(v) for v in requests.values())
            logger.info("BatchWriteItem left %d unprocessed item(s), retrying", pending)
            if self.backoff_seconds:
                time.sleep(self.backoff_seconds * (2 ** attempt))

        raise TransientStoreError(
            f"BatchWriteItem still had unprocessed items after {self.MAX_BATCH_ATTEMPTS} attempts"
        )
