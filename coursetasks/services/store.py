"""
Key-value store adapter for the single-table layout.

Repositories talk to a ``KeyValueStore`` rather than to boto3 directly so the
backing store can be swapped: ``DynamoDBStore`` wraps a DynamoDB table, and
``InMemoryStore`` keeps items in a dict for local runs and tests.

Items are addressed by a composite ``(PK, SK)`` key. One global secondary
index, ``GSI1``, is keyed by ``(GSI1PK, GSI1SK)``. Conditions are expressed
with ``boto3.dynamodb.conditions`` objects (``Attr("PK").not_exists()`` and so
on) so both backends accept exactly the same arguments.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from boto3.dynamodb.conditions import ConditionBase, Key
from botocore.exceptions import BotoCoreError, ClientError

from ..aws_clients import dynamodb_resource
from ..errors import ConditionFailedError, UnexpectedError

logger = logging.getLogger(__name__)

TABLE_NAME = os.getenv("DYNAMODB_TABLE_NAME", "CourseTasks")
STORE_BACKEND = os.getenv("STORE_BACKEND", "dynamodb").lower()

GSI1 = "GSI1"
INDEX_KEYS: Dict[Optional[str], Tuple[str, str]] = {
    None: ("PK", "SK"),
    GSI1: ("GSI1PK", "GSI1SK"),
}

Item = Dict[str, Any]


class KeyValueStore(Protocol):
    """Operations the repositories rely on."""

    async def get(self, pk: str, sk: str) -> Optional[Item]:
        """Return the item stored under ``(pk, sk)`` or ``None``."""
        ...

    async def put(self, item: Item, condition: Optional[ConditionBase] = None) -> Item:
        """Write a whole item.

        Raises:
            ConditionFailedError: If ``condition`` does not hold for the
                currently stored item.
        """
        ...

    async def query(
        self, pk: str, sk_prefix: Optional[str] = None, index: Optional[str] = None
    ) -> List[Item]:
        """Return items of one partition, optionally narrowed by a sort-key prefix."""
        ...

    async def update(
        self,
        pk: str,
        sk: str,
        fields: Mapping[str, Any],
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        remove: Iterable[str] = (),
        condition: Optional[ConditionBase] = None,
    ) -> Item:
        """Set attributes on an item, creating it when absent, and return the new image.

        ``defaults`` are only written when the attribute does not exist yet.

        Raises:
            ConditionFailedError: If ``condition`` does not hold.
        """
        ...

    async def delete(
        self, pk: str, sk: str, condition: Optional[ConditionBase] = None
    ) -> Optional[Item]:
        """Delete an item and return its old image (``None`` if nothing was stored)."""
        ...


def _to_dynamo(value: Any) -> Any:
    # DynamoDB requires Decimal for float values, not float
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDBStore:
    """``KeyValueStore`` backed by a DynamoDB table.

    boto3 is synchronous, so every call runs in a worker thread and the event
    loop keeps serving other requests while DynamoDB answers.
    """

    def __init__(self, table=None, table_name: str = TABLE_NAME):
        self.table_name = table_name
        self._table = table if table is not None else dynamodb_resource().Table(table_name)

    async def _call(self, operation: str, fn, **kwargs) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ConditionalCheckFailedException":
                raise ConditionFailedError(operation) from e
            if error_code == "ResourceNotFoundException":
                logger.error(f"DynamoDB table doesn't exist: {self.table_name}")
            else:
                logger.error(f"DynamoDB {operation} failed: {error_code} - {str(e)}")
            raise UnexpectedError("Data store request failed") from e
        except BotoCoreError as e:
            logger.error(f"DynamoDB {operation} transport error: {type(e).__name__}: {str(e)}")
            raise UnexpectedError("Data store request failed") from e

    async def get(self, pk: str, sk: str) -> Optional[Item]:
        response = await self._call("GetItem", self._table.get_item, Key={"PK": pk, "SK": sk})
        item = response.get("Item")
        return _from_dynamo(item) if item else None

    async def put(self, item: Item, condition: Optional[ConditionBase] = None) -> Item:
        kwargs: Dict[str, Any] = {"Item": _to_dynamo(item)}
        if condition is not None:
            kwargs["ConditionExpression"] = condition
        await self._call("PutItem", self._table.put_item, **kwargs)
        return dict(item)

    async def query(
        self, pk: str, sk_prefix: Optional[str] = None, index: Optional[str] = None
    ) -> List[Item]:
        pk_name, sk_name = INDEX_KEYS[index]
        key_condition = Key(pk_name).eq(pk)
        if sk_prefix:
            key_condition = key_condition & Key(sk_name).begins_with(sk_prefix)

        kwargs: Dict[str, Any] = {"KeyConditionExpression": key_condition}
        if index:
            kwargs["IndexName"] = index

        items: List[Item] = []
        while True:
            response = await self._call("Query", self._table.query, **kwargs)
            items.extend(_from_dynamo(i) for i in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return items

    async def update(
        self,
        pk: str,
        sk: str,
        fields: Mapping[str, Any],
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        remove: Iterable[str] = (),
        condition: Optional[ConditionBase] = None,
    ) -> Item:
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        sets: List[str] = []

        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":f{i}"] = _to_dynamo(value)
            sets.append(f"#f{i} = :f{i}")
        for i, (name, value) in enumerate((defaults or {}).items()):
            names[f"#d{i}"] = name
            values[f":d{i}"] = _to_dynamo(value)
            sets.append(f"#d{i} = if_not_exists(#d{i}, :d{i})")

        expression = "SET " + ", ".join(sets) if sets else ""
        removals = []
        for i, name in enumerate(remove):
            names[f"#r{i}"] = name
            removals.append(f"#r{i}")
        if removals:
            expression = f"{expression} REMOVE {', '.join(removals)}".strip()
        if not expression:
            raise ValueError("update requires at least one attribute to set or remove")

        kwargs: Dict[str, Any] = {
            "Key": {"PK": pk, "SK": sk},
            "UpdateExpression": expression,
            "ExpressionAttributeNames": names,
            "ReturnValues": "ALL_NEW",
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values
        if condition is not None:
            kwargs["ConditionExpression"] = condition

        response = await self._call("UpdateItem", self._table.update_item, **kwargs)
        return _from_dynamo(response.get("Attributes", {}))

    async def delete(
        self, pk: str, sk: str, condition: Optional[ConditionBase] = None
    ) -> Optional[Item]:
        kwargs: Dict[str, Any] = {"Key": {"PK": pk, "SK": sk}, "ReturnValues": "ALL_OLD"}
        if condition is not None:
            kwargs["ConditionExpression"] = condition
        response = await self._call("DeleteItem", self._table.delete_item, **kwargs)
        old = response.get("Attributes")
        return _from_dynamo(old) if old else None


def evaluate_condition(condition: ConditionBase, item: Optional[Item]) -> bool:
    """Evaluate a boto3 condition object against a plain item (``None`` = absent)."""
    expression = condition.get_expression()
    operator = expression["operator"]
    operands = expression["values"]

    if operator == "AND":
        return all(evaluate_condition(c, item) for c in operands)
    if operator == "OR":
        return any(evaluate_condition(c, item) for c in operands)
    if operator == "NOT":
        return not evaluate_condition(operands[0], item)

    item = item or {}
    name = operands[0].name
    present = name in item
    current = item.get(name)

    if operator == "attribute_exists":
        return present
    if operator == "attribute_not_exists":
        return not present
    if not present:
        return False
    if operator == "=":
        return current == operands[1]
    if operator == "<>":
        return current != operands[1]
    if operator == "<":
        return current < operands[1]
    if operator == "<=":
        return current <= operands[1]
    if operator == ">":
        return current > operands[1]
    if operator == ">=":
        return current >= operands[1]
    if operator == "begins_with":
        return isinstance(current, str) and current.startswith(operands[1])
    if operator == "contains":
        return operands[1] in current
    if operator == "BETWEEN":
        return operands[1] <= current <= operands[2]
    if operator == "IN":
        return current in operands[1]
    raise ValueError(f"Unsupported condition operator: {operator}")


class InMemoryStore:
    """Simple in-memory ``KeyValueStore`` with the same conditional semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._items: Dict[Tuple[str, str], Item] = {}

    def __len__(self) -> int:
        return len(self._items)

    def _check(self, condition: Optional[ConditionBase], current: Optional[Item], operation: str) -> None:
        if condition is not None and not evaluate_condition(condition, current):
            raise ConditionFailedError(operation)

    async def get(self, pk: str, sk: str) -> Optional[Item]:
        async with self._lock:
            item = self._items.get((pk, sk))
            return copy.deepcopy(item) if item is not None else None

    async def put(self, item: Item, condition: Optional[ConditionBase] = None) -> Item:
        async with self._lock:
            key = (item["PK"], item["SK"])
            self._check(condition, self._items.get(key), "PutItem")
            self._items[key] = copy.deepcopy(item)
            return copy.deepcopy(item)

    async def query(
        self, pk: str, sk_prefix: Optional[str] = None, index: Optional[str] = None
    ) -> List[Item]:
        pk_name, sk_name = INDEX_KEYS[index]
        async with self._lock:
            matches = [
                item
                for item in self._items.values()
                if item.get(pk_name) == pk
                and sk_name in item
                and (not sk_prefix or str(item[sk_name]).startswith(sk_prefix))
            ]
            matches.sort(key=lambda i: str(i[sk_name]))
            return copy.deepcopy(matches)

    async def update(
        self,
        pk: str,
        sk: str,
        fields: Mapping[str, Any],
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        remove: Iterable[str] = (),
        condition: Optional[ConditionBase] = None,
    ) -> Item:
        async with self._lock:
            key = (pk, sk)
            current = self._items.get(key)
            self._check(condition, current, "UpdateItem")
            updated = copy.deepcopy(current) if current is not None else {"PK": pk, "SK": sk}
            for name, value in (defaults or {}).items():
                updated.setdefault(name, copy.deepcopy(value))
            for name, value in fields.items():
                updated[name] = copy.deepcopy(value)
            for name in remove:
                updated.pop(name, None)
            self._items[key] = updated
            return copy.deepcopy(updated)

    async def delete(
        self, pk: str, sk: str, condition: Optional[ConditionBase] = None
    ) -> Optional[Item]:
        async with self._lock:
            key = (pk, sk)
            self._check(condition, self._items.get(key), "DeleteItem")
            return self._items.pop(key, None)


# Global store instance (lazy initialization)
_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """Get the configured store instance.

    Returns:
        KeyValueStore instance based on the STORE_BACKEND environment variable
    """
    global _store

    if _store is None:
        if STORE_BACKEND == "memory":
            logger.info("Initializing in-memory store")
            _store = InMemoryStore()
        else:
            logger.info(f"Initializing DynamoDB store (table={TABLE_NAME})")
            _store = DynamoDBStore()

    return _store
