"""DynamoDB-backed tag store.

One item per entity::

    {"EntityType": "environment", "EntityID": "prod1a2b3c4d",
     "Tags": {"name": "prod", "os": "linux"}}

Writes are conditional so two writers never clobber each other:

- ``insert`` first tries ``PutItem`` guarded by
  ``attribute_not_exists(EntityType)``. When the record already exists it
  falls back to an atomic ``SET Tags.#key = :value`` guarded by
  ``attribute_exists(EntityType)``. If the record vanished in between
  (its last tag was deleted) the put is tried again.
- ``delete`` issues ``REMOVE Tags.#key`` and, when the returned map is
  empty, deletes the item guarded by an empty-map condition, so a
  concurrent insert into the same record wins over the cleanup.

Reads for existence and relation lookups use ``ConsistentRead=True``;
``select_all`` scans with eventual consistency.
"""

from __future__ import annotations

from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from envspine.core.errors import ProviderError
from envspine.core.logging import get_logger

from .models import Tag, Tags
from .store import TagStore, validate_entity, validate_tag

logger = get_logger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"
_MAX_WRITE_ATTEMPTS = 5


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == _CONDITION_FAILED


def _item_to_tags(item: dict[str, Any]) -> Tags:
    return Tags.from_mapping(item["EntityType"], item["EntityID"], dict(item.get("Tags") or {}))


class DynamoTagStore(TagStore):
    """Tag store on a DynamoDB table keyed by (EntityType, EntityID)."""

    def __init__(self, table_name: str, *, region: str | None = None, endpoint_url: str | None = None, table: Any = None):
        if table is None:
            resource = boto3.resource("dynamodb", region_name=region, endpoint_url=endpoint_url)
            table = resource.Table(table_name)
        self.table = table
        self.table_name = table_name

    def _key(self, entity_type: str, entity_id: str) -> dict[str, str]:
        return {"EntityType": entity_type, "EntityID": entity_id}

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def insert(self, tag: Tag) -> None:
        validate_tag(tag)
        for _ in range(_MAX_WRITE_ATTEMPTS):
            if self._put_new_record(tag) or self._set_key(tag):
                return

        raise ProviderError(
            _CONDITION_FAILED,
            f"Failed to insert tag '{tag.key}' for {tag.entity_type} '{tag.entity_id}' after {_MAX_WRITE_ATTEMPTS} attempts",
            operation="tags.insert",
        )

    def _put_new_record(self, tag: Tag) -> bool:
        try:
            self.table.put_item(
                Item={**self._key(tag.entity_type, tag.entity_id), "Tags": {tag.key: tag.value}},
                ConditionExpression="attribute_not_exists(EntityType)",
            )
            return True
        except ClientError as exc:
            if _is_condition_failure(exc):
                return False
            raise ProviderError.from_client_error(exc, operation="tags.insert") from exc

    def _set_key(self, tag: Tag) -> bool:
        try:
            self.table.update_item(
                Key=self._key(tag.entity_type, tag.entity_id),
                UpdateExpression="SET #tags.#key = :value",
                ConditionExpression="attribute_exists(EntityType)",
                ExpressionAttributeNames={"#tags": "Tags", "#key": tag.key},
                ExpressionAttributeValues={":value": tag.value},
            )
            return True
        except ClientError as exc:
            if _is_condition_failure(exc):
                logger.debug("tags.record_vanished", entity_type=tag.entity_type, entity_id=tag.entity_id)
                return False
            raise ProviderError.from_client_error(exc, operation="tags.insert") from exc

    def delete(self, entity_type: str, entity_id: str, key: str) -> None:
        validate_entity(entity_type, entity_id, action="delete")
        try:
            response = self.table.update_item(
                Key=self._key(entity_type, entity_id),
                UpdateExpression="REMOVE #tags.#key",
                ConditionExpression="attribute_exists(EntityType)",
                ExpressionAttributeNames={"#tags": "Tags", "#key": key},
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return
            raise ProviderError.from_client_error(exc, operation="tags.delete") from exc

        remaining = response.get("Attributes", {}).get("Tags") or {}
        if remaining:
            return

        try:
            self.table.delete_item(
                Key=self._key(entity_type, entity_id),
                ConditionExpression="attribute_not_exists(#tags) OR size(#tags) = :zero",
                ExpressionAttributeNames={"#tags": "Tags"},
                ExpressionAttributeValues={":zero": 0},
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return
            raise ProviderError.from_client_error(exc, operation="tags.delete") from exc

    def clear(self) -> None:
        items = self._scan(ProjectionExpression="EntityType, EntityID")
        with self.table.batch_writer() as batch:
            for item in items:
                batch.delete_item(Key=self._key(item["EntityType"], item["EntityID"]))
        logger.info("tags.cleared", records=len(items), table=self.table_name)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def select_by_type_and_id(self, entity_type: str, entity_id: str) -> Tags:
        validate_entity(entity_type, entity_id)
        try:
            response = self.table.get_item(Key=self._key(entity_type, entity_id), ConsistentRead=True)
        except ClientError as exc:
            raise ProviderError.from_client_error(exc, operation="tags.select") from exc

        item = response.get("Item")
        return _item_to_tags(item) if item else Tags()

    def select_by_type(self, entity_type: str) -> Tags:
        validate_entity(entity_type, "*")
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": Key("EntityType").eq(entity_type),
            "ConsistentRead": True,
        }
        try:
            while True:
                response = self.table.query(**kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as exc:
            raise ProviderError.from_client_error(exc, operation="tags.select") from exc

        return Tags.concat(_item_to_tags(item) for item in items)

    def select_all(self) -> Tags:
        return Tags.concat(_item_to_tags(item) for item in self._scan())

    def _scan(self, **extra: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {"ConsistentRead": False, **extra}
        try:
            while True:
                response = self.table.scan(**kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as exc:
            raise ProviderError.from_client_error(exc, operation="tags.scan") from exc
        return items
