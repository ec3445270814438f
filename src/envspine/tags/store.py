"""
Tag store - the metadata store and existence index for logical entities.

The cloud provider has no notion of "environment" or "link"; the tag
store is the only persistent record of which logical entities exist and
how they relate. Tags are grouped into one record per
``(entity_type, entity_id)``:

- a record exists if and only if it holds at least one tag;
- within a record, keys are unique (inserting an existing key overwrites);
- deleting the last key deletes the record.

Manifesto:
    - **Existence by tags:** there is no separate "exists" flag to drift
    - **Safe to retry:** insert is an upsert, delete of an absent key is a no-op
    - **No lost updates:** concurrent inserts of different keys into the
      same (possibly absent) record both survive
    - **Absence is not an error:** reads return empty ``Tags``
    - **Validated locally:** empty entity type/ID never reach the backend

Architecture:
    ::

        TagStore (ABC)
          ├── insert(tag)                               upsert one key
          ├── delete(entity_type, entity_id, key)       drop key / record
          ├── select_by_type_and_id(type, id)           strongly consistent
          ├── select_by_type(type)                      strongly consistent
          ├── select_all()                              relaxed consistency
          └── clear()                                   admin / tests only

        MemoryTagStore   in-process, lock-protected
        DynamoTagStore   DynamoDB conditional writes (envspine.tags.dynamo)

Tags:
    tags, metadata, existence-index, env-spine
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from envspine.core.errors import ValidationError
from envspine.core.logging import get_logger

from .models import Tag, Tags

logger = get_logger(__name__)


def validate_entity(entity_type: str, entity_id: str, action: str = "select") -> None:
    if not entity_type:
        raise ValidationError(f"Failed to {action} tags: EntityType is required")
    if not entity_id:
        raise ValidationError(f"Failed to {action} tags: EntityID is required")


def validate_tag(tag: Tag) -> None:
    validate_entity(tag.entity_type, tag.entity_id, action="insert")
    if not tag.key:
        raise ValidationError("Failed to insert tags: Key is required")


class TagStore(ABC):
    """Abstract tag store. See module docstring for the contract."""

    @abstractmethod
    def insert(self, tag: Tag) -> None:
        """Upsert a single key, creating the owning record if absent."""

    @abstractmethod
    def delete(self, entity_type: str, entity_id: str, key: str) -> None:
        """Remove *key*; removes the record when it was the last key."""

    @abstractmethod
    def select_by_type_and_id(self, entity_type: str, entity_id: str) -> Tags:
        ...

    @abstractmethod
    def select_by_type(self, entity_type: str) -> Tags:
        ...

    @abstractmethod
    def select_all(self) -> Tags:
        ...

    @abstractmethod
    def clear(self) -> None:
        """Delete every record. Administrative/test use only."""

    def insert_many(self, entity_type: str, entity_id: str, values: dict[str, str]) -> None:
        for key, value in values.items():
            self.insert(Tag(entity_type, entity_id, key, value))


class MemoryTagStore(TagStore):
    """In-process tag store. All operations hold a single lock."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], dict[str, str]] = {}
        self._lock = threading.Lock()

    def insert(self, tag: Tag) -> None:
        validate_tag(tag)
        with self._lock:
            self._records.setdefault((tag.entity_type, tag.entity_id), {})[tag.key] = tag.value

    def delete(self, entity_type: str, entity_id: str, key: str) -> None:
        validate_entity(entity_type, entity_id, action="delete")
        with self._lock:
            record = self._records.get((entity_type, entity_id))
            if record is None or key not in record:
                return

            del record[key]
            if not record:
                del self._records[(entity_type, entity_id)]

    def select_by_type_and_id(self, entity_type: str, entity_id: str) -> Tags:
        validate_entity(entity_type, entity_id)
        with self._lock:
            record = dict(self._records.get((entity_type, entity_id), {}))
        return Tags.from_mapping(entity_type, entity_id, record)

    def select_by_type(self, entity_type: str) -> Tags:
        if not entity_type:
            raise ValidationError("Failed to select tags: EntityType is required")
        with self._lock:
            records = [(eid, dict(r)) for (etype, eid), r in self._records.items() if etype == entity_type]
        return Tags.concat(Tags.from_mapping(entity_type, eid, r) for eid, r in records)

    def select_all(self) -> Tags:
        with self._lock:
            records = [(etype, eid, dict(r)) for (etype, eid), r in self._records.items()]
        return Tags.concat(Tags.from_mapping(etype, eid, r) for etype, eid, r in records)

    def clear(self) -> None:
        with self._lock:
            count = len(self._records)
            self._records.clear()
        logger.info("tags.cleared", records=count)
