"""Tag value types.

A :class:`Tag` is an ``(entity_type, entity_id, key, value)`` quadruple.
:class:`Tags` is a list with the filtering helpers the managers use to
answer relation questions ("which environment owns this task") without
re-querying the store.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class Tag:
    entity_type: str
    entity_id: str
    key: str
    value: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Tags(list[Tag]):
    """A list of tags with chainable filters.

    Example:
        >>> tags.with_type("task").with_key("environment_id").first().value
        'prod1a2b3c4d'
    """

    def _filter(self, predicate) -> Tags:
        return Tags(tag for tag in self if predicate(tag))

    def with_type(self, entity_type: str) -> Tags:
        return self._filter(lambda t: t.entity_type == entity_type)

    def with_id(self, entity_id: str) -> Tags:
        return self._filter(lambda t: t.entity_id == entity_id)

    def with_key(self, key: str) -> Tags:
        return self._filter(lambda t: t.key == key)

    def with_key_prefix(self, prefix: str) -> Tags:
        return self._filter(lambda t: t.key.startswith(prefix))

    def with_value(self, value: str) -> Tags:
        return self._filter(lambda t: t.value == value)

    def first(self) -> Tag | None:
        return self[0] if self else None

    def group_by_entity(self) -> dict[tuple[str, str], Tags]:
        groups: dict[tuple[str, str], Tags] = {}
        for tag in self:
            groups.setdefault((tag.entity_type, tag.entity_id), Tags()).append(tag)
        return groups

    def as_dict(self) -> dict[str, str]:
        """Key → value for the tags of a single entity."""
        return {tag.key: tag.value for tag in self}

    @classmethod
    def from_mapping(cls, entity_type: str, entity_id: str, mapping: dict[str, str]) -> Tags:
        return cls(Tag(entity_type, entity_id, key, value) for key, value in sorted(mapping.items()))

    @classmethod
    def concat(cls, groups: Iterable[Iterable[Tag]]) -> Tags:
        return cls(tag for group in groups for tag in group)
