"""Relation helpers built on the tag store."""

from __future__ import annotations

from envspine.core.errors import EntityNotFoundError

from .store import TagStore

ENVIRONMENT_ID_KEY = "environment_id"


def delete_entity_tags(store: TagStore, entity_type: str, entity_id: str) -> None:
    """Remove every tag of an entity, which removes its record."""
    for tag in store.select_by_type_and_id(entity_type, entity_id):
        store.delete(entity_type, entity_id, tag.key)


def lookup_entity_environment_id(store: TagStore, entity_type: str, entity_id: str) -> str:
    """Return the environment that owns an entity.

    Raises:
        EntityNotFoundError: If the entity has no ``environment_id`` tag.
    """
    tag = store.select_by_type_and_id(entity_type, entity_id).with_key(ENVIRONMENT_ID_KEY).first()
    if tag is None:
        raise EntityNotFoundError(
            entity_id,
            entity_type=entity_type,
            message=f"Failed to find environment for {entity_type} '{entity_id}'",
        )
    return tag.value
