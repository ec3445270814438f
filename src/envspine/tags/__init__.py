"""Tag store: entity metadata, relations and the existence index."""

from .lookup import delete_entity_tags, lookup_entity_environment_id
from .models import Tag, Tags
from .store import MemoryTagStore, TagStore

__all__ = [
    "MemoryTagStore",
    "Tag",
    "TagStore",
    "Tags",
    "delete_entity_tags",
    "lookup_entity_environment_id",
]
