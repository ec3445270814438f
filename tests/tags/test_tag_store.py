"""Tests for the in-memory tag store, Tags helpers and relation lookups."""

from __future__ import annotations

import threading

import pytest

from envspine.core.errors import EntityNotFoundError, ValidationError
from envspine.tags import (
    MemoryTagStore,
    Tag,
    Tags,
    delete_entity_tags,
    lookup_entity_environment_id,
)


@pytest.fixture
def store():
    return MemoryTagStore()


class TestInsert:
    def test_creates_record(self, store):
        store.insert(Tag("environment", "prod1", "name", "prod"))
        assert store.select_by_type_and_id("environment", "prod1").as_dict() == {"name": "prod"}

    def test_overwrites_existing_key(self, store):
        store.insert(Tag("environment", "prod1", "name", "prod"))
        store.insert(Tag("environment", "prod1", "name", "production"))
        tags = store.select_by_type_and_id("environment", "prod1")
        assert len(tags) == 1
        assert tags.first().value == "production"

    def test_retry_is_idempotent(self, store):
        tag = Tag("service", "api1", "deploy_id", "web1.1")
        store.insert(tag)
        store.insert(tag)
        assert list(store.select_by_type_and_id("service", "api1")) == [tag]

    @pytest.mark.parametrize(
        "tag",
        [Tag("", "prod1", "name", "x"), Tag("environment", "", "name", "x"), Tag("environment", "prod1", "", "x")],
    )
    def test_missing_fields_rejected(self, store, tag):
        with pytest.raises(ValidationError):
            store.insert(tag)

    def test_concurrent_inserts_on_absent_record_keep_every_key(self, store):
        keys = [f"key{i}" for i in range(20)]
        barrier = threading.Barrier(len(keys))

        def insert(key):
            barrier.wait()
            store.insert(Tag("task", "job1", key, key.upper()))

        threads = [threading.Thread(target=insert, args=(k,)) for k in keys]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.select_by_type_and_id("task", "job1").as_dict() == {k: k.upper() for k in keys}


class TestDelete:
    def test_deleting_every_key_removes_record(self, store):
        values = {"name": "prod", "os": "linux", "link:stage1": "stage1"}
        store.insert_many("environment", "prod1", values)

        for key in values:
            store.delete("environment", "prod1", key)

        assert store.select_by_type_and_id("environment", "prod1") == Tags()
        assert store.select_by_type("environment") == Tags()

    def test_absent_key_is_noop(self, store):
        store.insert(Tag("environment", "prod1", "name", "prod"))
        store.delete("environment", "prod1", "os")
        store.delete("environment", "missing", "os")
        assert store.select_by_type_and_id("environment", "prod1").as_dict() == {"name": "prod"}

    def test_missing_entity_rejected(self, store):
        with pytest.raises(ValidationError):
            store.delete("", "prod1", "name")


class TestSelect:
    def test_absence_is_empty(self, store):
        assert store.select_by_type_and_id("environment", "nope") == Tags()
        assert store.select_by_type("environment") == Tags()
        assert store.select_all() == Tags()

    def test_select_by_type_filters(self, store):
        store.insert(Tag("environment", "prod1", "name", "prod"))
        store.insert(Tag("service", "api1", "name", "api"))
        assert {t.entity_id for t in store.select_by_type("environment")} == {"prod1"}
        assert len(store.select_all()) == 2

    def test_select_requires_entity(self, store):
        with pytest.raises(ValidationError):
            store.select_by_type_and_id("environment", "")
        with pytest.raises(ValidationError):
            store.select_by_type("")

    def test_clear(self, store):
        store.insert_many("environment", "prod1", {"name": "prod"})
        store.insert_many("task", "t1", {"name": "t"})
        store.clear()
        assert store.select_all() == Tags()


class TestTags:
    @pytest.fixture
    def tags(self):
        return Tags(
            [
                Tag("task", "t1", "environment_id", "prod1"),
                Tag("task", "t1", "name", "migrate"),
                Tag("task", "t2", "environment_id", "stage1"),
                Tag("environment", "prod1", "link:stage1", "stage1"),
            ]
        )

    def test_chained_filters(self, tags):
        assert tags.with_type("task").with_key("environment_id").with_value("prod1").first().entity_id == "t1"
        assert tags.with_id("t2").as_dict() == {"environment_id": "stage1"}
        assert tags.with_key_prefix("link:").first().value == "stage1"

    def test_filters_return_tags(self, tags):
        assert isinstance(tags.with_type("task"), Tags)
        assert tags.with_key("nope").first() is None

    def test_group_by_entity(self, tags):
        groups = tags.group_by_entity()
        assert set(groups) == {("task", "t1"), ("task", "t2"), ("environment", "prod1")}
        assert groups[("task", "t1")].as_dict() == {"environment_id": "prod1", "name": "migrate"}

    def test_from_mapping_sorted(self):
        tags = Tags.from_mapping("environment", "prod1", {"os": "linux", "name": "prod"})
        assert [t.key for t in tags] == ["name", "os"]


class TestLookup:
    def test_environment_id(self, store):
        store.insert_many("service", "api1", {"environment_id": "prod1", "name": "api"})
        assert lookup_entity_environment_id(store, "service", "api1") == "prod1"

    def test_environment_id_missing(self, store):
        store.insert_many("service", "api1", {"name": "api"})
        with pytest.raises(EntityNotFoundError) as exc_info:
            lookup_entity_environment_id(store, "service", "api1")
        assert exc_info.value.entity_type == "service"
        assert exc_info.value.entity_id == "api1"

    def test_delete_entity_tags(self, store):
        store.insert_many("task", "t1", {"name": "t", "arn": "a,b"})
        store.insert_many("task", "t2", {"name": "other"})
        delete_entity_tags(store, "task", "t1")
        assert {t.entity_id for t in store.select_by_type("task")} == {"t2"}
