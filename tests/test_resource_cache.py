"""Tests for the list+watch resource cache."""

import json
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from cluster_operator.resource_cache import ResourceCache


def make_secret(name, resource_version="1", namespace="default"):
    return {
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "data": {},
    }


@pytest.fixture
def list_func():
    return MagicMock()


@pytest.fixture
def cache(list_func):
    return ResourceCache("secrets", list_func, list_kwargs={"namespace": "default"})


@pytest.fixture
def events(cache):
    received = []
    cache.subscribe(lambda event_type, obj: received.append((event_type, obj["metadata"]["name"])))
    return received


class TestHandleEvent:
    def test_added_then_modified(self, cache, events):
        cache.handle_event("ADDED", make_secret("a"))
        cache.handle_event("MODIFIED", make_secret("a", "2"))

        assert events == [("ADDED", "a"), ("MODIFIED", "a")]
        assert cache.get("default", "a")["metadata"]["resourceVersion"] == "2"

    def test_repeated_add_is_reported_as_update(self, cache, events):
        cache.handle_event("ADDED", make_secret("a"))
        cache.handle_event("ADDED", make_secret("a", "2"))

        assert events == [("ADDED", "a"), ("MODIFIED", "a")]

    def test_deleted(self, cache, events):
        cache.handle_event("ADDED", make_secret("a"))
        cache.handle_event("DELETED", make_secret("a"))

        assert cache.get("default", "a") is None
        assert events[-1] == ("DELETED", "a")

    def test_unknown_events_are_ignored(self, cache, events):
        cache.handle_event("BOOKMARK", make_secret("a"))
        assert events == []
        assert cache.list() == []

    def test_get_returns_a_copy(self, cache):
        cache.handle_event("ADDED", make_secret("a"))
        cache.get("default", "a")["metadata"]["name"] = "changed"
        assert cache.get("default", "a")["metadata"]["name"] == "a"

    def test_handler_errors_are_contained(self, cache, events):
        def broken(event_type, obj):
            raise RuntimeError("handler bug")

        cache.subscribe(broken)
        cache.handle_event("ADDED", make_secret("a"))

        assert events == [("ADDED", "a")]
        assert cache.get("default", "a") is not None


class TestReplace:
    def test_replace_reports_differences(self, cache, events):
        cache.handle_event("ADDED", make_secret("kept"))
        cache.handle_event("ADDED", make_secret("changed"))
        cache.handle_event("ADDED", make_secret("gone"))
        events.clear()

        cache.replace([make_secret("kept"), make_secret("changed", "5"), make_secret("new")])

        assert sorted(events) == [("ADDED", "new"), ("DELETED", "gone"), ("MODIFIED", "changed")]
        assert sorted(obj["metadata"]["name"] for obj in cache.list()) == ["changed", "kept", "new"]

    def test_list_and_replace(self, cache, list_func):
        list_func.return_value.data = json.dumps({
            "metadata": {"resourceVersion": "100"},
            "items": [make_secret("a"), make_secret("b")],
        }).encode("utf-8")

        assert cache.list_and_replace() == "100"
        list_func.assert_called_once_with(_preload_content=False, namespace="default")
        assert cache.get("default", "b") is not None


class TestWatch:
    @pytest.fixture
    def watch_cls(self):
        with patch("cluster_operator.resource_cache.watch.Watch") as watch_cls:
            yield watch_cls

    def test_watch_applies_events(self, cache, events, watch_cls, list_func):
        watch_cls.return_value.stream.return_value = iter([
            {"type": "ADDED", "raw_object": make_secret("a", "101")},
            {"type": "MODIFIED", "raw_object": make_secret("a", "102")},
            {"type": "BOOKMARK", "raw_object": {"metadata": {"resourceVersion": "103"}}},
        ])

        assert cache._watch_from("100") == "103"
        assert events == [("ADDED", "a"), ("MODIFIED", "a")]
        watch_cls.return_value.stream.assert_called_once_with(
            list_func, resource_version="100", timeout_seconds=300, namespace="default"
        )

    def test_error_event_raises(self, cache, watch_cls):
        watch_cls.return_value.stream.return_value = iter([
            {"type": "ERROR", "raw_object": {"code": 410, "message": "too old resource version"}},
        ])

        with pytest.raises(ApiException) as excinfo:
            cache._watch_from("1")
        assert excinfo.value.status == 410

    def test_run_marks_synced_and_stops(self, cache, list_func, watch_cls):
        list_func.return_value.data = json.dumps({"metadata": {"resourceVersion": "1"}, "items": []}).encode()

        def stream(*args, **kwargs):
            cache.stop()
            return iter([])

        watch_cls.return_value.stream.side_effect = stream

        cache.run()

        assert cache.has_synced()
        assert cache.wait_for_sync(0)
