from __future__ import annotations

import pytest

from tests.cluster_utils import FakeCluster, FakeWatchStream, event
from walkthroughs.models import WatchEventType
from walkthroughs.services.errors import InvalidRequest, StreamError
from walkthroughs.services.store import InMemoryStore
from walkthroughs.services.watch import SubscriptionState, WatchClassifier, WatchSubscription

R1 = {"kind": "ServiceInstance", "metadata": {"name": "r1", "namespace": "ns", "resourceVersion": "1"}}
R2 = {"kind": "ServiceInstance", "metadata": {"name": "r2", "namespace": "ns", "resourceVersion": "4"}}


class RecordingStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.notifications: list[tuple[str, str, str]] = []

    def walkthrough_service_added(self, walkthrough_id, resource) -> None:
        super().walkthrough_service_added(walkthrough_id, resource)
        self.notifications.append(("added", walkthrough_id, resource["metadata"]["name"]))

    def walkthrough_service_removed(self, walkthrough_id, resource) -> None:
        super().walkthrough_service_removed(walkthrough_id, resource)
        self.notifications.append(("removed", walkthrough_id, resource["metadata"]["name"]))


def test_classifier_full_lifecycle_emits_one_upsert_and_one_removal() -> None:
    classifier = WatchClassifier("wt-1")

    notifications = classifier.classify_all(
        [
            event(WatchEventType.OPENED),
            event(WatchEventType.ADDED, R1),
            event(WatchEventType.MODIFIED, R1),
            event(WatchEventType.DELETED, R1),
            event(WatchEventType.CLOSED),
        ]
    )

    assert [(n.action, n.walkthrough_id, n.resource["metadata"]["name"]) for n in notifications] == [
        ("upsert", "wt-1", "r1"),
        ("remove", "wt-1", "r1"),
    ]
    assert classifier.state is SubscriptionState.CLOSED


def test_classifier_state_transitions() -> None:
    classifier = WatchClassifier("wt-1")
    assert classifier.state is SubscriptionState.OPENED

    assert classifier.classify(event(WatchEventType.OPENED)) is None
    assert classifier.state is SubscriptionState.ACTIVE

    assert classifier.classify(event(WatchEventType.CLOSED)) is None
    assert classifier.state is SubscriptionState.CLOSED


def test_classifier_emits_upsert_for_changed_snapshot() -> None:
    classifier = WatchClassifier("wt-1")
    changed = {**R1, "metadata": {**R1["metadata"], "resourceVersion": "2"}}

    notifications = classifier.classify_all(
        [event(WatchEventType.OPENED), event(WatchEventType.ADDED, R1), event(WatchEventType.MODIFIED, changed)]
    )

    assert [n.action for n in notifications] == ["upsert", "upsert"]
    assert notifications[1].resource["metadata"]["resourceVersion"] == "2"


def test_classifier_ignores_events_after_closed() -> None:
    classifier = WatchClassifier("wt-1")
    classifier.classify(event(WatchEventType.OPENED))
    classifier.classify(event(WatchEventType.CLOSED))

    assert classifier.classify(event(WatchEventType.ADDED, R1)) is None
    assert classifier.classify(event(WatchEventType.OPENED)) is None
    assert classifier.state is SubscriptionState.CLOSED


def test_classifier_activates_on_data_before_opened() -> None:
    classifier = WatchClassifier("wt-1")
    notification = classifier.classify(event(WatchEventType.ADDED, R1))
    assert notification is not None and notification.action == "upsert"
    assert classifier.state is SubscriptionState.ACTIVE


def test_classifier_keys_by_identity_across_resources() -> None:
    classifier = WatchClassifier("wt-1")
    notifications = classifier.classify_all(
        [
            event(WatchEventType.OPENED),
            event(WatchEventType.ADDED, R1),
            event(WatchEventType.ADDED, R2),
            event(WatchEventType.DELETED, R1),
            event(WatchEventType.ADDED, R1),
        ]
    )
    assert [(n.action, n.resource["metadata"]["name"]) for n in notifications] == [
        ("upsert", "r1"),
        ("upsert", "r2"),
        ("remove", "r1"),
        ("upsert", "r1"),
    ]


@pytest.mark.asyncio
async def test_subscription_applies_notifications_and_keeps_entries_after_close() -> None:
    cluster = FakeCluster()
    stream = FakeWatchStream(
        [
            event(WatchEventType.OPENED),
            event(WatchEventType.ADDED, R1),
            event(WatchEventType.ADDED, R2),
            event(WatchEventType.DELETED, R1),
            event(WatchEventType.CLOSED),
            event(WatchEventType.ADDED, R1),
        ]
    )
    cluster.streams.append(stream)
    store = RecordingStore()
    subscription = WatchSubscription(
        cluster=cluster, store=store, walkthrough_id="wt-1", kind="ServiceInstance", namespace="ns", selector="a=b"
    )

    await subscription.run()

    assert store.notifications == [("added", "wt-1", "r1"), ("added", "wt-1", "r2"), ("removed", "wt-1", "r1")]
    assert [entry.name for entry in store.entries("wt-1")] == ["r2"]
    assert subscription.state is SubscriptionState.CLOSED
    assert stream.closed is True
    assert cluster.calls == [("watch", "ServiceInstance", "a=b", "ns")]

    subscription.teardown()
    assert store.entries("wt-1") == []
    assert subscription.entries == []


@pytest.mark.asyncio
async def test_subscription_surfaces_stream_error() -> None:
    cluster = FakeCluster()
    cluster.streams.append(
        FakeWatchStream([event(WatchEventType.OPENED), event(WatchEventType.ADDED, R1)], error=StreamError("boom"))
    )
    store = RecordingStore()
    subscription = WatchSubscription(
        cluster=cluster, store=store, walkthrough_id="wt-1", kind="ServiceInstance", namespace="ns"
    )

    with pytest.raises(StreamError, match="boom"):
        await subscription.run()

    assert subscription.state is SubscriptionState.CLOSED
    assert [entry.name for entry in store.entries("wt-1")] == ["r1"]


@pytest.mark.asyncio
async def test_subscription_stream_ending_without_closed_is_an_error() -> None:
    cluster = FakeCluster()
    cluster.streams.append(FakeWatchStream([event(WatchEventType.OPENED)]))
    subscription = WatchSubscription(
        cluster=cluster, store=InMemoryStore(), walkthrough_id="wt-1", kind="Route", namespace="ns"
    )

    with pytest.raises(StreamError):
        await subscription.run()


@pytest.mark.asyncio
async def test_subscription_can_be_restarted_with_a_fresh_stream() -> None:
    cluster = FakeCluster()
    cluster.streams.append(FakeWatchStream([event(WatchEventType.OPENED), event(WatchEventType.CLOSED)]))
    cluster.streams.append(
        FakeWatchStream([event(WatchEventType.OPENED), event(WatchEventType.ADDED, R1), event(WatchEventType.CLOSED)])
    )
    store = RecordingStore()
    subscription = WatchSubscription(
        cluster=cluster, store=store, walkthrough_id="wt-1", kind="ServiceInstance", namespace="ns"
    )

    await subscription.run()
    await subscription.run()

    assert store.notifications == [("added", "wt-1", "r1")]
    assert len([call for call in cluster.calls if call[0] == "watch"]) == 2


def test_subscription_requires_walkthrough_id() -> None:
    with pytest.raises(InvalidRequest):
        WatchSubscription(cluster=FakeCluster(), store=InMemoryStore(), walkthrough_id="", kind="Route", namespace="ns")


@pytest.mark.asyncio
async def test_subscription_is_closed_after_unexpected_stream_failure() -> None:
    cluster = FakeCluster()
    stream = FakeWatchStream([event(WatchEventType.OPENED)], error=RuntimeError("stream broke"))
    cluster.streams.append(stream)
    subscription = WatchSubscription(
        cluster=cluster, store=InMemoryStore(), walkthrough_id="wt-1", kind="Route", namespace="ns"
    )

    with pytest.raises(RuntimeError):
        await subscription.run()

    assert subscription.state is SubscriptionState.CLOSED
    assert stream.closed is True
