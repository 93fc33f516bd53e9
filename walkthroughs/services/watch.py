from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Iterable, Literal

from walkthroughs.models import WatchEvent, WatchEventType
from walkthroughs.services.errors import InvalidRequest, StreamError
from walkthroughs.services.kube_adapter import ClusterClient, WatchStream
from walkthroughs.services.resources import ResourceIdentity, resource_identity
from walkthroughs.services.store import WalkthroughStore

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    OPENED = "OPENED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Notification:
    action: Literal["upsert", "remove"]
    walkthrough_id: str
    resource: dict[str, Any]

    @property
    def identity(self) -> ResourceIdentity:
        return resource_identity(self.resource)


class WatchClassifier:
    """Map watch events of one subscription to registry notifications.

    OPENED activates the subscription and CLOSED ends it; neither produces a
    notification and nothing is emitted once closed. An ADDED or MODIFIED
    snapshot identical to the last one emitted for the same resource is
    suppressed. A data event arriving before OPENED activates the subscription.
    """

    def __init__(self, walkthrough_id: str) -> None:
        self.walkthrough_id = walkthrough_id
        self.state = SubscriptionState.OPENED
        self._last: dict[ResourceIdentity, dict[str, Any]] = {}

    @property
    def closed(self) -> bool:
        return self.state is SubscriptionState.CLOSED

    def classify(self, event: WatchEvent) -> Notification | None:
        if self.closed:
            return None
        if event.type is WatchEventType.CLOSED:
            self.state = SubscriptionState.CLOSED
            return None
        self.state = SubscriptionState.ACTIVE
        if event.type is WatchEventType.OPENED or event.payload is None:
            return None

        identity = resource_identity(event.payload)
        if event.type is WatchEventType.DELETED:
            self._last.pop(identity, None)
            return Notification("remove", self.walkthrough_id, event.payload)

        if self._last.get(identity) == event.payload:
            return None
        self._last[identity] = event.payload
        return Notification("upsert", self.walkthrough_id, event.payload)

    def classify_all(self, events: Iterable[WatchEvent]) -> list[Notification]:
        notifications = []
        for event in events:
            notification = self.classify(event)
            if notification is not None:
                notifications.append(notification)
        return notifications


def apply_notification(store: WalkthroughStore, notification: Notification) -> None:
    if notification.action == "upsert":
        store.walkthrough_service_added(notification.walkthrough_id, notification.resource)
    else:
        store.walkthrough_service_removed(notification.walkthrough_id, notification.resource)


class WatchSubscription:
    """Keep a store's registry in sync with one watched resource kind of a walkthrough.

    Each ``run()`` opens a fresh stream and returns once it is CLOSED. A stream
    that ends any other way raises ``StreamError``; re-subscribing is up to the
    caller. Entries added by the subscription stay in the store until
    ``teardown()``.
    """

    def __init__(
        self,
        *,
        cluster: ClusterClient,
        store: WalkthroughStore,
        walkthrough_id: str,
        kind: str,
        namespace: str,
        selector: str | None = None,
    ) -> None:
        if not walkthrough_id:
            raise InvalidRequest("walkthrough id must be specified")
        if store is None:
            raise InvalidRequest("store must be specified")
        self._cluster = cluster
        self._store = store
        self.walkthrough_id = walkthrough_id
        self.kind = kind
        self.namespace = namespace
        self.selector = selector
        self._stream: WatchStream | None = None
        self._entries: dict[ResourceIdentity, dict[str, Any]] = {}
        self.state = SubscriptionState.CLOSED

    async def run(self) -> None:
        classifier = WatchClassifier(self.walkthrough_id)
        self.state = SubscriptionState.OPENED
        stream = self._cluster.watch(self.kind, self.namespace, self.selector)
        self._stream = stream
        try:
            async for event in stream:
                notification = classifier.classify(event)
                self.state = classifier.state
                if notification is not None:
                    self._apply(notification)
                if classifier.closed:
                    break
        except StreamError:
            logger.warning("Watch on %s for walkthrough %s failed", self.kind, self.walkthrough_id)
            raise
        finally:
            self.state = SubscriptionState.CLOSED
            self._stream = None
            stream.close()

        if not classifier.closed:
            raise StreamError(f"Watch on {self.kind} for walkthrough {self.walkthrough_id} ended without CLOSED")
        logger.info("Watch on %s for walkthrough %s closed", self.kind, self.walkthrough_id)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()

    def teardown(self) -> None:
        """Remove every registry entry this subscription added."""
        for resource in list(self._entries.values()):
            self._store.walkthrough_service_removed(self.walkthrough_id, resource)
        self._entries.clear()

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries.values())

    def _apply(self, notification: Notification) -> None:
        if notification.action == "upsert":
            self._entries[notification.identity] = notification.resource
        else:
            self._entries.pop(notification.identity, None)
        apply_notification(self._store, notification)
