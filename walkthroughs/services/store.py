from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Protocol

from walkthroughs.models import ProvisionedAttributes, RegistryEntry
from walkthroughs.services.resources import ResourceIdentity, resource_identity

logger = logging.getLogger(__name__)


class WalkthroughStore(Protocol):
    """Receiver of provisioning notifications. Calls are fire-and-forget."""

    def service_provisioned(self, walkthrough_id: str, attributes: ProvisionedAttributes) -> None: ...

    def walkthrough_service_added(self, walkthrough_id: str, resource: dict[str, Any]) -> None: ...

    def walkthrough_service_removed(self, walkthrough_id: str, resource: dict[str, Any]) -> None: ...


class InMemoryStore:
    """Registry of walkthrough services keyed by (walkthrough id, resource identity)."""

    def __init__(self) -> None:
        self._services: dict[str, dict[ResourceIdentity, dict[str, Any]]] = {}
        self._attributes: dict[str, list[ProvisionedAttributes]] = {}

    def service_provisioned(self, walkthrough_id: str, attributes: ProvisionedAttributes) -> None:
        self._attributes.setdefault(walkthrough_id, []).append(dict(attributes))
        logger.debug("Recorded provisioned attributes for walkthrough %s: %s", walkthrough_id, sorted(attributes))

    def walkthrough_service_added(self, walkthrough_id: str, resource: dict[str, Any]) -> None:
        identity = resource_identity(resource)
        self._services.setdefault(walkthrough_id, {})[identity] = deepcopy(resource)
        logger.debug("Registry upsert walkthrough=%s resource=%s", walkthrough_id, identity)

    def walkthrough_service_removed(self, walkthrough_id: str, resource: dict[str, Any]) -> None:
        identity = resource_identity(resource)
        services = self._services.get(walkthrough_id)
        if services is None or services.pop(identity, None) is None:
            logger.debug("Registry remove for unknown entry walkthrough=%s resource=%s", walkthrough_id, identity)
            return
        if not services:
            del self._services[walkthrough_id]
        logger.debug("Registry remove walkthrough=%s resource=%s", walkthrough_id, identity)

    def attributes(self, walkthrough_id: str) -> list[ProvisionedAttributes]:
        return [dict(item) for item in self._attributes.get(walkthrough_id, [])]

    def entries(self, walkthrough_id: str) -> list[RegistryEntry]:
        services = self._services.get(walkthrough_id, {})
        return [
            RegistryEntry(
                walkthrough_id=walkthrough_id,
                kind=kind or None,
                namespace=namespace or None,
                name=name or None,
                resource=deepcopy(resource),
            )
            for (kind, namespace, name), resource in sorted(services.items())
        ]
