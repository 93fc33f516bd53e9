from __future__ import annotations

import logging
from typing import Any, Sequence

from walkthroughs.models import (
    ConcreteManifest,
    Namespace,
    ProvisionedAttributes,
    ProvisionResult,
    ServiceRequest,
    TemplateFailure,
    User,
    WalkthroughDefinition,
)
from walkthroughs.proc import AdapterCommandError
from walkthroughs.services import templates
from walkthroughs.services.errors import (
    AlreadyExistsException,
    InvalidRequest,
    ProvisionError,
    TemplateError,
)
from walkthroughs.services.kube_adapter import ClusterClient
from walkthroughs.services.namespaces import NamespaceProvisioner
from walkthroughs.services.provisioners import ServiceProvisioner
from walkthroughs.services.resources import (
    DEFAULT_SERVICE_INSTANCE,
    WALKTHROUGH_LABEL,
    walkthrough_label_value,
    walkthrough_selector,
)
from walkthroughs.services.store import WalkthroughStore
from walkthroughs.services.watch import WatchSubscription

logger = logging.getLogger(__name__)


def context_attributes(walkthrough_id: str, namespace: Namespace, user: User) -> ProvisionedAttributes:
    return {
        "walkthrough-id": walkthrough_id,
        "walkthrough-namespace": namespace.name,
        "walkthrough-username": user.username,
    }


def prepare_manifest(manifest: ConcreteManifest, *, walkthrough_id: str, namespace: Namespace) -> ConcreteManifest:
    """Apply ServiceInstance defaults, the target namespace and the walkthrough label."""
    if manifest.get("kind", DEFAULT_SERVICE_INSTANCE["kind"]) == DEFAULT_SERVICE_INSTANCE["kind"]:
        manifest = templates.deep_merge(DEFAULT_SERVICE_INSTANCE, manifest)
    manifest = templates.deep_merge(
        manifest,
        {
            "metadata": {
                "namespace": namespace.name,
                "labels": {WALKTHROUGH_LABEL: walkthrough_label_value(walkthrough_id)},
            }
        },
    )
    templates.validate_manifest(manifest)
    return manifest


class WalkthroughOrchestrator:
    """Provision a walkthrough's environment for a user and apply the results."""

    def __init__(
        self,
        *,
        cluster: ClusterClient,
        namespaces: NamespaceProvisioner | None = None,
        services: ServiceProvisioner | None = None,
    ) -> None:
        self._cluster = cluster
        self.namespaces = namespaces or NamespaceProvisioner(cluster=cluster)
        self.services = services or ServiceProvisioner(cluster=cluster)

    async def provision(
        self,
        walkthrough_id: str,
        user: User,
        requests: Sequence[ServiceRequest],
        manifest_templates: Sequence[dict[str, Any]],
        store: WalkthroughStore,
    ) -> ProvisionResult:
        if not walkthrough_id:
            raise InvalidRequest("walkthrough id must be specified")
        if user is None:
            raise InvalidRequest("user must be specified")
        if store is None:
            raise InvalidRequest("store must be specified")
        self.services.recognized(requests or [])

        logger.info("Provisioning walkthrough %s for user %s", walkthrough_id, user.username)
        namespace = await self.namespaces.resolve_namespace(user)
        provisioned = await self.services.provision_all(requests, namespace, user)
        for attributes in provisioned:
            store.service_provisioned(walkthrough_id, attributes)

        merged = templates.merge_attributes([context_attributes(walkthrough_id, namespace, user), *provisioned])
        result = ProvisionResult(walkthrough_id=walkthrough_id, namespace=namespace, attributes=provisioned)
        for index, template in enumerate(manifest_templates):
            try:
                manifest = prepare_manifest(
                    templates.render(template, merged),
                    walkthrough_id=walkthrough_id,
                    namespace=namespace,
                )
            except TemplateError as exc:
                logger.warning("Skipping template %s of walkthrough %s: %s", index, walkthrough_id, exc)
                result.failed.append(TemplateFailure(index=index, error=str(exc)))
                continue
            await self._submit(manifest, namespace)
            result.submitted.append(manifest)

        logger.info(
            "Provisioned walkthrough %s in %s submitted=%s failed=%s",
            walkthrough_id,
            namespace.name,
            len(result.submitted),
            len(result.failed),
        )
        return result

    async def prepare_walkthrough(
        self, definition: WalkthroughDefinition, user: User, store: WalkthroughStore
    ) -> ProvisionResult:
        return await self.provision(definition.id, user, definition.services, definition.templates, store)

    def subscribe(
        self,
        walkthrough_id: str,
        namespace: Namespace,
        store: WalkthroughStore,
        *,
        kind: str = "ServiceInstance",
    ) -> WatchSubscription:
        return WatchSubscription(
            cluster=self._cluster,
            store=store,
            walkthrough_id=walkthrough_id,
            kind=kind,
            namespace=namespace.name,
            selector=walkthrough_selector(walkthrough_id),
        )

    async def _submit(self, manifest: ConcreteManifest, namespace: Namespace) -> None:
        kind = manifest["kind"]
        name = manifest["metadata"]["name"]
        try:
            await self._cluster.create(kind, manifest, namespace.name)
        except AlreadyExistsException:
            logger.info("%s %s already exists in %s", kind, name, namespace.name)
        except AdapterCommandError as exc:
            raise ProvisionError(f"Failed to submit {kind} {name} to {namespace.name}: {exc}") from exc
