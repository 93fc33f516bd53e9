from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from enum import Enum
import logging
import secrets
from typing import Any, Callable, Mapping, Protocol, Sequence

from walkthroughs.models import Namespace, ProvisionedAttributes, ServiceRequest, User
from walkthroughs.proc import AdapterCommandError
from walkthroughs.services.errors import (
    AlreadyExistsException,
    InvalidRequest,
    NotFoundException,
    ProvisionError,
)
from walkthroughs.services.kube_adapter import ClusterClient
from walkthroughs.services.naming import slugify_token
from walkthroughs.services.resources import (
    address_space_manifest,
    messaging_user_manifest,
    syndesis_manifest,
)

logger = logging.getLogger(__name__)


class ServiceType(str, Enum):
    ENMASSE = "enmasse"
    FUSE = "fuse"

    @classmethod
    def parse(cls, name: str | None) -> "ServiceType | None":
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ProvisionContext:
    cluster: ClusterClient
    request: ServiceRequest
    namespace: Namespace
    user: User
    ready_timeout_sec: float
    poll_interval_sec: float

    @property
    def config(self) -> dict[str, Any]:
        return self.request.config or {}


class ServiceHandler(Protocol):
    async def provision(self, ctx: ProvisionContext) -> ProvisionedAttributes: ...


async def wait_for_resource(
    ctx: ProvisionContext,
    kind: str,
    name: str,
    ready: Callable[[dict[str, Any]], bool],
) -> dict[str, Any]:
    """Poll ``kind/name`` in the context namespace until ``ready`` holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + ctx.ready_timeout_sec
    while True:
        try:
            resource = await ctx.cluster.get(kind, name, ctx.namespace.name)
        except NotFoundException:
            resource = None
        if resource is not None and ready(resource):
            logger.debug("%s %s is ready in %s", kind, name, ctx.namespace.name)
            return resource
        if loop.time() >= deadline:
            raise ProvisionError(
                f"Timed out after {ctx.ready_timeout_sec:g}s waiting for {kind} {name} in {ctx.namespace.name}"
            )
        await asyncio.sleep(ctx.poll_interval_sec)


async def _create_if_absent(ctx: ProvisionContext, kind: str, manifest: dict[str, Any]) -> bool:
    try:
        await ctx.cluster.create(kind, manifest, ctx.namespace.name)
    except AlreadyExistsException:
        logger.debug("%s %s already present in %s", kind, manifest["metadata"]["name"], ctx.namespace.name)
        return False
    return True


class AMQOnlineHandler:
    """Messaging broker: an enmasse AddressSpace plus a MessagingUser for the walkthrough user."""

    async def provision(self, ctx: ProvisionContext) -> ProvisionedAttributes:
        space_name = ctx.config.get("addressSpace") or ctx.namespace.name
        username = slugify_token(ctx.user.username) or "user"
        password = secrets.token_urlsafe(16)

        await _create_if_absent(
            ctx,
            "AddressSpace",
            address_space_manifest(
                space_name,
                plan=ctx.config.get("plan", "standard-unlimited"),
                space_type=ctx.config.get("type", "standard"),
            ),
        )
        user_manifest = messaging_user_manifest(space_name, username, password)
        if not await _create_if_absent(ctx, "MessagingUser", user_manifest):
            existing = await ctx.cluster.get("MessagingUser", user_manifest["metadata"]["name"], ctx.namespace.name)
            password = _decode_password(existing)

        space = await wait_for_resource(
            ctx,
            "AddressSpace",
            space_name,
            lambda resource: bool((resource.get("status") or {}).get("isReady")),
        )
        return {
            "enmasse-broker-url": _broker_url(space),
            "enmasse-credentials-username": username,
            "enmasse-credentials-password": password,
        }


def _decode_password(messaging_user: dict[str, Any]) -> str:
    encoded = ((messaging_user.get("spec") or {}).get("authentication") or {}).get("password")
    if not encoded:
        raise ProvisionError("Existing MessagingUser has no password")
    try:
        return base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ProvisionError("Existing MessagingUser password is not valid base64") from exc


def _broker_url(address_space: dict[str, Any]) -> str:
    endpoints = (address_space.get("status") or {}).get("endpointStatuses") or []
    for endpoint in endpoints:
        if endpoint.get("name") != "messaging":
            continue
        host = endpoint.get("externalHost") or endpoint.get("serviceHost")
        if host:
            return f"amqps://{host}"
    raise ProvisionError(f"AddressSpace {address_space.get('metadata', {}).get('name')} exposes no messaging endpoint")


class FuseOnlineHandler:
    """Integration engine: a Syndesis install in the user's namespace."""

    async def provision(self, ctx: ProvisionContext) -> ProvisionedAttributes:
        name = ctx.config.get("name", "syndesis")
        await _create_if_absent(ctx, "Syndesis", syndesis_manifest(name))
        await wait_for_resource(
            ctx,
            "Syndesis",
            name,
            lambda resource: (resource.get("status") or {}).get("phase") == "Installed",
        )
        route = await ctx.cluster.get("Route", name, ctx.namespace.name)
        host = (route.get("spec") or {}).get("host")
        if not host:
            raise ProvisionError(f"Route {name} in {ctx.namespace.name} has no host")
        return {"fuse-url": f"https://{host}", "fuse-namespace": ctx.namespace.name}


DEFAULT_HANDLERS: Mapping[ServiceType, ServiceHandler] = {
    ServiceType.ENMASSE: AMQOnlineHandler(),
    ServiceType.FUSE: FuseOnlineHandler(),
}


class ServiceProvisioner:
    """Create backing services for requested catalog entries.

    Unknown catalog names are skipped without error so older walkthrough
    definitions keep working as the catalog changes.
    """

    def __init__(
        self,
        *,
        cluster: ClusterClient | None,
        handlers: Mapping[ServiceType, ServiceHandler] | None = None,
        ready_timeout_sec: float = 600.0,
        poll_interval_sec: float = 5.0,
    ) -> None:
        self._cluster = cluster
        self._handlers = dict(handlers if handlers is not None else DEFAULT_HANDLERS)
        self._ready_timeout_sec = ready_timeout_sec
        self._poll_interval_sec = poll_interval_sec

    async def provision_service(
        self,
        request: ServiceRequest | None,
        namespace: Namespace | None,
        user: User | None,
    ) -> ProvisionedAttributes | None:
        if request is None or not request.name:
            raise InvalidRequest("service must be specified")
        if namespace is None or not namespace.name:
            raise InvalidRequest("namespace must be provided")
        if user is None or not user.username:
            raise InvalidRequest("user must be specified")
        if self._cluster is None:
            raise InvalidRequest("cluster client must be specified")

        service_type = ServiceType.parse(request.name)
        handler = self._handlers.get(service_type) if service_type is not None else None
        if handler is None:
            logger.debug("Skipping unrecognized service %r", request.name)
            return None

        logger.info("Provisioning %s for user %s in %s", service_type.value, user.username, namespace.name)
        ctx = ProvisionContext(
            cluster=self._cluster,
            request=request,
            namespace=namespace,
            user=user,
            ready_timeout_sec=self._ready_timeout_sec,
            poll_interval_sec=self._poll_interval_sec,
        )
        try:
            attributes = await handler.provision(ctx)
        except (AdapterCommandError, NotFoundException, ValueError) as exc:
            raise ProvisionError(f"Failed to provision {service_type.value} in {namespace.name}: {exc}") from exc
        logger.info("Provisioned %s in %s (attributes=%s)", service_type.value, namespace.name, sorted(attributes))
        return attributes

    def recognized(self, requests: Sequence[ServiceRequest | None]) -> list[ServiceRequest]:
        selected: list[ServiceRequest] = []
        for request in requests:
            if request is None:
                raise InvalidRequest("service must be specified")
            service_type = ServiceType.parse(request.name)
            if service_type is not None and service_type in self._handlers:
                selected.append(request)
        return selected

    async def provision_all(
        self,
        requests: Sequence[ServiceRequest | None] | None,
        namespace: Namespace | None,
        user: User | None,
    ) -> list[ProvisionedAttributes]:
        """Provision every recognized request concurrently.

        Results follow the order of the recognized requests. If any task fails
        the whole batch fails with the first failure in request order; the
        remaining tasks are allowed to finish first.
        """
        selected = self.recognized(requests or [])
        if not selected:
            return []

        outcomes = await asyncio.gather(
            *(self.provision_service(request, namespace, user) for request in selected),
            return_exceptions=True,
        )
        failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if failures:
            for extra in failures[1:]:
                logger.warning("Additional provisioning failure in batch: %s", extra)
            raise failures[0]
        return [outcome for outcome in outcomes if outcome is not None]
