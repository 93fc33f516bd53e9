from __future__ import annotations

import asyncio
import logging

from walkthroughs.models import Namespace, User
from walkthroughs.proc import AdapterCommandError
from walkthroughs.services.errors import (
    AlreadyExistsException,
    InvalidRequest,
    NotFoundException,
    ProvisionError,
)
from walkthroughs.services.kube_adapter import ClusterClient
from walkthroughs.services.naming import namespace_display_name_for_user, namespace_name_for_user
from walkthroughs.services.resources import namespace_request_manifest

logger = logging.getLogger(__name__)


def namespace_for_user(user: User, *, suffix: str = "walkthrough-projects") -> Namespace:
    return Namespace(
        name=namespace_name_for_user(user.username, suffix=suffix),
        display_name=namespace_display_name_for_user(user.username, user.display_name),
        owner=user.username,
    )


class NamespaceProvisioner:
    """Resolve, creating when needed, the namespace that holds a user's walkthrough resources.

    Calls for the same user are serialized and the outcome cached, so concurrent
    callers share one existence check and at most one create.
    """

    def __init__(self, *, cluster: ClusterClient, suffix: str = "walkthrough-projects") -> None:
        self._cluster = cluster
        self._suffix = suffix
        self._locks: dict[str, asyncio.Lock] = {}
        self._resolved: dict[str, Namespace] = {}

    async def resolve_namespace(self, user: User | None) -> Namespace:
        if user is None or not user.username:
            raise InvalidRequest("user must be specified")

        cached = self._resolved.get(user.username)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(user.username, asyncio.Lock())
        async with lock:
            cached = self._resolved.get(user.username)
            if cached is not None:
                return cached

            namespace = namespace_for_user(user, suffix=self._suffix)
            logger.info("Resolving namespace %s for user %s", namespace.name, user.username)
            if not await self._exists(namespace):
                await self._create(namespace)
            self._resolved[user.username] = namespace
            return namespace

    def forget(self, user: User) -> None:
        """Drop the cached resolution so the next call re-checks the cluster."""
        self._resolved.pop(user.username, None)

    async def _exists(self, namespace: Namespace) -> bool:
        try:
            await self._cluster.get("Namespace", namespace.name)
        except NotFoundException:
            logger.debug("Namespace not found: %s", namespace.name)
            return False
        except AdapterCommandError as exc:
            raise ProvisionError(f"Failed to look up namespace {namespace.name}: {exc}") from exc
        logger.debug("Namespace already exists: %s", namespace.name)
        return True

    async def _create(self, namespace: Namespace) -> None:
        try:
            await self._cluster.create("NamespaceRequest", namespace_request_manifest(namespace))
        except AlreadyExistsException:
            logger.debug("Namespace was created concurrently: %s", namespace.name)
            return
        except AdapterCommandError as exc:
            raise ProvisionError(f"Failed to create namespace {namespace.name}: {exc}") from exc
        logger.info("Created namespace: %s", namespace.name)
