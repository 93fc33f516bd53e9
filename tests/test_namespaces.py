from __future__ import annotations

import asyncio

import pytest

from tests.cluster_utils import FakeCluster, command_error
from walkthroughs.models import User
from walkthroughs.services.errors import AlreadyExistsException, InvalidRequest, ProvisionError
from walkthroughs.services.namespaces import NamespaceProvisioner, namespace_for_user


@pytest.mark.asyncio
async def test_resolve_namespace_creates_when_missing() -> None:
    cluster = FakeCluster()
    provisioner = NamespaceProvisioner(cluster=cluster)

    namespace = await provisioner.resolve_namespace(User(username="alice", display_name="Alice"))

    assert namespace.owner == "alice"
    assert namespace.display_name == "Alice's Walkthroughs"
    assert [call[:2] for call in cluster.calls] == [("get", "Namespace"), ("create", "NamespaceRequest")]


@pytest.mark.asyncio
async def test_resolve_namespace_uses_existing_namespace() -> None:
    cluster = FakeCluster()
    user = User(username="alice")
    cluster.add("Namespace", namespace_for_user(user).name)

    namespace = await NamespaceProvisioner(cluster=cluster).resolve_namespace(user)

    assert namespace == namespace_for_user(user)
    assert cluster.created() == []


@pytest.mark.asyncio
async def test_resolve_namespace_is_idempotent_and_distinct_per_user() -> None:
    cluster = FakeCluster()
    provisioner = NamespaceProvisioner(cluster=cluster)

    first = await provisioner.resolve_namespace(User(username="alice"))
    again = await provisioner.resolve_namespace(User(username="alice"))
    other = await provisioner.resolve_namespace(User(username="bob"))

    assert first == again
    assert first.name != other.name
    assert len(cluster.created("NamespaceRequest")) == 2


@pytest.mark.asyncio
async def test_concurrent_resolution_creates_namespace_once() -> None:
    cluster = FakeCluster()
    provisioner = NamespaceProvisioner(cluster=cluster)
    user = User(username="new-user")

    first, second = await asyncio.gather(
        provisioner.resolve_namespace(user),
        provisioner.resolve_namespace(user),
    )

    assert first == second
    assert len(cluster.created("NamespaceRequest")) == 1


@pytest.mark.asyncio
async def test_already_exists_on_create_is_success() -> None:
    cluster = FakeCluster()
    cluster.create_errors["NamespaceRequest"] = AlreadyExistsException("exists")

    namespace = await NamespaceProvisioner(cluster=cluster).resolve_namespace(User(username="alice"))

    assert namespace.name == namespace_for_user(User(username="alice")).name


@pytest.mark.asyncio
async def test_create_failure_raises_provision_error_and_is_not_cached() -> None:
    cluster = FakeCluster()
    cluster.create_errors["NamespaceRequest"] = command_error("Error from server (Forbidden): quota exceeded")
    provisioner = NamespaceProvisioner(cluster=cluster)

    with pytest.raises(ProvisionError):
        await provisioner.resolve_namespace(User(username="alice"))

    del cluster.create_errors["NamespaceRequest"]
    await provisioner.resolve_namespace(User(username="alice"))
    assert len(cluster.created("NamespaceRequest")) == 2


@pytest.mark.asyncio
async def test_lookup_failure_raises_provision_error() -> None:
    cluster = FakeCluster()
    cluster.get_errors["Namespace"] = command_error("Unable to connect to the server", category="retryable")

    with pytest.raises(ProvisionError):
        await NamespaceProvisioner(cluster=cluster).resolve_namespace(User(username="alice"))
    assert cluster.created() == []


@pytest.mark.asyncio
async def test_missing_user_is_rejected_before_cluster_calls() -> None:
    cluster = FakeCluster()
    provisioner = NamespaceProvisioner(cluster=cluster)

    with pytest.raises(InvalidRequest):
        await provisioner.resolve_namespace(None)
    with pytest.raises(InvalidRequest):
        await provisioner.resolve_namespace(User(username=""))
    assert cluster.calls == []
