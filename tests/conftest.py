import pytest
from starlette.testclient import TestClient

from tests.cluster_utils import FakeCluster, StaticHandler
from walkthroughs.main import app
from walkthroughs.provisioner import get_orchestrator, get_store
from walkthroughs.services.namespaces import NamespaceProvisioner
from walkthroughs.services.provisioners import ServiceProvisioner, ServiceType
from walkthroughs.services.store import InMemoryStore
from walkthroughs.services.walkthroughs import WalkthroughOrchestrator


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def orchestrator(fake_cluster) -> WalkthroughOrchestrator:
    handlers = {
        ServiceType.ENMASSE: StaticHandler(
            {
                "enmasse-broker-url": "amqps://broker",
                "enmasse-credentials-username": "alice",
                "enmasse-credentials-password": "pw",
            }
        ),
    }
    return WalkthroughOrchestrator(
        cluster=fake_cluster,
        namespaces=NamespaceProvisioner(cluster=fake_cluster),
        services=ServiceProvisioner(cluster=fake_cluster, handlers=handlers),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def client(orchestrator, store):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_store] = lambda: store

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
