from __future__ import annotations

from functools import lru_cache

from walkthroughs.config import Settings, get_settings
from walkthroughs.services.backend import WalkthroughBackendClient
from walkthroughs.services.kube_adapter import ClusterClient, KubeAdapter
from walkthroughs.services.namespaces import NamespaceProvisioner
from walkthroughs.services.provisioners import ServiceProvisioner
from walkthroughs.services.store import InMemoryStore
from walkthroughs.services.walkthroughs import WalkthroughOrchestrator


def build_orchestrator(
    settings: Settings | None = None, *, cluster: ClusterClient | None = None
) -> WalkthroughOrchestrator:
    settings = settings or get_settings()
    cluster = cluster or KubeAdapter(kubectl=settings.kubectl)
    return WalkthroughOrchestrator(
        cluster=cluster,
        namespaces=NamespaceProvisioner(cluster=cluster, suffix=settings.namespace_suffix),
        services=ServiceProvisioner(cluster=cluster, ready_timeout_sec=settings.ready_timeout_sec),
    )


def build_backend_client(settings: Settings | None = None) -> WalkthroughBackendClient:
    settings = settings or get_settings()
    return WalkthroughBackendClient(
        base_url=settings.backend_url,
        content_path=settings.content_path,
        timeout=settings.http_timeout_sec,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> WalkthroughOrchestrator:
    return build_orchestrator()


@lru_cache(maxsize=1)
def get_store() -> InMemoryStore:
    return InMemoryStore()
