from __future__ import annotations

from fastapi import APIRouter, Depends, status

from walkthroughs.models import (
    ConcreteManifest,
    Namespace,
    ProvisionRequest,
    ProvisionResult,
    RegistryEntry,
    RenderRequest,
    User,
)
from walkthroughs.provisioner import get_orchestrator, get_store
from walkthroughs.services import templates as template_service
from walkthroughs.services.store import InMemoryStore
from walkthroughs.services.walkthroughs import WalkthroughOrchestrator

router = APIRouter(tags=["walkthroughs"])


@router.post("/namespaces", response_model=Namespace)
async def resolve_namespace(
    user: User, orchestrator: WalkthroughOrchestrator = Depends(get_orchestrator)
) -> Namespace:
    return await orchestrator.namespaces.resolve_namespace(user)


@router.post(
    "/walkthroughs/{walkthrough_id}/provision",
    response_model=ProvisionResult,
    status_code=status.HTTP_201_CREATED,
)
async def provision_walkthrough(
    walkthrough_id: str,
    payload: ProvisionRequest,
    orchestrator: WalkthroughOrchestrator = Depends(get_orchestrator),
    store: InMemoryStore = Depends(get_store),
) -> ProvisionResult:
    return await orchestrator.provision(walkthrough_id, payload.user, payload.services, payload.templates, store)


@router.get("/walkthroughs/{walkthrough_id}/services", response_model=list[RegistryEntry])
def list_walkthrough_services(walkthrough_id: str, store: InMemoryStore = Depends(get_store)) -> list[RegistryEntry]:
    return store.entries(walkthrough_id)


@router.post("/templates/render")
def render_template(payload: RenderRequest) -> ConcreteManifest:
    return template_service.render(payload.template, payload.attributes)
