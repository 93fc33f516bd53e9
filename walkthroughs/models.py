from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

ProvisionedAttributes = dict[str, str]
ConcreteManifest = dict[str, Any]


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    display_name: Optional[str] = None


class Namespace(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    owner: str


class ServiceRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    config: Optional[dict[str, Any]] = None


class WatchEventType(str, Enum):
    OPENED = "OPENED"
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    CLOSED = "CLOSED"


class WatchEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: WatchEventType
    payload: Optional[dict[str, Any]] = None


class WalkthroughDefinition(BaseModel):
    id: str
    title: Optional[str] = None
    services: list[ServiceRequest] = Field(default_factory=list)
    templates: list[dict[str, Any]] = Field(default_factory=list)


class TemplateFailure(BaseModel):
    index: int
    error: str


class ProvisionResult(BaseModel):
    walkthrough_id: str
    namespace: Namespace
    attributes: list[ProvisionedAttributes] = Field(default_factory=list)
    submitted: list[ConcreteManifest] = Field(default_factory=list)
    failed: list[TemplateFailure] = Field(default_factory=list)


class ProvisionRequest(BaseModel):
    user: User
    services: list[ServiceRequest] = Field(default_factory=list)
    templates: list[dict[str, Any]] = Field(default_factory=list)


class RenderRequest(BaseModel):
    template: dict[str, Any]
    attributes: ProvisionedAttributes = Field(default_factory=dict)


class RegistryEntry(BaseModel):
    walkthrough_id: str
    kind: Optional[str] = None
    namespace: Optional[str] = None
    name: Optional[str] = None
    resource: dict[str, Any]
