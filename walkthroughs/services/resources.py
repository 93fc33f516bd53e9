from __future__ import annotations

import base64
from typing import Any

from walkthroughs.models import Namespace
from walkthroughs.services.naming import slugify_token

WALKTHROUGH_LABEL = "walkthroughs.integreatly.org/id"

DEFAULT_SERVICE_INSTANCE: dict[str, Any] = {
    "kind": "ServiceInstance",
    "apiVersion": "servicecatalog.k8s.io/v1beta1",
    "spec": {"clusterServicePlanExternalName": "default"},
}

ResourceIdentity = tuple[str, str, str]


def resource_identity(resource: dict[str, Any]) -> ResourceIdentity:
    """(kind, namespace, name) of a cluster object; ``metadata.uid`` stands in for a missing name."""
    metadata = resource.get("metadata") or {}
    name = metadata.get("name") or metadata.get("uid") or ""
    return (str(resource.get("kind") or ""), str(metadata.get("namespace") or ""), str(name))


def walkthrough_label_value(walkthrough_id: str) -> str:
    return slugify_token(walkthrough_id)[:63].strip("-") or "walkthrough"


def walkthrough_selector(walkthrough_id: str) -> str:
    return f"{WALKTHROUGH_LABEL}={walkthrough_label_value(walkthrough_id)}"


def namespace_request_manifest(namespace: Namespace) -> dict[str, Any]:
    return {
        "apiVersion": "project.openshift.io/v1",
        "kind": "ProjectRequest",
        "metadata": {"name": namespace.name},
        "displayName": namespace.display_name,
        "description": f"Walkthrough resources owned by {namespace.owner}",
    }


def address_space_manifest(name: str, *, plan: str = "standard-unlimited", space_type: str = "standard") -> dict[str, Any]:
    return {
        "apiVersion": "enmasse.io/v1beta1",
        "kind": "AddressSpace",
        "metadata": {"name": name},
        "spec": {"type": space_type, "plan": plan},
    }


def messaging_user_manifest(address_space: str, username: str, password: str) -> dict[str, Any]:
    return {
        "apiVersion": "user.enmasse.io/v1beta1",
        "kind": "MessagingUser",
        "metadata": {"name": f"{address_space}.{username}"},
        "spec": {
            "username": username,
            "authentication": {
                "type": "password",
                "password": base64.b64encode(password.encode("utf-8")).decode("ascii"),
            },
            "authorization": [{"addresses": ["*"], "operations": ["send", "recv", "view"]}],
        },
    }


def syndesis_manifest(name: str) -> dict[str, Any]:
    return {
        "apiVersion": "syndesis.io/v1beta1",
        "kind": "Syndesis",
        "metadata": {"name": name},
        "spec": {},
    }
