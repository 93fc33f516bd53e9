from __future__ import annotations

from copy import deepcopy
import json
import re
from typing import Any, Iterable

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate

from walkthroughs.models import ConcreteManifest, ProvisionedAttributes
from walkthroughs.services.errors import TemplateError

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")

MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "metadata": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string"},
                "labels": {"type": "object", "additionalProperties": {"type": "string"}},
            },
            "required": ["name"],
        },
    },
    "required": ["apiVersion", "kind", "metadata"],
}


def _serialize(template: Any) -> str:
    try:
        return json.dumps(template, sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise TemplateError(f"Template is not JSON-serializable: {exc}") from exc


def placeholders(template: Any) -> set[str]:
    """Return the attribute keys referenced by ``{{key}}`` tokens in ``template``."""
    return set(PLACEHOLDER_RE.findall(_serialize(template)))


def render(template: Any, attributes: ProvisionedAttributes) -> ConcreteManifest:
    """Substitute ``{{key}}`` tokens with attribute values and parse the result.

    Every placeholder must have a matching attribute; missing keys raise
    ``TemplateError`` rather than rendering an empty string. Values are inserted
    verbatim, so quotes or backslashes in a value must be escaped by the caller.
    """
    text = _serialize(template)
    missing = sorted(set(PLACEHOLDER_RE.findall(text)) - set(attributes))
    if missing:
        raise TemplateError(f"Template references unknown attributes: {', '.join(missing)}")

    substituted = PLACEHOLDER_RE.sub(lambda match: str(attributes[match.group(1)]), text)
    try:
        return json.loads(substituted)
    except json.JSONDecodeError as exc:
        raise TemplateError(f"Rendered template is not valid JSON: {exc.msg} at position {exc.pos}") from exc


def validate_manifest(manifest: ConcreteManifest) -> None:
    """Check that a rendered manifest is a submittable Kubernetes object."""
    try:
        jsonschema_validate(instance=manifest, schema=MANIFEST_SCHEMA)
    except ValidationError as exc:
        raise TemplateError(f"Rendered manifest is invalid: {exc.message}") from exc


def deep_merge(base: Any, override: Any) -> Any:
    """Deep-merge two JSON-like values, recursively merging object keys."""
    if isinstance(base, dict) and isinstance(override, dict):
        merged: dict[str, Any] = {k: deepcopy(v) for k, v in base.items()}
        for key, value in override.items():
            merged[key] = deep_merge(merged[key], value) if key in merged else deepcopy(value)
        return merged
    return deepcopy(override)


def merge_attributes(attribute_sets: Iterable[ProvisionedAttributes]) -> ProvisionedAttributes:
    """Merge attribute maps left to right; later keys win."""
    merged: ProvisionedAttributes = {}
    for attributes in attribute_sets:
        merged.update(attributes)
    return merged
